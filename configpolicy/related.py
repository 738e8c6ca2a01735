"""Related-object records that report per-object compliance for a policy."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum

__all__ = [
    "ComplianceState",
    "GroupVersionResource",
    "ObjectMetadata",
    "ObjectResource",
    "ObjectProperties",
    "RelatedObject",
    "add_related_objects",
    "add_condensed_related_objs",
    "update_related_objects_status",
    "contain_related",
]


class ComplianceState(str, Enum):
    """Whether an object satisfies a policy."""

    COMPLIANT = "Compliant"
    NON_COMPLIANT = "NonCompliant"


@dataclass(frozen=True)
class GroupVersionResource:
    """An API group, version and plural resource name."""

    group: str
    version: str
    resource: str

    def group_version(self) -> str:
        """Return ``group/version``, or just the version for the core group."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version


@dataclass(frozen=True)
class ObjectMetadata:
    """Name and namespace of a related object."""

    name: str = ""
    namespace: str = ""


@dataclass(frozen=True)
class ObjectResource:
    """Identifies a related object by API version, kind and metadata."""

    api_version: str = ""
    kind: str = ""
    metadata: ObjectMetadata = field(default_factory=ObjectMetadata)


@dataclass(frozen=True)
class ObjectProperties:
    """Extra information about how a related object came to exist."""

    created: bool | None = None
    uid: str = ""


@dataclass(frozen=True)
class RelatedObject:
    """An object checked by a policy, with its compliance and the reason."""

    object: ObjectResource = field(default_factory=ObjectResource)
    compliant: str = ""
    reason: str = ""
    properties: ObjectProperties | None = None


def _compliance(compliant: bool) -> str:
    state = ComplianceState.COMPLIANT if compliant else ComplianceState.NON_COMPLIANT
    return state.value


def _same_identity(a: ObjectResource, b: ObjectResource) -> bool:
    return (
        a.api_version == b.api_version
        and a.kind == b.kind
        and a.metadata.name == b.metadata.name
        and a.metadata.namespace == b.metadata.namespace
    )


def update_related_objects_status(
    objects: Sequence[RelatedObject], related_object: RelatedObject
) -> list[RelatedObject]:
    """Return the list with ``related_object`` added, or replacing an entry
    for the same object whose compliance differs."""
    result = list(objects)
    present = False
    for index, current in enumerate(result):
        if _same_identity(current.object, related_object.object):
            present = True
            if current.compliant != related_object.compliant:
                result[index] = related_object
    if not present:
        result.append(related_object)
    return result


def add_related_objects(
    compliant: bool,
    rsrc: GroupVersionResource,
    kind: str,
    namespace: str,
    namespaced: bool,
    obj_names: Iterable[str],
    reason: str,
    creation_info: ObjectProperties | None,
) -> list[RelatedObject]:
    """Build related-object entries for each named object."""
    template = RelatedObject(
        compliant=_compliance(compliant),
        reason=reason,
        properties=creation_info,
    )
    related: list[RelatedObject] = []
    for name in obj_names:
        metadata = ObjectMetadata(name=name, namespace=namespace if namespaced else "")
        entry = replace(
            template,
            object=ObjectResource(
                api_version=rsrc.group_version(), kind=kind, metadata=metadata
            ),
        )
        related = update_related_objects_status(related, entry)
    return related


def add_condensed_related_objs(
    rsrc: GroupVersionResource,
    compliant: bool,
    kind: str,
    namespace: str,
    namespaced: bool,
    reason: str,
) -> list[RelatedObject]:
    """Build a single wildcard entry standing for every matching object."""
    metadata = ObjectMetadata(name="*", namespace=namespace if namespaced else "")
    return [
        RelatedObject(
            object=ObjectResource(
                api_version=rsrc.group_version(), kind=kind, metadata=metadata
            ),
            compliant=_compliance(compliant),
            reason=reason,
        )
    ]


def contain_related(related: Iterable[RelatedObject], candidate: RelatedObject) -> bool:
    """Whether any entry refers to the same object as ``candidate``."""
    return any(entry.object == candidate.object for entry in related)