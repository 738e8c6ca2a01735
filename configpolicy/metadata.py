"""Helpers for decoding objects and shaping their metadata for comparison."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

__all__ = [
    "unmarshal_from_json",
    "filter_unwanted_annotations",
    "format_template",
    "format_metadata",
    "fmt_metadata_for_compare",
    "identifier_str",
    "obj_has_finalizer",
    "remove_obj_finalizer_patch",
]

_LAST_APPLIED = "kubectl.kubernetes.io/last-applied-configuration"


def unmarshal_from_json(raw: bytes | str) -> dict[str, Any]:
    """Decode a JSON object; ``null`` gives an empty object.

    Raises ValueError if the data is not JSON or not an object.
    """
    decoded = json.loads(raw)
    if decoded is None:
        return {}
    if not isinstance(decoded, dict):
        raise ValueError(
            f"cannot unmarshal {type(decoded).__name__} into an object"
        )
    return decoded


def filter_unwanted_annotations(annotations: Mapping[str, Any]) -> dict[str, Any]:
    """Return the annotations without the ones that must not be compared."""
    return {key: val for key, val in annotations.items() if key != _LAST_APPLIED}


def _format_annotations(annotations: Any) -> Any:
    if isinstance(annotations, Mapping):
        return filter_unwanted_annotations(annotations)
    return annotations


def format_template(obj: Mapping[str, Any], key: str) -> Any:
    """Return the value of ``key`` in a form suitable for comparison."""
    if key == "metadata":
        metadata = obj.get(key)
        if not isinstance(metadata, Mapping):
            return {}
        return format_metadata(metadata)
    return obj.get(key)


def format_metadata(metadata: Mapping[str, Any]) -> dict[str, Any]:
    """Keep only labels and (filtered) annotations from the metadata."""
    formatted: dict[str, Any] = {}
    if "labels" in metadata:
        formatted["labels"] = metadata["labels"]
    if "annotations" in metadata:
        formatted["annotations"] = _format_annotations(metadata["annotations"])
    return formatted


def fmt_metadata_for_compare(
    template: Mapping[str, Any], existing: Mapping[str, Any]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Reduce template and existing metadata to the fields the template sets."""
    md_template: dict[str, Any] = {}
    md_existing: dict[str, Any] = {}

    if "labels" in template:
        md_template["labels"] = template["labels"]
        if "labels" in existing:
            md_existing["labels"] = existing["labels"]

    if "annotations" in template:
        md_template["annotations"] = _format_annotations(template["annotations"])
        if "annotations" in existing:
            md_existing["annotations"] = _format_annotations(existing["annotations"])

    return md_template, md_existing


def identifier_str(names: Iterable[str], namespace: str) -> str:
    """Describe sorted object names and their namespace, if any."""
    name_str = "[" + ", ".join(sorted(names)) + "]"
    if name_str == "[]":
        name_str = ""
    if namespace:
        if name_str:
            name_str += " "
        name_str += "in namespace " + namespace
    return name_str


def _finalizers(obj: Mapping[str, Any]) -> list[str]:
    metadata = obj.get("metadata") or {}
    return list(metadata.get("finalizers") or [])


def obj_has_finalizer(obj: Mapping[str, Any], finalizer: str) -> bool:
    """Whether the object's metadata lists ``finalizer``."""
    return finalizer in _finalizers(obj)


def remove_obj_finalizer_patch(obj: Mapping[str, Any], finalizer: str) -> bytes | None:
    """Return a JSON patch removing ``finalizer``, or None if it is absent."""
    for index, existing in enumerate(_finalizers(obj)):
        if existing == finalizer:
            return (
                '[{"op":"remove","path":"/metadata/finalizers/' + str(index) + '"}]'
            ).encode()
    return None