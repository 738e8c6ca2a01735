"""Reconciliation of operator policies into OLM Subscriptions and OperatorGroups."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Protocol

from configpolicy.encryption import NotFoundError
from configpolicy.related import ComplianceState

__all__ = [
    "OPERATOR_CONTROLLER_NAME",
    "DEFAULT_OG_SUFFIX",
    "SUBSCRIPTION_GVK",
    "OPERATOR_GROUP_GVK",
    "GroupVersionKind",
    "SubscriptionSpec",
    "OperatorGroupSpec",
    "OperatorPolicy",
    "Subscription",
    "OperatorGroup",
    "ReconcileResult",
    "OperatorPolicyReconciler",
    "build_subscription",
    "build_operator_group",
]

OPERATOR_CONTROLLER_NAME = "operator-policy-controller"
DEFAULT_OG_SUFFIX = "-default-og"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupVersionKind:
    """An API group, version and kind."""

    group: str
    version: str
    kind: str


SUBSCRIPTION_GVK = GroupVersionKind("operators.coreos.com", "v1alpha1", "Subscription")
OPERATOR_GROUP_GVK = GroupVersionKind("operators.coreos.com", "v1", "OperatorGroup")
_OPERATOR_POLICY_GVK = GroupVersionKind("operators.coreos.com", "v1", "OperatorPolicy")


def _api_version(gvk: GroupVersionKind) -> str:
    return f"{gvk.group}/{gvk.version}" if gvk.group else gvk.version


@dataclass
class SubscriptionSpec:
    """The subscription an operator policy asks for, and the namespace it lives in."""

    package: str
    namespace: str
    channel: str = ""
    install_plan_approval: str = ""
    catalog_source: str = ""
    catalog_source_namespace: str = ""
    starting_csv: str = ""
    config: dict[str, Any] | None = None

    def to_manifest(self) -> dict[str, Any]:
        """The subscription spec as it appears in a Subscription object."""
        spec: dict[str, Any] = {
            "source": self.catalog_source,
            "sourceNamespace": self.catalog_source_namespace,
            "name": self.package,
        }
        if self.channel:
            spec["channel"] = self.channel
        if self.starting_csv:
            spec["startingCSV"] = self.starting_csv
        if self.install_plan_approval:
            spec["installPlanApproval"] = self.install_plan_approval
        if self.config:
            spec["config"] = copy.deepcopy(self.config)
        return spec


@dataclass
class OperatorGroupSpec:
    """The OperatorGroup an operator policy asks for."""

    name: str
    namespace: str
    target_namespaces: list[str] = field(default_factory=list)


@dataclass
class OperatorPolicy:
    """A policy describing an operator that should or should not be installed."""

    name: str
    namespace: str
    subscription: SubscriptionSpec
    severity: str = ""
    remediation_action: str = "inform"
    compliance_type: str = "musthave"
    operator_group: OperatorGroupSpec | None = None
    compliance_state: ComplianceState | None = None


@dataclass
class Subscription:
    """A Subscription object ready to be created."""

    name: str
    namespace: str
    spec: SubscriptionSpec
    gvk: GroupVersionKind = SUBSCRIPTION_GVK

    def to_manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": _api_version(self.gvk),
            "kind": self.gvk.kind,
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": self.spec.to_manifest(),
        }


@dataclass
class OperatorGroup:
    """An OperatorGroup object ready to be created."""

    name: str
    namespace: str
    target_namespaces: list[str] = field(default_factory=list)
    gvk: GroupVersionKind = OPERATOR_GROUP_GVK

    def to_manifest(self) -> dict[str, Any]:
        spec: dict[str, Any] = {}
        if self.target_namespaces:
            spec["targetNamespaces"] = list(self.target_namespaces)
        return {
            "apiVersion": _api_version(self.gvk),
            "kind": self.gvk.kind,
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": spec,
        }


@dataclass(frozen=True)
class ReconcileResult:
    """The outcome of one reconciliation: whether it should run again."""

    requeue: bool = False


@dataclass(frozen=True)
class _WatcherId:
    group: str
    version: str
    kind: str
    namespace: str
    name: str


class _PolicyClient(Protocol):
    def get_policy(self, namespace: str, name: str) -> OperatorPolicy: ...

    def create(self, obj: Subscription | OperatorGroup) -> None: ...

    def update_status(self, policy: OperatorPolicy) -> None: ...


class _DynamicWatcher(Protocol):
    def remove_watcher(self, watcher: _WatcherId) -> None: ...

    def start_query_batch(self, watcher: _WatcherId) -> None: ...

    def end_query_batch(self, watcher: _WatcherId) -> None: ...

    def get(
        self, watcher: _WatcherId, gvk: GroupVersionKind, namespace: str, name: str
    ) -> dict[str, Any] | None: ...

    def list(
        self, watcher: _WatcherId, gvk: GroupVersionKind, namespace: str
    ) -> list[dict[str, Any]]: ...


def build_subscription(policy: OperatorPolicy) -> Subscription:
    """Build the Subscription described by the policy."""
    spec = policy.subscription
    subscription = Subscription(
        name=spec.package,
        namespace=spec.namespace,
        spec=copy.deepcopy(spec),
    )
    logger.info(
        "Creating the subscription (kind=%s, namespace=%s)",
        subscription.gvk.kind,
        subscription.namespace,
    )
    return subscription


def build_operator_group(policy: OperatorPolicy) -> OperatorGroup:
    """Build the OperatorGroup the policy names, or a default all-namespaces one."""
    if policy.operator_group is None:
        group = OperatorGroup(
            name=policy.subscription.package + DEFAULT_OG_SUFFIX,
            namespace=policy.subscription.namespace,
            target_namespaces=[],
        )
    else:
        group = OperatorGroup(
            name=policy.operator_group.name,
            namespace=policy.operator_group.namespace,
            target_namespaces=list(policy.operator_group.target_namespaces),
        )
    logger.info(
        "Creating the operator group (kind=%s, namespace=%s)",
        group.gvk.kind,
        group.namespace,
    )
    return group


def _is_enforce(policy: OperatorPolicy) -> bool:
    return policy.remediation_action.lower() == "enforce"


class OperatorPolicyReconciler:
    """Brings the cluster in line with operator policies.

    ``client`` fetches policies (raising NotFoundError when one is missing),
    creates objects and updates policy status. ``watcher`` caches and watches
    the Subscriptions and OperatorGroups a policy refers to.
    """

    def __init__(self, client: _PolicyClient, watcher: _DynamicWatcher) -> None:
        self.client = client
        self.watcher = watcher

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Evaluate the named policy and create missing resources when enforcing."""
        watcher_id = _WatcherId(
            group=_OPERATOR_POLICY_GVK.group,
            version=_OPERATOR_POLICY_GVK.version,
            kind=_OPERATOR_POLICY_GVK.kind,
            namespace=namespace,
            name=name,
        )

        try:
            policy = self.client.get_policy(namespace, name)
        except NotFoundError:
            logger.info(
                "Operator policy could not be found (name=%s, namespace=%s)", name, namespace
            )
            try:
                self.watcher.remove_watcher(watcher_id)
            except Exception:
                logger.exception("Error updating dependency watcher. Ignoring the failure.")
            return ReconcileResult()

        self.watcher.start_query_batch(watcher_id)
        try:
            return self._reconcile_policy(watcher_id, policy)
        finally:
            try:
                self.watcher.end_query_batch(watcher_id)
            except Exception:
                logger.exception(
                    "Could not end query batch for the watcher (watcher=%s)", watcher_id.name
                )

    def _reconcile_policy(self, watcher_id: _WatcherId, policy: OperatorPolicy) -> ReconcileResult:
        logger.info("Reconciling OperatorPolicy (policy=%s)", policy.name)
        sub_spec = policy.subscription

        cached_subscription = self.watcher.get(
            watcher_id, SUBSCRIPTION_GVK, sub_spec.namespace, sub_spec.package
        )
        og_namespace = (
            policy.operator_group.namespace
            if policy.operator_group is not None
            else sub_spec.namespace
        )
        cached_groups = list(self.watcher.list(watcher_id, OPERATOR_GROUP_GVK, og_namespace))

        exists = cached_subscription is not None and bool(cached_groups)
        should_exist = policy.compliance_type.lower() == "musthave"

        if not exists and should_exist:
            logger.info("The object does not exist but should exist")
            return self.create_policy_resources(policy, cached_subscription, cached_groups)
        if exists and not should_exist:
            logger.info("The object exists but should not exist")
        elif not exists:
            logger.info(
                "The object does not exist and is compliant with the mustnothave compliance type"
            )
        else:
            logger.info("The object already exists. Checking fields to verify matching specs")
        return ReconcileResult()

    def create_policy_resources(
        self,
        policy: OperatorPolicy,
        cached_subscription: dict[str, Any] | None,
        cached_operator_groups: list[dict[str, Any]],
    ) -> ReconcileResult:
        """Create the OperatorGroup, then the Subscription, as the policy requires."""
        if not cached_operator_groups:
            if _is_enforce(policy):
                group = build_operator_group(policy)
                try:
                    self.client.create(group)
                except Exception:
                    logger.exception("Error while creating OperatorGroup")
                    self.set_compliance(policy, ComplianceState.NON_COMPLIANT)
                    raise
                self.set_compliance(policy, ComplianceState.NON_COMPLIANT)
                return ReconcileResult(requeue=True)
            if policy.operator_group is not None:
                self.set_compliance(policy, ComplianceState.NON_COMPLIANT)

        if cached_subscription is None:
            if _is_enforce(policy):
                subscription = build_subscription(policy)
                try:
                    self.client.create(subscription)
                except Exception:
                    logger.exception("Could not handle missing musthave object")
                    self.set_compliance(policy, ComplianceState.NON_COMPLIANT)
                    raise
                self.set_compliance(policy, ComplianceState.COMPLIANT)
                return ReconcileResult()
            self.set_compliance(policy, ComplianceState.NON_COMPLIANT)

        return ReconcileResult()

    def set_compliance(self, policy: OperatorPolicy, compliance: ComplianceState) -> None:
        """Record the compliance on the policy and push its status; failures are logged."""
        policy.compliance_state = compliance
        try:
            self._update_policy_status(policy)
        except Exception:
            logger.exception("error while updating policy status")

    def _update_policy_status(self, policy: OperatorPolicy) -> None:
        updated_status = policy.compliance_state
        try:
            fresh = self.client.get_policy(policy.namespace, policy.name)
        except Exception as exc:
            logger.info("Failed to refresh policy; using previously fetched version: %s", exc)
        else:
            for item in fields(fresh):
                setattr(policy, item.name, getattr(fresh, item.name))
            policy.compliance_state = updated_status

        try:
            self.client.update_status(policy)
        except Exception as exc:
            logger.info("Failed to update policy status: %s", exc)
            raise