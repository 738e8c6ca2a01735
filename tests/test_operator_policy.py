import copy

import pytest

from configpolicy.encryption import NotFoundError
from configpolicy.operator_policy import (
    GroupVersionKind,
    OperatorGroup,
    OperatorGroupSpec,
    OperatorPolicy,
    OperatorPolicyReconciler,
    ReconcileResult,
    Subscription,
    SubscriptionSpec,
    build_operator_group,
    build_subscription,
)
from configpolicy.related import ComplianceState


def make_policy(**overrides):
    values = dict(
        name="my-policy",
        namespace="default",
        severity="low",
        remediation_action="enforce",
        compliance_type="musthave",
        subscription=SubscriptionSpec(
            channel="stable",
            package="my-operator",
            install_plan_approval="Automatic",
            catalog_source="my-catalog",
            catalog_source_namespace="my-ns",
            starting_csv="my-operator-v1",
            namespace="default",
        ),
    )
    values.update(overrides)
    return OperatorPolicy(**values)


class FakeClient:
    def __init__(self, policy=None, get_error=None, create_error=None, status_error=None):
        self.policy = policy
        self.get_error = get_error
        self.create_error = create_error
        self.status_error = status_error
        self.created = []
        self.status_updates = []

    def get_policy(self, namespace, name):
        if self.get_error is not None:
            raise self.get_error
        if self.policy is None:
            raise NotFoundError("operatorpolicies", name)
        return copy.deepcopy(self.policy)

    def create(self, obj):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(obj)

    def update_status(self, policy):
        if self.status_error is not None:
            raise self.status_error
        self.status_updates.append(policy.compliance_state)


class FakeWatcher:
    def __init__(self, subscription=None, groups=None, start_error=None):
        self.subscription = subscription
        self.groups = groups or []
        self.start_error = start_error
        self.calls = []
        self.listed_namespaces = []

    def remove_watcher(self, watcher):
        self.calls.append(("remove", watcher.name))

    def start_query_batch(self, watcher):
        if self.start_error is not None:
            raise self.start_error
        self.calls.append(("start", watcher.name))

    def end_query_batch(self, watcher):
        self.calls.append(("end", watcher.name))

    def get(self, watcher, gvk, namespace, name):
        return self.subscription

    def list(self, watcher, gvk, namespace):
        self.listed_namespaces.append(namespace)
        return self.groups


def test_build_subscription():
    policy = make_policy()
    ret = build_subscription(policy)
    assert ret.gvk == GroupVersionKind("operators.coreos.com", "v1alpha1", "Subscription")
    assert ret.name == "my-operator"
    assert ret.namespace == "default"
    assert ret.spec == policy.subscription
    assert ret.spec is not policy.subscription


def test_build_operator_group_default():
    ret = build_operator_group(make_policy())
    assert ret.gvk == GroupVersionKind("operators.coreos.com", "v1", "OperatorGroup")
    assert ret.name == "my-operator-default-og"
    assert ret.namespace == "default"
    assert ret.target_namespaces == []


def test_build_operator_group_specified():
    policy = make_policy(
        operator_group=OperatorGroupSpec(
            name="my-og", namespace="ops", target_namespaces=["a", "b"]
        )
    )
    ret = build_operator_group(policy)
    assert (ret.name, ret.namespace, ret.target_namespaces) == ("my-og", "ops", ["a", "b"])


def test_subscription_manifest():
    manifest = build_subscription(make_policy()).to_manifest()
    assert manifest == {
        "apiVersion": "operators.coreos.com/v1alpha1",
        "kind": "Subscription",
        "metadata": {"name": "my-operator", "namespace": "default"},
        "spec": {
            "source": "my-catalog",
            "sourceNamespace": "my-ns",
            "name": "my-operator",
            "channel": "stable",
            "startingCSV": "my-operator-v1",
            "installPlanApproval": "Automatic",
        },
    }


def test_operator_group_manifest():
    manifest = OperatorGroup(name="og", namespace="ns", target_namespaces=["x"]).to_manifest()
    assert manifest["apiVersion"] == "operators.coreos.com/v1"
    assert manifest["spec"] == {"targetNamespaces": ["x"]}


def test_reconcile_missing_policy_removes_watcher():
    watcher = FakeWatcher()
    result = OperatorPolicyReconciler(FakeClient(), watcher).reconcile("default", "gone")
    assert result == ReconcileResult(requeue=False)
    assert watcher.calls == [("remove", "gone")]


def test_reconcile_get_error_propagates():
    client = FakeClient(get_error=RuntimeError("boom"))
    with pytest.raises(RuntimeError, match="boom"):
        OperatorPolicyReconciler(client, FakeWatcher()).reconcile("default", "my-policy")


def test_reconcile_start_batch_error_propagates():
    client = FakeClient(policy=make_policy())
    watcher = FakeWatcher(start_error=RuntimeError("no batch"))
    with pytest.raises(RuntimeError, match="no batch"):
        OperatorPolicyReconciler(client, watcher).reconcile("default", "my-policy")


def test_reconcile_enforce_creates_operator_group_first():
    client = FakeClient(policy=make_policy())
    watcher = FakeWatcher()
    result = OperatorPolicyReconciler(client, watcher).reconcile("default", "my-policy")
    assert result.requeue is True
    assert len(client.created) == 1
    assert isinstance(client.created[0], OperatorGroup)
    assert client.created[0].name == "my-operator-default-og"
    assert client.status_updates == [ComplianceState.NON_COMPLIANT]
    assert watcher.calls == [("start", "my-policy"), ("end", "my-policy")]


def test_reconcile_enforce_creates_subscription_when_group_exists():
    client = FakeClient(policy=make_policy())
    watcher = FakeWatcher(groups=[{"metadata": {"name": "og"}}])
    result = OperatorPolicyReconciler(client, watcher).reconcile("default", "my-policy")
    assert result.requeue is False
    assert len(client.created) == 1
    assert isinstance(client.created[0], Subscription)
    assert client.status_updates == [ComplianceState.COMPLIANT]


def test_reconcile_inform_sets_noncompliant_without_creating():
    client = FakeClient(policy=make_policy(remediation_action="inform"))
    result = OperatorPolicyReconciler(client, FakeWatcher()).reconcile("default", "my-policy")
    assert result.requeue is False
    assert client.created == []
    assert client.status_updates == [ComplianceState.NON_COMPLIANT]


def test_reconcile_inform_with_operator_group_reports_twice():
    policy = make_policy(
        remediation_action="Inform",
        operator_group=OperatorGroupSpec(name="og", namespace="ops"),
    )
    client = FakeClient(policy=policy)
    watcher = FakeWatcher()
    OperatorPolicyReconciler(client, watcher).reconcile("default", "my-policy")
    assert watcher.listed_namespaces == ["ops"]
    assert client.status_updates == [
        ComplianceState.NON_COMPLIANT,
        ComplianceState.NON_COMPLIANT,
    ]


def test_reconcile_existing_resources_do_nothing():
    client = FakeClient(policy=make_policy())
    watcher = FakeWatcher(subscription={"kind": "Subscription"}, groups=[{"kind": "OperatorGroup"}])
    result = OperatorPolicyReconciler(client, watcher).reconcile("default", "my-policy")
    assert result == ReconcileResult()
    assert client.created == []
    assert client.status_updates == []


def test_reconcile_mustnothave_does_not_create():
    client = FakeClient(policy=make_policy(compliance_type="mustnothave"))
    result = OperatorPolicyReconciler(client, FakeWatcher()).reconcile("default", "my-policy")
    assert result.requeue is False
    assert client.created == []


def test_create_failure_raises_and_marks_noncompliant():
    client = FakeClient(policy=make_policy(), create_error=RuntimeError("denied"))
    watcher = FakeWatcher()
    with pytest.raises(RuntimeError, match="denied"):
        OperatorPolicyReconciler(client, watcher).reconcile("default", "my-policy")
    assert client.status_updates == [ComplianceState.NON_COMPLIANT]
    assert ("end", "my-policy") in watcher.calls


def test_set_compliance_swallows_status_errors():
    policy = make_policy()
    client = FakeClient(policy=policy, status_error=RuntimeError("conflict"))
    reconciler = OperatorPolicyReconciler(client, FakeWatcher())
    reconciler.set_compliance(policy, ComplianceState.COMPLIANT)
    assert policy.compliance_state is ComplianceState.COMPLIANT


def test_set_compliance_refreshes_policy_but_keeps_status():
    stored = make_policy(severity="high")
    client = FakeClient(policy=stored)
    local = make_policy(severity="low")
    OperatorPolicyReconciler(client, FakeWatcher()).set_compliance(
        local, ComplianceState.NON_COMPLIANT
    )
    assert local.severity == "high"
    assert local.compliance_state is ComplianceState.NON_COMPLIANT
    assert client.status_updates == [ComplianceState.NON_COMPLIANT]


def test_create_policy_resources_direct_call_enforce_subscription_only():
    client = FakeClient(policy=make_policy())
    reconciler = OperatorPolicyReconciler(client, FakeWatcher())
    result = reconciler.create_policy_resources(make_policy(), None, [{"kind": "OperatorGroup"}])
    assert result == ReconcileResult(requeue=False)
    assert [type(obj) for obj in client.created] == [Subscription]