# configpolicy

Building blocks for a controller that checks Kubernetes objects against
configuration and operator policies. Objects are handled as plain decoded JSON
(dicts, lists, strings, numbers); the package has no dependencies outside the
standard library.

## Modules

### `configpolicy.quantity`

`parse_quantity(text)` parses resource quantities such as `512Mi`, `1.5G`,
`100m` or `1e3` into a `Quantity`, holding an exact `Decimal` amount and the
`QuantityFormat` it was written in. Two quantities are equal when their amounts
are equal, so `parse_quantity("1Gi") == parse_quantity("1024Mi")`. Malformed
text raises `QuantityError` (a `ValueError`). Amounts finer than one nano-unit
are rounded away from zero, and binary amounts are capped at the largest signed
64-bit integer.

### `configpolicy.compare`

Decides whether an existing object matches what a policy asks for:

- `equal_obj_with_sort(merged, old, zero_value_equals_nil)` dispatches on the
  type of `merged`; with `zero_value_equals_nil`, a missing value equals an
  empty string, zero, `false` or an empty map.
- `check_fields_with_sort(merged, old, zero_value_equals_nil)` checks every
  field of `merged` against `old`. Strings that parse as quantities are
  compared as quantities; empty lists in `merged` match missing fields.
- `check_lists_match(old, merged)` compares lists regardless of item order.
- `sort_and_sprint(item)` and `go_sprint(value)` give the text forms used for
  sorting and scalar comparison (`<nil>`, `true`, `map[k:v ...]`, `[a b]`).

### `configpolicy.related`

`RelatedObject` records (with `ObjectResource`, `ObjectMetadata`,
`ObjectProperties`) that report per-object compliance, and
`ComplianceState` (`Compliant` / `NonCompliant`). `GroupVersionResource`
gives the API version through `group_version()`.

- `add_related_objects(...)` builds one entry per object name.
- `add_condensed_related_objs(...)` builds a single entry named `*`.
- `update_related_objects_status(objects, related_object)` returns a new list
  with the entry added, or replacing an entry for the same object whose
  compliance differs.
- `contain_related(related, candidate)` tells whether an entry refers to the
  same object.

### `configpolicy.metadata`

- `unmarshal_from_json(raw)` decodes a JSON object (`null` gives `{}`).
- `format_metadata`, `format_template` and `fmt_metadata_for_compare` reduce
  metadata to labels and annotations, dropping the
  `kubectl.kubernetes.io/last-applied-configuration` annotation
  (`filter_unwanted_annotations`).
- `identifier_str(names, namespace)` gives text such as
  `[a, b] in namespace default`.
- `obj_has_finalizer(obj, finalizer)` and
  `remove_obj_finalizer_patch(obj, finalizer)`, which returns a JSON patch as
  bytes, or `None` if the finalizer is absent.

### `configpolicy.encryption`

`EncryptionKeyProvider(get_secret, decryption_concurrency=0)` reads the keys
from the `policy-encryption-key` secret in the policy's namespace through the
`get_secret(namespace, name)` callable you supply, which returns the secret's
data and raises `NotFoundError` when it is missing. The keys are cached as a
`CachedEncryptionKey`.

`get_encryption_config(policy, force_refresh=False)` returns an
`EncryptionConfig` and whether the cached key was used. It raises
`EncryptionError` if the policy's
`policy.open-cluster-management.io/encryption-iv` annotation is not Base64 or
the secret cannot be read. `uses_encryption(policy)` tells whether that
annotation is set.

### `configpolicy.metrics`

Thread-safe in-process metrics: `Histogram` (`observe`, `count`, `sum`,
`bucket_counts`), `CounterVec` (`inc`, `value`) and `GaugeVec` (`set`, `get`,
`delete`), plus the predefined metrics listed in `ALL_METRICS`.
`RelatedObjectTracker` records which policies handle each related object
(keyed by `get_object_string`, `<kind>.<apiVersion>/<namespace>/<name>`).
`update_metric()` sets the `common_related_objects` gauge to the number of
policies for objects handled by more than one, and clears the gauge for the
rest.

### `configpolicy.operator_policy`

`OperatorPolicy` describes an operator through a `SubscriptionSpec` and an
optional `OperatorGroupSpec`. `build_subscription(policy)` and
`build_operator_group(policy)` produce `Subscription` and `OperatorGroup`
objects, with `to_manifest()` for their dict form. When the policy names no
group, the default one is called `<package>-default-og` and has no target
namespaces.

`OperatorPolicyReconciler(client, watcher)` runs one evaluation with
`reconcile(namespace, name)` and returns a `ReconcileResult`:

- `client` provides `get_policy(namespace, name)` (raising `NotFoundError`
  when the policy is gone), `create(obj)` and `update_status(policy)`.
- `watcher` provides `remove_watcher`, `start_query_batch`,
  `end_query_batch`, `get(watcher, gvk, namespace, name)` and
  `list(watcher, gvk, namespace)`.

For a `musthave` policy in `enforce` mode, the reconciler first creates a
missing OperatorGroup and asks to be requeued. It then creates a missing
Subscription and marks the policy compliant. In `inform` mode it only marks the
policy non-compliant.

## Example

```python
from configpolicy.compare import equal_obj_with_sort
from configpolicy.quantity import parse_quantity

existing = {"verbs": ["get", "list"], "memory": "1Gi"}
wanted = {"verbs": ["list", "get"], "memory": "1024Mi", "apiGroups": []}

assert equal_obj_with_sort(wanted, existing, True)
assert parse_quantity("1Gi") == parse_quantity("1024Mi")
```

## What it does not do

The package has no command-line program and no cluster connection. Reading
secrets, fetching policies, creating objects and watching the cluster are all
done by the callables and objects you pass in. The metrics live in memory only
and are not served over HTTP. The package does not evaluate a full
configuration policy or resolve templates: it supplies the comparison, status
and remediation pieces such an evaluator uses.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```