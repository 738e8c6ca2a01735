"""In-process metrics for policy evaluation and related-object tracking."""

from __future__ import annotations

import bisect
import logging
import math
import threading
from collections.abc import Iterable, Sequence

from configpolicy.related import RelatedObject

__all__ = [
    "Histogram",
    "CounterVec",
    "GaugeVec",
    "RelatedObjectTracker",
    "get_object_string",
    "eval_loop_histogram",
    "policy_eval_seconds_counter",
    "policy_eval_counter",
    "plc_temps_process_seconds_counter",
    "plc_temps_process_counter",
    "compare_obj_seconds_counter",
    "compare_obj_eval_counter",
    "policy_related_object_gauge",
    "policy_user_errors_counter",
    "policy_system_errors_counter",
    "ALL_METRICS",
]

logger = logging.getLogger(__name__)


class Histogram:
    """Counts observations into cumulative buckets with inclusive upper bounds."""

    def __init__(self, name: str, help_text: str, buckets: Sequence[float]) -> None:
        bounds = [float(b) for b in buckets]
        if any(later <= earlier for earlier, later in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be in strictly increasing order")
        if bounds and math.isinf(bounds[-1]):
            bounds.pop()
        self.name = name
        self.help = help_text
        self.buckets = tuple(bounds)
        self._counts = [0] * (len(bounds) + 1)
        self._sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        """Record one observation."""
        index = bisect.bisect_left(self.buckets, value)
        with self._lock:
            self._counts[index] += 1
            self._sum += value

    @property
    def count(self) -> int:
        with self._lock:
            return sum(self._counts)

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def bucket_counts(self) -> dict[float, int]:
        """Cumulative counts per upper bound, ending with infinity."""
        with self._lock:
            counts = list(self._counts)
        result: dict[float, int] = {}
        running = 0
        for bound, count in zip((*self.buckets, math.inf), counts):
            running += count
            result[bound] = running
        return result


class _LabelledMetric:
    def __init__(self, name: str, help_text: str, label_names: Iterable[str]) -> None:
        self.name = name
        self.help = help_text
        self.label_names = tuple(label_names)
        self._values: dict[tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Sequence[object]) -> tuple[str, ...]:
        if len(labels) != len(self.label_names):
            raise ValueError(
                f"inconsistent label cardinality: expected {len(self.label_names)} "
                f"label values but got {len(labels)} in {list(labels)!r}"
            )
        return tuple(str(label) for label in labels)

    def labels(self) -> list[tuple[str, ...]]:
        """The label value combinations that currently hold a value."""
        with self._lock:
            return list(self._values)


class CounterVec(_LabelledMetric):
    """Monotonic counters keyed by label values."""

    def inc(self, *args: object, amount: float = 1.0) -> None:
        """Add ``amount`` to the counter for the given label values."""
        if amount < 0:
            raise ValueError("counter cannot decrease in value")
        key = self._key(args)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def value(self, *args: object) -> float:
        """Current value for the given label values; zero if never incremented."""
        key = self._key(args)
        with self._lock:
            return self._values.get(key, 0.0)


class GaugeVec(_LabelledMetric):
    """Gauges keyed by label values."""

    def set(self, *args: object, value: float) -> None:
        """Set the gauge for the given label values."""
        key = self._key(args)
        with self._lock:
            self._values[key] = float(value)

    def get(self, *args: object) -> float | None:
        """Current value for the given label values, or None if unset."""
        key = self._key(args)
        with self._lock:
            return self._values.get(key)

    def delete(self, *args: object) -> bool:
        """Remove the gauge for the given label values; True if one was removed."""
        key = self._key(args)
        with self._lock:
            return self._values.pop(key, None) is not None


def get_object_string(obj: RelatedObject) -> str:
    """Return ``<kind>.<version>/<namespace>/<name>`` for a related object."""
    resource = obj.object
    return (
        f"{resource.kind}.{resource.api_version}/"
        f"{resource.metadata.namespace}/{resource.metadata.name}"
    )


eval_loop_histogram = Histogram(
    "config_policies_evaluation_duration_seconds",
    "The seconds that it takes to evaluate all configuration policies on the cluster",
    [1, 3, 9, 10.5, 15, 30, 60, 90, 120, 180, 300, 450, 600],
)
policy_eval_seconds_counter = CounterVec(
    "config_policy_evaluation_seconds_total",
    "The total seconds taken while evaluating the configuration policy. Use this alongside "
    "config_policy_evaluation_total.",
    ["name"],
)
policy_eval_counter = CounterVec(
    "config_policy_evaluation_total",
    "The total number of evaluations of the configuration policy. Use this alongside "
    "config_policy_evaluation_seconds_total.",
    ["name"],
)
plc_temps_process_seconds_counter = CounterVec(
    "config_policy_templates_process_seconds_total",
    "The total seconds taken while processing the configuration policy templates. "
    "Use this alongside config_policy_templates_process_total.",
    ["name"],
)
plc_temps_process_counter = CounterVec(
    "config_policy_templates_process_total",
    "The total number of processes of the configuration policy templates. Use this "
    "alongside config_policy_templates_process_seconds_total.",
    ["name"],
)
compare_obj_seconds_counter = CounterVec(
    "compare_objects_seconds_total",
    "The total seconds taken while comparing policy objects. Use this alongside "
    "compare_objects_evaluation_total.",
    ["config_policy_name", "namespace", "object"],
)
compare_obj_eval_counter = CounterVec(
    "compare_objects_evaluation_total",
    "The total number of times the comparison algorithm is run on an object. "
    "Use this alongside compare_objects_seconds_total.",
    ["config_policy_name", "namespace", "object"],
)
policy_related_object_gauge = GaugeVec(
    "common_related_objects",
    "A gauge vector of related objects managed by multiple policies.",
    ["relatedObject", "policy"],
)
policy_user_errors_counter = CounterVec(
    "policy_user_errors_total",
    "The number of user errors encountered while processing policies",
    ["policy", "template", "type"],
)
policy_system_errors_counter = CounterVec(
    "policy_system_errors_total",
    "The number of system errors encountered while processing policies",
    ["policy", "template", "type"],
)

ALL_METRICS = (
    eval_loop_histogram,
    policy_eval_seconds_counter,
    policy_eval_counter,
    plc_temps_process_seconds_counter,
    plc_temps_process_counter,
    compare_obj_seconds_counter,
    compare_obj_eval_counter,
    policy_related_object_gauge,
    policy_user_errors_counter,
    policy_system_errors_counter,
)


class RelatedObjectTracker:
    """Maps each related object to the policies that handle it and feeds a gauge."""

    def __init__(self, gauge: GaugeVec | None = None) -> None:
        self.gauge = policy_related_object_gauge if gauge is None else gauge
        self._objects: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def record(self, related_object: RelatedObject, policy: str) -> tuple[str, ...]:
        """Note that ``policy`` handles the object; return the policies that do."""
        key = get_object_string(related_object)
        with self._lock:
            policies = self._objects.setdefault(key, [])
            if policy not in policies:
                policies.append(policy)
            return tuple(policies)

    @property
    def related_objects(self) -> dict[str, tuple[str, ...]]:
        with self._lock:
            return {key: tuple(policies) for key, policies in self._objects.items()}

    def update_metric(self) -> None:
        """Set the gauge for objects handled by several policies and clear the rest."""
        logger.debug("Updating common_related_objects metric ...")
        for related, policies in self.related_objects.items():
            for policy in policies:
                try:
                    if len(policies) == 1:
                        self.gauge.delete(related, policy)
                        continue
                    self.gauge.set(related, policy, value=float(len(policies)))
                except ValueError:
                    logger.debug("Failed to retrieve related object gauge", exc_info=True)