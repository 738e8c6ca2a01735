"""Order-insensitive comparison of decoded object trees."""

from __future__ import annotations

import math
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from configpolicy.quantity import QuantityError, parse_quantity

__all__ = [
    "go_sprint",
    "sort_and_sprint",
    "equal_obj_with_sort",
    "check_fields_with_sort",
    "check_lists_match",
]


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"

    sign = "-" if value < 0 else ""
    parts = Decimal(repr(abs(value))).as_tuple()
    raw = "".join(str(d) for d in parts.digits)
    digits = raw.rstrip("0")
    exponent = parts.exponent + (len(raw) - len(digits))
    count = len(digits)
    point = count + exponent
    exp10 = point - 1

    if exp10 < -4 or exp10 >= 6:
        mantissa = digits[0] + ("." + digits[1:] if count > 1 else "")
        exp_sign = "+" if exp10 >= 0 else "-"
        return f"{sign}{mantissa}e{exp_sign}{abs(exp10):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= count:
        return f"{sign}{digits}{'0' * (point - count)}"
    return f"{sign}{digits[:point]}.{digits[point:]}"


def go_sprint(value: Any) -> str:
    """Render a value the way the default text formatting of decoded JSON does."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        entries = sorted((go_sprint(k), go_sprint(v)) for k, v in value.items())
        return "map[" + " ".join(f"{k}:{v}" for k, v in entries) + "]"
    if _is_list(value):
        return "[" + " ".join(go_sprint(v) for v in value) + "]"
    return str(value)


def sort_and_sprint(item: Any) -> str:
    """Render a value as text with every nested list sorted."""
    if isinstance(item, Mapping):
        entries = sorted((go_sprint(k), sort_and_sprint(v)) for k, v in item.items())
        return "map[" + " ".join(f"{k}:{v}" for k, v in entries) + "]"
    if _is_list(item):
        return "[" + " ".join(sorted(sort_and_sprint(v) for v in item)) + "]"
    return go_sprint(item)


def _zero_value(value: Any) -> Any:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return 0
    if isinstance(value, float):
        return 0.0
    if isinstance(value, str):
        return ""
    if isinstance(value, Mapping):
        return {}
    if _is_list(value):
        return []
    return None


def equal_obj_with_sort(merged: Any, old: Any, zero_value_equals_nil: bool) -> bool:
    """Compare two values, dispatching on the type of ``merged``."""
    if isinstance(merged, Mapping):
        if isinstance(old, Mapping):
            return check_fields_with_sort(merged, old, zero_value_equals_nil)
        return False

    if _is_list(merged):
        if len(merged) == 0 and old is None:
            return True
        if _is_list(old):
            return check_lists_match(merged, old)
        return False

    if zero_value_equals_nil:
        if old is None and merged is not None:
            return go_sprint(_zero_value(merged)) == go_sprint(merged)
        if merged is None and old is not None:
            return go_sprint(_zero_value(old)) == go_sprint(old)

    return go_sprint(merged) == go_sprint(old)


def _strings_match(key: Any, value: str, old: Mapping) -> bool:
    try:
        merged_qty = parse_quantity(value)
    except QuantityError:
        if key not in old:
            return False
        return go_sprint(old[key]) == value

    old_value = old.get(key)
    if not isinstance(old_value, str):
        return False
    try:
        return parse_quantity(old_value) == merged_qty
    except QuantityError:
        return False


def check_fields_with_sort(
    merged: Mapping, old: Mapping, zero_value_equals_nil: bool
) -> bool:
    """Check that every field of ``merged`` matches ``old``, ignoring list order."""
    if len(merged) < len(old):
        return False

    for key, m_val in merged.items():
        if isinstance(m_val, Mapping):
            o_val = old.get(key)
            if not isinstance(o_val, Mapping):
                if zero_value_equals_nil and len(m_val) == 0:
                    continue
                return False
            if not check_fields_with_sort(m_val, o_val, zero_value_equals_nil):
                return False
        elif _is_list(m_val):
            o_val = old.get(key)
            if not _is_list(o_val):
                if len(m_val) == 0:
                    continue
                return False
            if len(m_val) != len(o_val) or not check_lists_match(o_val, m_val):
                return False
        elif isinstance(m_val, str):
            if not _strings_match(key, m_val, old):
                return False
        else:
            o_val = old.get(key)
            if o_val is None and m_val is not None:
                o_val = _zero_value(m_val)
            if go_sprint(o_val) != go_sprint(m_val):
                return False

    return True


def check_lists_match(old: Any, merged: Any) -> bool:
    """Check that two lists hold matching items regardless of their order."""
    if (old is None) != (merged is None):
        return False
    old_items = list(old or ())
    merged_items = list(merged or ())
    if len(old_items) != len(merged_items):
        return False

    old_sorted = sorted(old_items, key=sort_and_sprint)
    merged_sorted = sorted(merged_items, key=sort_and_sprint)

    for o_item, m_item in zip(old_sorted, merged_sorted):
        if isinstance(o_item, Mapping):
            if not isinstance(m_item, Mapping):
                return False
            if not check_fields_with_sort(m_item, o_item, True):
                return False
        elif go_sprint(o_item) != go_sprint(m_item):
            return False

    return True