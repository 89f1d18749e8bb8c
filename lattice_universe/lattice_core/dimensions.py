"""
Dimension algebra: normalization, cloning, merging and reunification.

Provides:
- normalize_dimension_result: canonical DimensionState from raw formula output
- reunify: combine several contributions with sum | average | max | personalized
- merge_incoming / finalize_aggregates: aggregate simultaneous arrivals at a child
- merge_dimension_states: additive merge onto already accumulated state
- effective_value: node scalar derived from its dimension map
- apply_space_distortion: optional post-processing of a per-edge result

Two merge paths exist on purpose. merge_incoming reunifies fresh arrivals
of one generation; merge_dimension_states adds onto a node that already
holds state (a second arrival batch, or a backprop delta).
"""

import numbers
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .guards import as_finite, safe_call
from .types import DimensionState

REUNIFICATION_MODES = ("sum", "average", "max", "personalized")


class _Discard:
    """Marker a space-distortion formula returns to drop a contribution."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DISCARD"


DISCARD = _Discard()


# =============================================================================
# Normalization & Cloning
# =============================================================================


def normalize_dimension_result(raw: Any) -> Optional[DimensionState]:
    """
    Normalize arbitrary formula output into a DimensionState.

    Accepted shapes:
    - None → None
    - finite real number → {value, isActive: True, contributors: 1, meta: []}
    - mapping with optional value / isActive / contributors / meta
      (non-finite value → 0, isActive unless explicitly False,
      non-finite contributors → 1, scalar meta wrapped in a list)

    Anything else, including a non-finite number, yields None.

    Examples:
        >>> normalize_dimension_result(3)
        DimensionState(value=3, is_active=True, contributors=1, meta=[])
        >>> normalize_dimension_result({"isActive": False}).value
        0
    """
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        value = as_finite(raw.get("value"))
        contributors = as_finite(raw.get("contributors"))
        meta: List[Any] = []
        if "meta" in raw:
            meta = list(raw["meta"]) if isinstance(raw["meta"], list) else [raw["meta"]]
        return DimensionState(
            value=0 if value is None else value,
            is_active=raw.get("isActive") is not False,
            contributors=1 if contributors is None else contributors,
            meta=meta,
        )
    value = as_finite(raw)
    if value is None:
        return None
    return DimensionState(value=value, is_active=True, contributors=1, meta=[])


def clone_dimensions(dimensions: Optional[Mapping]) -> Dict[str, DimensionState]:
    """Deep copy of a dimension map (meta lists are copied)."""
    if not dimensions:
        return {}
    return {key: state.copy() for key, state in dimensions.items()}


def dimensions_to_dict(dimensions: Mapping) -> Dict[str, Dict[str, Any]]:
    """Formula-facing / wire form of a dimension map."""
    return {key: state.to_dict() for key, state in dimensions.items()}


def empty_dimension_state(key: str, defaults: Optional[Mapping] = None) -> DimensionState:
    """
    Starting state for a key a node has never held, from dimensionDefaults.

    Args:
        key: Dimension key
        defaults: Per-key overrides {key: {value, isActive, contributors}}
    """
    entry = (defaults or {}).get(key)
    if not isinstance(entry, Mapping):
        entry = {}
    value = as_finite(entry.get("value"))
    contributors = as_finite(entry.get("contributors"))
    return DimensionState(
        value=0 if value is None else value,
        is_active=entry.get("isActive") is True,
        contributors=0 if contributors is None else contributors,
        meta=[],
    )


def initial_dimensions(definitions: Iterable[Any]) -> Dict[str, DimensionState]:
    """
    Root dimension map from the declared dimension definitions.

    Each definition needs .key, .default_value and .default_active.
    """
    dimensions: Dict[str, DimensionState] = {}
    for definition in definitions:
        value = as_finite(definition.default_value)
        active = definition.default_active is True
        dimensions[definition.key] = DimensionState(
            value=0 if value is None else value,
            is_active=active,
            contributors=1 if active else 0,
            meta=[],
        )
    return dimensions


# =============================================================================
# Reunification
# =============================================================================


def reunification_context(values: Sequence[float]) -> Dict[str, float]:
    """Summary statistics handed to a personalized reunification formula."""
    count = len(values)
    if not count:
        return {"count": 0, "sum": 0, "average": 0, "min": 0, "max": 0}
    total = sum(values)
    return {
        "count": count,
        "sum": total,
        "average": total / count,
        "min": min(values),
        "max": max(values),
    }


def reunify(
    values: Sequence[float],
    mode: str = "sum",
    formula: Optional[Callable[..., Any]] = None,
) -> float:
    """
    Combine several contributions into one dimension value.

    Args:
        values: Finite contribution values
        mode: "sum" | "average" | "max" | "personalized" (unknown → sum)
        formula: Merge formula (values, context), personalized mode only

    Returns:
        Combined value; 0 for an empty list. Personalized mode falls back to
        the sum when the formula is absent, raises, or returns non-finite.

    Examples:
        >>> reunify([2, 4, 6], "average")
        4.0
        >>> reunify([2, 4, 6], "max")
        6
    """
    if not values:
        return 0
    if mode == "personalized":
        safe_values = list(values)
        context = reunification_context(safe_values)
        result = as_finite(safe_call(formula, "Custom reunification logic", safe_values, context))
        if result is not None:
            return result
        return context["sum"]
    if mode == "average":
        return sum(values) / len(values)
    if mode == "max":
        return max(values)
    return sum(values)


# =============================================================================
# Aggregation of simultaneous arrivals
# =============================================================================


@dataclass
class AggregateBucket:
    """Per-dimension collection of the contributions arriving at one child."""
    values: List[float] = field(default_factory=list)
    active_count: int = 0
    contributors: float = 0
    meta: List[Any] = field(default_factory=list)
    value: float = 0


def merge_incoming(
    contributions: Iterable[Mapping],
    declared_keys: Sequence[str] = (),
    mode: str = "sum",
    formula: Optional[Callable[..., Any]] = None,
) -> Dict[str, AggregateBucket]:
    """
    Group per-edge dimension results arriving at one child by dimension key.

    Args:
        contributions: One mapping per incoming edge, key → DimensionState | None
        declared_keys: Configured dimension keys (each always gets a bucket)
        mode: Reunification mode
        formula: Personalized reunification formula

    Returns:
        Ordered dict key → AggregateBucket with .value reunified
    """
    aggregates: Dict[str, AggregateBucket] = {}
    for dimension_results in contributions:
        for key, result in (dimension_results or {}).items():
            bucket = aggregates.setdefault(key, AggregateBucket())
            if result is None:
                continue
            value = as_finite(result.value)
            if value is not None:
                bucket.values.append(value)
                contributors = as_finite(result.contributors)
                bucket.contributors += 1 if contributors is None else contributors
            if result.is_active:
                bucket.active_count += 1
            bucket.meta.extend(result.meta)

    for key in declared_keys:
        aggregates.setdefault(key, AggregateBucket())

    for bucket in aggregates.values():
        bucket.value = reunify(bucket.values, mode, formula)
        if bucket.contributors <= 0:
            bucket.contributors = len(bucket.values)

    return aggregates


def finalize_aggregates(aggregates: Mapping[str, AggregateBucket]) -> Dict[str, DimensionState]:
    """Turn aggregate buckets into a fresh dimension map."""
    result: Dict[str, DimensionState] = {}
    for key, bucket in aggregates.items():
        value = as_finite(bucket.value)
        contributors = as_finite(bucket.contributors)
        result[key] = DimensionState(
            value=0 if value is None else value,
            is_active=bucket.active_count > 0,
            contributors=len(bucket.values) if contributors is None else contributors,
            meta=list(bucket.meta),
        )
    return result


# =============================================================================
# Additive merge onto existing state
# =============================================================================


def merge_dimension_states(
    existing: Optional[Mapping],
    incoming: Optional[Mapping],
    defaults: Optional[Mapping] = None,
) -> Dict[str, DimensionState]:
    """
    Add incoming dimension states onto existing ones.

    value and contributors add, is_active ORs, meta concatenates. An
    incoming state without finite contributors counts as one contributor
    when it moves the value. Keys absent from existing start from
    empty_dimension_state. Neither input is modified.
    """
    base = clone_dimensions(existing)
    for key, addition in (incoming or {}).items():
        current = base.get(key) or empty_dimension_state(key, defaults)
        value_delta = as_finite(addition.value) if addition is not None else None
        value_delta = 0 if value_delta is None else value_delta
        current.value += value_delta
        current.is_active = current.is_active or bool(addition is not None and addition.is_active)
        contributor_delta = as_finite(addition.contributors) if addition is not None else None
        if contributor_delta is None:
            contributor_delta = 1 if value_delta != 0 else 0
        current.contributors += contributor_delta
        if addition is not None and addition.meta:
            current.meta.extend(addition.meta)
        base[key] = current
    return base


# =============================================================================
# Derived values
# =============================================================================


def effective_value(
    dimensions: Optional[Mapping],
    context: Optional[Mapping] = None,
    formula: Optional[Callable[..., Any]] = None,
    declared_keys: Optional[Sequence[str]] = None,
) -> float:
    """
    Scalar value of a node from its dimension map.

    The formula receives the dimension map (formula-facing dicts) and the
    context enriched with dimensionKeys. On a raise or non-finite result the
    value of the "primary" dimension is used, else the first dimension's,
    else 0.
    """
    safe_dimensions = dimensions or {}
    if formula is not None:
        keys = list(declared_keys) if declared_keys is not None else list(safe_dimensions)
        enriched = dict(context or {}, dimensionKeys=keys)
        result = as_finite(
            safe_call(formula, "Effective value logic", dimensions_to_dict(safe_dimensions), enriched)
        )
        if result is not None:
            return result

    primary = safe_dimensions.get("primary")
    if primary is not None and as_finite(primary.value) is not None:
        return primary.value
    first = next(iter(safe_dimensions.values()), None)
    if first is not None and as_finite(first.value) is not None:
        return first.value
    return 0


def apply_space_distortion(
    base_result: Optional[DimensionState],
    context: Mapping,
    raw_output: Any,
    formula: Optional[Callable[..., Any]] = None,
) -> Optional[DimensionState]:
    """
    Post-process a freshly normalized per-edge dimension result.

    Returns:
        - base_result unchanged when no formula is configured, the formula
          raises, or it returns None
        - None when the formula returns DISCARD
        - the re-normalized return value for a number or mapping
        - base_result for any other return shape
    """
    if formula is None:
        return base_result
    base_view = base_result.to_dict() if base_result is not None else None
    enriched = dict(
        context,
        rawOutput=raw_output,
        baseResult=base_result.to_dict() if base_result is not None else None,
    )
    result = safe_call(formula, "Space distortion logic", base_view, enriched)
    if result is None:
        return base_result
    if result is DISCARD:
        return None
    if isinstance(result, Mapping) or (
        isinstance(result, numbers.Real) and not isinstance(result, bool)
    ):
        return normalize_dimension_result(result)
    return base_result
