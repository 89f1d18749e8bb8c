"""
Unit tests for lattice_core/dimensions.py (dimension algebra).

Covers:
- normalize_dimension_result accepted shapes and rejections
- reunify modes, personalized fallbacks
- merge_incoming aggregation vs merge_dimension_states additive merge
- effective_value fallbacks
- apply_space_distortion pass-through / discard / re-normalize
"""

import math

import pytest

from lattice_core.dimensions import (
    DISCARD,
    apply_space_distortion,
    clone_dimensions,
    effective_value,
    empty_dimension_state,
    finalize_aggregates,
    merge_dimension_states,
    merge_incoming,
    normalize_dimension_result,
    reunification_context,
    reunify,
)
from lattice_core.types import DimensionState


def state(value, is_active=True, contributors=1, meta=None):
    return DimensionState(value, is_active, contributors, list(meta or []))


class TestNormalize:
    """normalize_dimension_result shapes."""

    def test_none(self):
        assert normalize_dimension_result(None) is None

    def test_bare_number_promoted(self):
        result = normalize_dimension_result(2.5)
        assert result == DimensionState(2.5, True, 1, [])

    @pytest.mark.parametrize("raw", [math.nan, math.inf, -math.inf])
    def test_non_finite_number_rejected(self, raw):
        assert normalize_dimension_result(raw) is None

    def test_bool_is_not_a_number(self):
        assert normalize_dimension_result(True) is None

    def test_mapping_defaults(self):
        result = normalize_dimension_result({})
        assert result == DimensionState(0, True, 1, [])

    def test_mapping_fields(self):
        result = normalize_dimension_result(
            {"value": 4, "isActive": False, "contributors": 3, "meta": ["a", "b"]}
        )
        assert result == DimensionState(4, False, 3, ["a", "b"])

    def test_mapping_non_finite_value_becomes_zero(self):
        assert normalize_dimension_result({"value": math.nan}).value == 0

    def test_scalar_meta_wrapped(self):
        assert normalize_dimension_result({"value": 1, "meta": "tag"}).meta == ["tag"]

    def test_meta_list_copied(self):
        meta = [1]
        result = normalize_dimension_result({"meta": meta})
        meta.append(2)
        assert result.meta == [1]

    @pytest.mark.parametrize("raw", ["3", [1, 2], object()])
    def test_other_shapes_rejected(self, raw):
        assert normalize_dimension_result(raw) is None


class TestReunify:
    """Reunification strategies over [2, 4, 6]."""

    VALUES = [2, 4, 6]

    def test_sum(self):
        assert reunify(self.VALUES, "sum") == 12

    def test_average(self):
        assert reunify(self.VALUES, "average") == 4

    def test_max(self):
        assert reunify(self.VALUES, "max") == 6

    def test_unknown_mode_is_sum(self):
        assert reunify(self.VALUES, "median") == 12

    def test_empty_is_zero(self):
        assert reunify([], "max") == 0

    def test_personalized_formula(self):
        def product(values, context):
            return context["count"] * values[0]

        assert reunify(self.VALUES, "personalized", product) == 6

    def test_personalized_non_finite_falls_back_to_sum(self):
        assert reunify(self.VALUES, "personalized", lambda values, context: math.inf) == 12

    def test_personalized_raise_falls_back_to_sum(self):
        def broken(values, context):
            raise RuntimeError("boom")

        assert reunify(self.VALUES, "personalized", broken) == 12

    def test_personalized_without_formula(self):
        assert reunify(self.VALUES, "personalized", None) == 12

    def test_context(self):
        assert reunification_context(self.VALUES) == {
            "count": 3, "sum": 12, "average": 4, "min": 2, "max": 6,
        }


class TestMergeIncoming:
    """Aggregation of simultaneous arrivals at one child."""

    def test_groups_and_reunifies(self):
        contributions = [
            {"a": state(2, meta=["x"])},
            {"a": state(4, is_active=False, contributors=2, meta=["y"])},
        ]
        buckets = merge_incoming(contributions, ["a"], "sum")
        bucket = buckets["a"]
        assert bucket.values == [2, 4]
        assert bucket.value == 6
        assert bucket.contributors == 3
        assert bucket.active_count == 1
        assert bucket.meta == ["x", "y"]

    def test_declared_key_always_has_bucket(self):
        buckets = merge_incoming([], ["a", "b"])
        assert list(buckets) == ["a", "b"]
        dims = finalize_aggregates(buckets)
        assert dims["a"] == DimensionState(0, False, 0, [])

    def test_none_results_dropped(self):
        buckets = merge_incoming([{"a": None}, {"a": state(5)}], ["a"])
        assert buckets["a"].values == [5]
        assert buckets["a"].contributors == 1

    def test_zero_contributors_default_to_value_count(self):
        buckets = merge_incoming([{"a": state(1, contributors=0)}, {"a": state(2, contributors=0)}])
        assert buckets["a"].contributors == 2

    def test_average_mode(self):
        buckets = merge_incoming([{"a": state(2)}, {"a": state(4)}, {"a": state(6)}], mode="average")
        assert finalize_aggregates(buckets)["a"].value == 4

    def test_finalize_is_active(self):
        dims = finalize_aggregates(merge_incoming([{"a": state(1, is_active=False)}]))
        assert dims["a"].is_active is False


class TestMergeDimensionStates:
    """Additive merge onto accumulated state."""

    def test_additive(self):
        existing = {"a": state(3, is_active=False, contributors=2, meta=["p"])}
        incoming = {"a": state(4, is_active=True, contributors=1, meta=["q"])}
        merged = merge_dimension_states(existing, incoming)
        assert merged["a"] == DimensionState(7, True, 3, ["p", "q"])

    def test_inputs_untouched(self):
        existing = {"a": state(3)}
        merge_dimension_states(existing, {"a": state(4)})
        assert existing["a"].value == 3

    def test_missing_key_starts_from_defaults(self):
        defaults = {"b": {"value": 10, "isActive": True, "contributors": 5}}
        merged = merge_dimension_states({}, {"b": state(1)}, defaults)
        assert merged["b"] == DimensionState(11, True, 6, [])

    def test_contributor_delta_when_not_finite(self):
        merged = merge_dimension_states({"a": state(0, contributors=0)}, {"a": state(2, contributors=math.nan)})
        assert merged["a"].contributors == 1
        merged = merge_dimension_states({"a": state(0, contributors=0)}, {"a": state(0, contributors=math.nan)})
        assert merged["a"].contributors == 0

    def test_differs_from_reunification(self):
        """Additive merge sums even when the run reunifies with max."""
        merged = merge_dimension_states({"a": state(5)}, {"a": state(5)})
        assert merged["a"].value == 10

    def test_empty_state_defaults(self):
        assert empty_dimension_state("z") == DimensionState(0, False, 0, [])
        assert empty_dimension_state("z", {"z": "bad"}) == DimensionState(0, False, 0, [])


class TestEffectiveValue:
    """Effective value and its fallbacks."""

    def test_formula_sees_dimension_keys(self):
        seen = {}

        def formula(dimensions, context):
            seen.update(context)
            return dimensions["a"]["value"] + dimensions["b"]["value"]

        dims = {"a": state(1), "b": state(2)}
        assert effective_value(dims, {"phase": "forward"}, formula, ["a", "b"]) == 3
        assert seen["dimensionKeys"] == ["a", "b"]
        assert seen["phase"] == "forward"

    def test_primary_fallback(self):
        dims = {"a": state(1), "primary": state(9)}
        assert effective_value(dims, {}, lambda d, c: None) == 9

    def test_first_key_fallback(self):
        dims = {"a": state(4), "b": state(9)}

        def broken(d, c):
            raise ValueError("bad")

        assert effective_value(dims, {}, broken) == 4

    def test_non_finite_result_falls_back(self):
        assert effective_value({"a": state(4)}, {}, lambda d, c: math.nan) == 4

    def test_empty_is_zero(self):
        assert effective_value({}, {}) == 0

    def test_formula_cannot_mutate_node_state(self):
        dims = {"a": state(4)}

        def mutate(d, c):
            d["a"]["value"] = 100
            return 1

        effective_value(dims, {}, mutate)
        assert dims["a"].value == 4


class TestSpaceDistortion:
    """apply_space_distortion return handling."""

    CONTEXT = {"dimensionKey": "a"}

    def test_without_formula_passes_through(self):
        base = state(3)
        assert apply_space_distortion(base, self.CONTEXT, 3, None) is base

    def test_none_passes_through(self):
        base = state(3)
        assert apply_space_distortion(base, self.CONTEXT, 3, lambda b, c: None) is base

    def test_raise_passes_through(self):
        base = state(3)

        def broken(b, c):
            raise KeyError("x")

        assert apply_space_distortion(base, self.CONTEXT, 3, broken) is base

    def test_discard(self):
        assert apply_space_distortion(state(3), self.CONTEXT, 3, lambda b, c: DISCARD) is None

    def test_renormalized(self):
        def double(b, c):
            assert c["rawOutput"] == 3
            assert c["baseResult"]["value"] == 3
            return {"value": b["value"] * 2}

        assert apply_space_distortion(state(3), self.CONTEXT, 3, double) == DimensionState(6, True, 1, [])

    def test_number_return(self):
        assert apply_space_distortion(state(3), self.CONTEXT, 3, lambda b, c: 7).value == 7

    def test_other_shape_passes_through(self):
        base = state(3)
        assert apply_space_distortion(base, self.CONTEXT, 3, lambda b, c: "nope") is base

    def test_can_resurrect_missing_result(self):
        result = apply_space_distortion(None, self.CONTEXT, None, lambda b, c: 1 if b is None else None)
        assert result.value == 1


def test_clone_dimensions_is_deep():
    dims = {"a": state(1, meta=["m"])}
    clone = clone_dimensions(dims)
    clone["a"].meta.append("n")
    clone["a"].value = 5
    assert dims["a"] == DimensionState(1, True, 1, ["m"])
