"""
Unit tests for lattice_compile/formulas.py (fragment compiler).
"""

import logging

import pytest

from lattice_compile.formulas import (
    FORMULA_SIGNATURES,
    Formula,
    FormulaCompileError,
    compile_optional,
    compile_source,
)
from lattice_core.dimensions import DISCARD


class TestCompileSource:
    """compile_source: fragment body → function."""

    def test_signature(self):
        fn = compile_source("propagation", "return parent_value + index + move[0]")
        assert fn(10, {}, 1, [2, 0], {}) == 13

    def test_multiline_body(self):
        source = """
        total = 0
        for value in values:
            total += value * value
        return total
        """
        fn = compile_source("reunification", source)
        assert fn([1, 2, 3], {}) == 14

    def test_globals(self):
        fn = compile_source("effective_value", "return math.sqrt(np.sum([9, 16]))")
        assert fn({}, {}) == 5

    def test_discard_marker_visible(self):
        fn = compile_source("space_distortion", "return DISCARD")
        assert fn({}, {}) is DISCARD

    def test_blank_body_returns_none(self):
        assert compile_source("backprop", "   ")({}, {}, {}) is None

    def test_syntax_error(self):
        with pytest.raises(FormulaCompileError):
            compile_source("position", "return (")

    def test_unknown_kind(self):
        with pytest.raises(KeyError):
            compile_source("nope", "return 1")

    def test_fresh_globals_per_fragment(self):
        first = compile_source("effective_value", "global counter\ncounter = 1\nreturn counter")
        second = compile_source("effective_value", "return globals().get('counter')")
        assert first({}, {}) == 1
        assert second({}, {}) is None


class TestFormula:
    """Formula wrapper behaviour."""

    def test_call(self):
        formula = Formula.compile("backprop", "return {'parent': {'valueDelta': child_state['value']}}")
        assert formula.compiled
        assert formula({"value": 2}, {}, {}) == {"parent": {"valueDelta": 2}}

    def test_failed_compile_returns_none(self, caplog):
        with caplog.at_level(logging.WARNING):
            formula = Formula.compile("effective_value", "return )", "Effective value logic")
        assert not formula.compiled
        assert formula.error
        assert formula({}, {}) is None
        assert "Effective value logic compilation failed" in caplog.text

    def test_runtime_error_propagates(self):
        formula = Formula.compile("effective_value", "return 1 / 0")
        with pytest.raises(ZeroDivisionError):
            formula({}, {})

    def test_params_and_label(self):
        formula = Formula.compile("position", "return None")
        assert formula.params == FORMULA_SIGNATURES["position"]
        assert formula.label == "position"
        assert "compiled" in repr(formula)


class TestCompileOptional:
    """Blank or non-string sources mean the extension point is off."""

    @pytest.mark.parametrize("source", [None, "", "   \n", 42, ["return 1"]])
    def test_not_configured(self, source):
        assert compile_optional("effective_value", source, "Effective value logic") is None

    def test_configured(self):
        formula = compile_optional("effective_value", "return 7", "Effective value logic")
        assert formula({}, {}) == 7
        assert formula.label == "Effective value logic"
