"""
Formula compiler: user source fragments → callables with fixed signatures.

A fragment is the body of a Python function. It is compiled once per
configuration against the parameter list of its extension point:

    propagation       (parent_value, parent_dimensions, index, move, context)
    reunification     (values, context)
    effective_value   (dimensions, context)
    backprop          (child_state, parent_state, context)
    backprop_fill     (child_state, parent_state, context)
    position          (key, coords, node, context)
    space_distortion  (base_result, context)

Fragments see `math`, `np` (numpy) and the `DISCARD` marker as globals.
A fragment that fails to compile yields a Formula that always returns None;
callers already treat None as "no answer", so each extension point degrades
on its own and the run continues.

Example:
    >>> f = Formula.compile("effective_value", "return dimensions['a']['value'] * 2")
    >>> f({"a": {"value": 3}}, {})
    6
"""

import logging
import math
import textwrap
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from lattice_core.dimensions import DISCARD

logger = logging.getLogger(__name__)


FORMULA_SIGNATURES: Dict[str, Tuple[str, ...]] = {
    "propagation": ("parent_value", "parent_dimensions", "index", "move", "context"),
    "reunification": ("values", "context"),
    "effective_value": ("dimensions", "context"),
    "backprop": ("child_state", "parent_state", "context"),
    "backprop_fill": ("child_state", "parent_state", "context"),
    "position": ("key", "coords", "node", "context"),
    "space_distortion": ("base_result", "context"),
}

_FUNCTION_NAME = "_formula"


class FormulaCompileError(SyntaxError):
    """Raised by compile_source when a fragment is not valid Python."""


def formula_globals() -> Dict[str, Any]:
    """Fresh global namespace for one compiled fragment."""
    return {"math": math, "np": np, "DISCARD": DISCARD}


def compile_source(kind: str, source: str, label: Optional[str] = None) -> Callable[..., Any]:
    """
    Compile a fragment into a plain function for extension point `kind`.

    Args:
        kind: Key of FORMULA_SIGNATURES
        source: Function body (blank → body that returns None)
        label: Name shown in tracebacks

    Returns:
        The compiled function

    Raises:
        KeyError: Unknown extension point
        FormulaCompileError: Fragment is not valid Python
    """
    params = FORMULA_SIGNATURES[kind]
    body = textwrap.dedent(source).strip("\n")
    if not body.strip():
        body = "pass"
    code = f"def {_FUNCTION_NAME}({', '.join(params)}):\n{textwrap.indent(body, '    ')}\n"
    namespace = formula_globals()
    try:
        exec(compile(code, f"<formula:{label or kind}>", "exec"), namespace)
    except (SyntaxError, ValueError) as error:
        raise FormulaCompileError(f"{label or kind}: {error}") from error
    return namespace[_FUNCTION_NAME]


class Formula:
    """
    A compiled user fragment bound to one extension point.

    Attributes:
        kind: Extension point (key of FORMULA_SIGNATURES)
        label: Human-readable name used in diagnostics
        source: Original fragment text
        compiled: False when compilation failed (calls then return None)
        error: Compilation error text, if any
    """

    def __init__(
        self,
        kind: str,
        source: str,
        label: Optional[str] = None,
        fn: Optional[Callable[..., Any]] = None,
        error: Optional[str] = None,
    ):
        self.kind = kind
        self.label = label or kind
        self.source = source
        self._fn = fn
        self.error = error

    @property
    def compiled(self) -> bool:
        return self._fn is not None

    @property
    def params(self) -> Tuple[str, ...]:
        return FORMULA_SIGNATURES[self.kind]

    @classmethod
    def compile(cls, kind: str, source: str, label: Optional[str] = None) -> "Formula":
        """Compile a fragment; failures produce a non-compiled Formula and a warning."""
        try:
            fn = compile_source(kind, source, label)
        except FormulaCompileError as error:
            logger.warning(f"{label or kind} compilation failed: {error}")
            return cls(kind, source, label, fn=None, error=str(error))
        return cls(kind, source, label, fn=fn)

    def __call__(self, *args: Any) -> Any:
        if self._fn is None:
            return None
        return self._fn(*args)

    def __repr__(self) -> str:
        state = "compiled" if self.compiled else "failed"
        return f"Formula({self.label!r}, {state})"


def compile_optional(kind: str, source: Any, label: str) -> Optional[Formula]:
    """
    Compile an optional extension point.

    Non-string or blank sources mean "not configured" and return None.
    """
    if not isinstance(source, str) or not source.strip():
        return None
    return Formula.compile(kind, source, label)
