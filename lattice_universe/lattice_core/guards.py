"""
Numeric guards and the wrapped formula call.

Every user formula is invoked through safe_call: a raising formula is
logged as a non-fatal diagnostic and reported as None, the same as a
formula that returned nothing.
"""

import logging
import math
import numbers
from typing import Any, Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)


def as_finite(value: Any) -> Optional[float]:
    """
    Return value as a plain Python number if it is a finite real, else None.

    Booleans are not numbers here; numpy scalars are unwrapped.

    Examples:
        >>> as_finite(2.5)
        2.5
        >>> as_finite(float("nan")) is None
        True
        >>> as_finite(True) is None
        True
    """
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, numbers.Real):
        return None
    if isinstance(value, np.generic):
        value = value.item()
    try:
        finite = math.isfinite(value)
    except OverflowError:
        # int too large for a float
        return None
    if not finite:
        return None
    return value


def coerce_number(value: Any, default: float = 0) -> float:
    """
    Loose numeric coercion for payload fields (numeric strings accepted).

    Anything that is not a finite number after coercion becomes default.
    """
    if isinstance(value, str):
        try:
            value = float(value.strip() or "0")
        except ValueError:
            return default
        if math.isfinite(value) and value.is_integer():
            return int(value)
    number = as_finite(value)
    return default if number is None else number


def safe_call(formula: Optional[Callable[..., Any]], label: str, *args: Any) -> Any:
    """
    Invoke a user formula, converting any exception into None.

    Args:
        formula: Compiled formula (or None when not configured)
        label: Human-readable extension point name for the diagnostic
        *args: Positional arguments of the extension point's signature

    Returns:
        The formula's return value, or None if absent or it raised
    """
    if formula is None:
        return None
    try:
        return formula(*args)
    except Exception:
        logger.warning(f"{label} error", exc_info=True)
        return None
