"""
Request payload → immutable KernelConfig.

API:
    hydrate_config(payload) -> KernelConfig

Steps:
- Step 1: Coerce scalar fields (generations, steps, enumeration flag)
- Step 2: Sanitize move vectors
- Step 3: Compile per-dimension propagation formulas
- Step 4: Compile the optional extension points
- Step 5: Collect backprop step modes and dimension defaults

Every field is optional. Missing or malformed values fall back to safe
defaults (empty lists, zero counts, "sum" reunification); only a payload
that is not a mapping at all is rejected.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from lattice_core.dimensions import REUNIFICATION_MODES
from lattice_core.guards import as_finite, coerce_number
from lattice_core.types import Move

from .formulas import Formula, compile_optional


class LatticeConfigError(ValueError):
    """Payload cannot be interpreted as a compute configuration."""


@dataclass(frozen=True)
class DimensionDefinition:
    """One declared dimension and its compiled propagation formula."""
    key: str
    source: str
    default_value: float
    default_active: bool
    formula: Formula


@dataclass(frozen=True)
class KernelConfig:
    """Immutable per-run configuration."""
    binary_enumeration_supported: bool = False
    generations: int = 0
    moves: Tuple[Move, ...] = ()
    dimensions: Tuple[DimensionDefinition, ...] = ()
    reunification: str = "sum"
    reunification_formula: Optional[Formula] = None
    effective_value_formula: Optional[Formula] = None
    backprop_formula: Optional[Formula] = None
    backprop_fill_formula: Optional[Formula] = None
    backprop_steps: int = 0
    backprop_step_modes: Optional[Tuple[str, ...]] = None
    position_formula: Optional[Formula] = None
    space_distortion_formula: Optional[Formula] = None
    dimension_defaults: Dict[str, Any] = field(default_factory=dict)

    @property
    def dimension_keys(self) -> List[str]:
        return [definition.key for definition in self.dimensions]

    @property
    def backprop_enabled(self) -> bool:
        return self.backprop_formula is not None and self.backprop_steps > 0

    def step_mode(self, step: int) -> Optional[str]:
        """Round-robin mode label for a backprop step (None without labels)."""
        if not self.backprop_step_modes:
            return None
        return self.backprop_step_modes[step % len(self.backprop_step_modes)]


def _count(value: Any) -> int:
    """Loop bound from a payload number: ceil of a finite value, floor at 0."""
    number = as_finite(value)
    if number is None or number <= 0:
        return 0
    return int(math.ceil(number))


def _hydrate_moves(raw_moves: Any) -> Tuple[Move, ...]:
    if not isinstance(raw_moves, (list, tuple)):
        return ()
    moves = []
    for move in raw_moves:
        if not isinstance(move, (list, tuple)) or len(move) < 2:
            continue
        moves.append((coerce_number(move[0]), coerce_number(move[1])))
    return tuple(moves)


def _hydrate_dimensions(raw_definitions: Any) -> Tuple[DimensionDefinition, ...]:
    if not isinstance(raw_definitions, (list, tuple)):
        return ()
    definitions = []
    for index, definition in enumerate(raw_definitions):
        if not isinstance(definition, Mapping):
            continue
        key = definition.get("key")
        key = str(key) if key is not None else f"dimension_{index}"
        source = definition.get("source") if isinstance(definition.get("source"), str) else ""
        default_value = as_finite(definition.get("defaultValue"))
        definitions.append(
            DimensionDefinition(
                key=key,
                source=source,
                default_value=0 if default_value is None else default_value,
                default_active=definition.get("defaultActive") is True,
                formula=Formula.compile("propagation", source, f'Propagation "{key}"'),
            )
        )
    return tuple(definitions)


def hydrate_config(payload: Any) -> KernelConfig:
    """
    Build a KernelConfig from a request payload.

    Args:
        payload: Mapping with the camelCase request fields (None → empty)

    Returns:
        KernelConfig with every formula compiled

    Raises:
        LatticeConfigError: payload is neither None nor a mapping
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise LatticeConfigError(
            f"Compute payload must be an object, got {type(payload).__name__}"
        )

    # Merge formula is only compiled for personalized mode
    reunification = payload.get("reunification")
    reunification = reunification if isinstance(reunification, Mapping) else {}
    mode = reunification.get("mode") or "sum"
    if mode not in REUNIFICATION_MODES:
        mode = "sum"
    reunification_formula = None
    if mode == "personalized":
        reunification_formula = compile_optional(
            "reunification", reunification.get("source"), "Reunification logic"
        )

    # Step modes keep only string labels
    raw_modes = payload.get("backpropStepModes")
    step_modes = None
    if isinstance(raw_modes, (list, tuple)):
        step_modes = tuple(mode_label for mode_label in raw_modes if isinstance(mode_label, str))

    defaults = payload.get("dimensionDefaults")
    defaults = dict(defaults) if isinstance(defaults, Mapping) else {}

    return KernelConfig(
        binary_enumeration_supported=bool(payload.get("binaryEnumerationSupported")),
        generations=_count(payload.get("generations")),
        moves=_hydrate_moves(payload.get("moves")),
        dimensions=_hydrate_dimensions(payload.get("propagation")),
        reunification=mode,
        reunification_formula=reunification_formula,
        effective_value_formula=compile_optional(
            "effective_value", payload.get("effectiveValueSource"), "Effective value logic"
        ),
        backprop_formula=compile_optional(
            "backprop", payload.get("backpropSource"), "Backprop logic"
        ),
        backprop_fill_formula=compile_optional(
            "backprop_fill", payload.get("backpropFillSource"), "Backprop fill helper"
        ),
        backprop_steps=_count(payload.get("backpropSteps")),
        backprop_step_modes=step_modes,
        position_formula=compile_optional(
            "position", payload.get("positionSource"), "Position logic"
        ),
        space_distortion_formula=compile_optional(
            "space_distortion", payload.get("spaceDistortionSource"), "Space distortion logic"
        ),
        dimension_defaults=defaults,
    )
