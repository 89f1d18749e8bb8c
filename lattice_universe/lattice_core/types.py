"""
Core type definitions for the lattice expansion engine.

Nodes are keyed by integer pairs (x, y). On the wire, and inside every
dictionary handed to a user formula, a key is rendered as the string "x,y"
and dimension states use the payload's camelCase field names.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Node key: lattice coordinates (x, y)
NodeKey = Tuple[int, int]

# Move vector: (dx, dy)
Move = Tuple[int, int]

# Cap on explicitly enumerated root-to-node paths per node
ENUMERATION_SAMPLE_LIMIT = 32


def format_key(key: NodeKey) -> str:
    """Render a node key as its wire form "x,y"."""
    return f"{key[0]},{key[1]}"


def parse_key(text: str) -> NodeKey:
    """
    Parse a wire key back into coordinates.

    Malformed components parse as 0; a key without a comma is read as (x, 0).

    Examples:
        >>> parse_key("3,-1")
        (3, -1)
        >>> parse_key("7")
        (7, 0)
    """
    if not isinstance(text, str):
        return (0, 0)
    parts = text.split(",")
    if len(parts) < 2:
        return (_parse_coord(text), 0)
    return (_parse_coord(parts[0]), _parse_coord(parts[1]))


def _parse_coord(text: str) -> int:
    try:
        number = float(text)
    except ValueError:
        return 0
    if not math.isfinite(number):
        return 0
    return int(number) if number.is_integer() else number


@dataclass
class DimensionState:
    """
    Named scalar accumulator attached to a node.

    value and contributors are always finite; is_active is true when at least
    one contributing formula marked the dimension active.
    """
    value: float = 0
    is_active: bool = False
    contributors: float = 0
    meta: List[Any] = field(default_factory=list)

    def copy(self) -> "DimensionState":
        return DimensionState(self.value, self.is_active, self.contributors, list(self.meta))

    def to_dict(self) -> Dict[str, Any]:
        """Formula-facing / wire form (meta list is copied)."""
        return {
            "value": self.value,
            "isActive": self.is_active,
            "contributors": self.contributors,
            "meta": list(self.meta),
        }


@dataclass
class PathMeta:
    """
    Combinatorial summary of the root-to-node move sequences.

    - depth: longest path length seen
    - total: exact path count (may exceed what is enumerated)
    - ones_histogram: number of '1' moves -> path count
    - samples: enumerated path strings, capped at ENUMERATION_SAMPLE_LIMIT
    - sample_complete: samples hold every path
    """
    depth: int
    total: int
    ones_histogram: Dict[int, int]
    samples: List[str]
    sample_complete: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depth": self.depth,
            "total": self.total,
            "onesHistogram": dict(self.ones_histogram),
            "samples": list(self.samples),
            "sampleComplete": self.sample_complete,
        }


@dataclass(frozen=True)
class Position:
    """Spatial placement of a node (defaults to lattice coordinates)."""
    x: float = 0
    y: float = 0
    z: float = 0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


@dataclass
class Node:
    """
    One lattice cell.

    Created the first time a move produces its key; later arrivals merge
    into it. parents/children are ordered and duplicate-free.
    """
    key: NodeKey
    value: float
    dimensions: Dict[str, DimensionState]
    generation: int
    parents: List[NodeKey] = field(default_factory=list)
    children: List[NodeKey] = field(default_factory=list)
    path_meta: Optional[PathMeta] = None
    position: Position = field(default_factory=Position)

    def add_parent(self, key: NodeKey) -> None:
        if key not in self.parents:
            self.parents.append(key)

    def add_child(self, key: NodeKey) -> None:
        if key not in self.children:
            self.children.append(key)

    def snapshot(self) -> Dict[str, Any]:
        """Detached formula-facing view of the node."""
        return {
            "key": format_key(self.key),
            "value": self.value,
            "generation": self.generation,
            "parents": [format_key(k) for k in self.parents],
            "children": [format_key(k) for k in self.children],
            "dimensions": {name: state.to_dict() for name, state in self.dimensions.items()},
            "position": self.position.to_dict(),
            "pathMeta": self.path_meta.to_dict() if self.path_meta else None,
        }
