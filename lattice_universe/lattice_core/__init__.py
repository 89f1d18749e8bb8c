"""
lattice_core: Core primitives for the lattice expansion engine.

Provides:
- types: Node, DimensionState, PathMeta, Position and key helpers
- guards: finite-number checks and the wrapped formula call
- order_hash: Deterministic hashing (SHA-256) of serialized results
- dimensions: Dimension algebra (normalize, reunify, merge, effective value)
- binary_lattice: Bit-level symmetry classifier for lattice positions
- paths: Path counting and capped path enumeration
"""

__all__ = [
    "binary_lattice",
    "dimensions",
    "guards",
    "order_hash",
    "paths",
    "types",
]
