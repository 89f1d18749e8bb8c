"""
Kernel entry point: expansion → backpropagation → serialization.

API:
    compute_lattice(payload) -> result dict
    LatticeKernel(config).run() -> result dict

Result payload:
    {
        "nodes": [{key, value, dimensions, generation, parents, children,
                   pathMeta, position}, ...],
        "stats": {"min": ..., "max": ...},
        "binaryEnumerationSupported": bool,
    }

The lattice is held in memory for one run only and discarded once
serialized.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from lattice_compile.hydrate import KernelConfig, hydrate_config
from lattice_core.order_hash import Hash64, hash64
from lattice_core.types import Node, format_key

from .backprop import BackpropReceipt, backpropagate
from .expansion import LatticeGrid, expand_lattice

logger = logging.getLogger(__name__)


@dataclass
class KernelReceipt:
    """
    Run receipt.

    nodes: Nodes in the final lattice
    generations: Generations expanded
    backprop: Backpropagation receipt (None when backprop is not configured)
    digest: hash64 of the serialized result
    """
    nodes: int
    generations: int
    backprop: Optional[BackpropReceipt]
    digest: Hash64


class LatticeKernel:
    """Owns one lattice for the duration of one compute request."""

    def __init__(self, config: KernelConfig):
        self.config = config
        self.grid: Optional[LatticeGrid] = None
        self.receipt: Optional[KernelReceipt] = None

    def run(self) -> Dict[str, Any]:
        grid = expand_lattice(self.config)
        backprop_receipt = None
        if self.config.backprop_enabled:
            backprop_receipt = backpropagate(grid, self.config)

        result = {
            "nodes": serialize_nodes(grid),
            "stats": compute_stats(node.value for node in grid),
            "binaryEnumerationSupported": self.config.binary_enumeration_supported,
        }
        self.grid = grid
        self.receipt = KernelReceipt(
            nodes=len(grid),
            generations=self.config.generations,
            backprop=backprop_receipt,
            digest=lattice_digest(result),
        )
        logger.info(
            f"Lattice computed: {self.receipt.nodes} nodes over "
            f"{self.receipt.generations} generations (digest {self.receipt.digest:016x})"
        )
        return result


def compute_lattice(payload: Any) -> Dict[str, Any]:
    """Hydrate a request payload and run the kernel on it."""
    return LatticeKernel(hydrate_config(payload)).run()


# =============================================================================
# Serialization
# =============================================================================


def compute_stats(values: Iterable[float]) -> Dict[str, float]:
    """
    Minimum and maximum node value ({0, 0} for an empty lattice).

    Examples:
        >>> compute_stats([3, -1, 2])
        {'min': -1, 'max': 3}
        >>> compute_stats([])
        {'min': 0, 'max': 0}
    """
    values = list(values)
    if not values:
        return {"min": 0, "max": 0}
    return {"min": min(values), "max": max(values)}


def serialize_node(node: Node) -> Dict[str, Any]:
    return {
        "key": format_key(node.key),
        "value": node.value,
        "dimensions": {name: state.to_dict() for name, state in node.dimensions.items()},
        "generation": node.generation,
        "parents": [format_key(key) for key in node.parents],
        "children": [format_key(key) for key in node.children],
        "pathMeta": node.path_meta.to_dict() if node.path_meta is not None else None,
        "position": node.position.to_dict(),
    }


def serialize_nodes(grid: LatticeGrid) -> List[Dict[str, Any]]:
    """Serialized nodes in creation order."""
    return [serialize_node(node) for node in grid]


def lattice_digest(result: Dict[str, Any]) -> Hash64:
    """Deterministic fingerprint of a serialized result."""
    return hash64(result)
