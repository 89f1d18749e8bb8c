"""
Forward expansion: generation-by-generation growth of the lattice.

Per generation:
1. For every frontier node and every move, evaluate each dimension's
   propagation formula, normalize (and optionally distort) the result, and
   record an EdgeContribution keyed by the child. Parent→child adjacency is
   registered as the edge is produced.
2. Once every edge of the generation is known, materialize each distinct
   child: aggregate its contributions with merge_incoming, compute the
   effective value, merge path metadata from every contributing parent.
   An existing child (diamond arrival, or a key revisited from an earlier
   generation) is merged additively instead of being recreated.
3. The next frontier is every child touched in this generation.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from lattice_compile.hydrate import KernelConfig
from lattice_core.dimensions import (
    apply_space_distortion,
    clone_dimensions,
    dimensions_to_dict,
    effective_value,
    finalize_aggregates,
    initial_dimensions,
    merge_dimension_states,
    merge_incoming,
    normalize_dimension_result,
)
from lattice_core.guards import as_finite, safe_call
from lattice_core.paths import advance_path_meta, merge_path_metas, root_path_meta
from lattice_core.types import DimensionState, Node, NodeKey, Position, format_key

logger = logging.getLogger(__name__)

ROOT_KEY: NodeKey = (0, 0)


# =============================================================================
# Types
# =============================================================================


class LatticeGrid:
    """
    In-memory node arena keyed by integer pairs.

    Iteration follows node creation order.
    """

    def __init__(self):
        self.nodes: Dict[NodeKey, Node] = {}

    def __contains__(self, key: NodeKey) -> bool:
        return key in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes.values())

    def __getitem__(self, key: NodeKey) -> Node:
        return self.nodes[key]

    def get(self, key: NodeKey) -> Optional[Node]:
        return self.nodes.get(key)

    def add(self, node: Node) -> Node:
        self.nodes[node.key] = node
        return node

    def by_generation(self) -> Dict[int, List[Node]]:
        """Nodes bucketed by generation, creation order inside a bucket."""
        buckets: Dict[int, List[Node]] = {}
        for node in self.nodes.values():
            buckets.setdefault(node.generation, []).append(node)
        return buckets


@dataclass
class EdgeContribution:
    """Dimension results one parent sends to one child along one move."""
    parent_key: NodeKey
    move_index: int
    dimensions: Dict[str, Optional[DimensionState]]


# =============================================================================
# Shared helpers
# =============================================================================


def evaluate_effective_value(config: KernelConfig, dimensions: Dict[str, DimensionState], context: dict) -> float:
    """effective_value bound to the configuration's formula and declared keys."""
    return effective_value(
        dimensions,
        context,
        formula=config.effective_value_formula,
        declared_keys=config.dimension_keys,
    )


def create_position(config: KernelConfig, node: Node, context: dict) -> Position:
    """
    Default position (lattice coordinates), optionally overridden by the
    position formula. Each axis of a custom result falls back on its own.
    """
    x, y = node.key
    base = Position(x, y, 0)
    if config.position_formula is None:
        return base

    coords = {"x": x, "y": y, "z": 0}
    snapshot = node.snapshot()
    wire_key = format_key(node.key)
    enriched = dict(context, key=wire_key, coords=dict(coords), node=snapshot)
    custom = safe_call(config.position_formula, "Position logic", wire_key, dict(coords), snapshot, enriched)
    if not isinstance(custom, Mapping):
        return base

    custom_x = as_finite(custom.get("x"))
    custom_y = as_finite(custom.get("y"))
    custom_z = as_finite(custom.get("z"))
    return Position(
        x=base.x if custom_x is None else custom_x,
        y=base.y if custom_y is None else custom_y,
        z=0 if custom_z is None else custom_z,
    )


# =============================================================================
# Main Entry Point
# =============================================================================


def seed_root(config: KernelConfig, grid: LatticeGrid) -> Node:
    """Create the generation-0 root at (0, 0)."""
    dimensions = initial_dimensions(config.dimensions)
    value = evaluate_effective_value(
        config, dimensions, {"key": format_key(ROOT_KEY), "generation": 0, "phase": "seed"}
    )
    root = Node(
        key=ROOT_KEY,
        value=value,
        dimensions=dimensions,
        generation=0,
        path_meta=root_path_meta() if config.binary_enumeration_supported else None,
    )
    root.position = create_position(config, root, {"generation": 0, "phase": "seed"})
    return grid.add(root)


def expand_lattice(config: KernelConfig) -> LatticeGrid:
    """
    Grow the lattice for config.generations generations from the root.

    Args:
        config: Hydrated kernel configuration

    Returns:
        LatticeGrid holding every reached node

    Example:
        >>> grid = expand_lattice(hydrate_config({"generations": 1, "moves": [[1, 0]]}))
        >>> sorted(grid.nodes)
        [(0, 0), (1, 0)]
    """
    grid = LatticeGrid()
    root = seed_root(config, grid)
    frontier: List[NodeKey] = [root.key]

    for generation_index in range(config.generations):
        contributions = _propagate_generation(config, grid, frontier, generation_index)
        for child_key, incoming in contributions.items():
            _materialize_child(config, grid, child_key, incoming, generation_index + 1)
        frontier = list(contributions)
        logger.debug(
            f"Generation {generation_index + 1}: {len(frontier)} nodes touched, {len(grid)} total"
        )

    return grid


# =============================================================================
# Helper Functions
# =============================================================================


def _propagate_generation(
    config: KernelConfig,
    grid: LatticeGrid,
    frontier: List[NodeKey],
    generation_index: int,
) -> Dict[NodeKey, List[EdgeContribution]]:
    """Evaluate every (frontier node, move) edge; group results by child key."""
    contributions: Dict[NodeKey, List[EdgeContribution]] = {}

    for parent_key in frontier:
        parent = grid.get(parent_key)
        if parent is None:
            continue
        parent_dimensions = dimensions_to_dict(clone_dimensions(parent.dimensions))
        x, y = parent_key

        for move_index, move in enumerate(config.moves):
            child_key = (x + move[0], y + move[1])
            dimension_results: Dict[str, Optional[DimensionState]] = {}

            if config.dimensions:
                parent_snapshot = parent.snapshot()
                propagation_context = {
                    "parentKey": format_key(parent_key),
                    "parentGeneration": parent.generation,
                    "moveIndex": move_index,
                    "move": list(move),
                    "generation": generation_index,
                }
                for definition in config.dimensions:
                    output = safe_call(
                        definition.formula,
                        f'Propagation "{definition.key}"',
                        parent.value,
                        parent_dimensions,
                        move_index,
                        list(move),
                        dict(propagation_context),
                    )
                    result = normalize_dimension_result(output)
                    if result is not None or config.space_distortion_formula is not None:
                        result = apply_space_distortion(
                            result,
                            {
                                "parentKey": format_key(parent_key),
                                "parentSnapshot": parent_snapshot,
                                "childKey": format_key(child_key),
                                "childCoords": {"x": child_key[0], "y": child_key[1]},
                                "generation": generation_index,
                                "moveIndex": move_index,
                                "move": list(move),
                                "dimensionKey": definition.key,
                            },
                            output,
                            config.space_distortion_formula,
                        )
                    dimension_results[definition.key] = result

            parent.add_child(child_key)
            contributions.setdefault(child_key, []).append(
                EdgeContribution(parent_key, move_index, dimension_results)
            )

    return contributions


def _materialize_child(
    config: KernelConfig,
    grid: LatticeGrid,
    child_key: NodeKey,
    incoming: List[EdgeContribution],
    generation: int,
) -> Node:
    """Insert-or-merge one child from all of this generation's arrivals."""
    parent_keys = list(dict.fromkeys(entry.parent_key for entry in incoming))
    wire_parents = [format_key(key) for key in parent_keys]
    aggregates = merge_incoming(
        [entry.dimensions for entry in incoming],
        config.dimension_keys,
        config.reunification,
        config.reunification_formula,
    )
    child_dimensions = finalize_aggregates(aggregates)

    child_path_meta = None
    if config.binary_enumeration_supported:
        for entry in incoming:
            parent = grid.get(entry.parent_key)
            if parent is None or parent.path_meta is None:
                continue
            child_path_meta = merge_path_metas(
                child_path_meta, advance_path_meta(parent.path_meta, entry.move_index)
            )

    existing = grid.get(child_key)
    if existing is not None:
        existing.dimensions = merge_dimension_states(
            existing.dimensions, child_dimensions, config.dimension_defaults
        )
        existing.value = evaluate_effective_value(
            config,
            existing.dimensions,
            {
                "key": format_key(child_key),
                "parents": wire_parents,
                "generation": generation,
                "phase": "merge",
            },
        )
        for parent_key in parent_keys:
            existing.add_parent(parent_key)
        if config.binary_enumeration_supported and child_path_meta is not None:
            existing.path_meta = merge_path_metas(existing.path_meta, child_path_meta)
        return existing

    value = evaluate_effective_value(
        config,
        child_dimensions,
        {
            "key": format_key(child_key),
            "parents": wire_parents,
            "generation": generation,
            "phase": "forward",
        },
    )
    child = Node(
        key=child_key,
        value=value,
        dimensions=child_dimensions,
        generation=generation,
        parents=parent_keys,
        path_meta=child_path_meta,
    )
    child.position = create_position(
        config,
        child,
        {"generation": generation, "parents": wire_parents, "phase": "forward"},
    )
    return grid.add(child)
