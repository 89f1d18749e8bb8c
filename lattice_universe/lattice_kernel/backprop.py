"""
Multi-pass backpropagation from descendants to ancestors.

Each step is a two-phase pass:
1. Compute-and-accumulate: every (parent, child) edge is visited,
   generations from highest to lowest, and the backprop formula is called
   with detached snapshots of both endpoints. Returned updates are only
   accumulated, never applied, so no edge observes another edge's update
   from the same step.
2. Apply: accumulated updates are applied node by node, parent-role
   updates first, then child-role updates.

Formula return shape:
    {"parent": Update, "child": Update}
    Update = {"valueOverride"?: number, "valueDelta"?: number,
              "dimensions"?: {name: numeric delta}}

Within one step valueOverride wins over valueDelta; dimension deltas sum.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lattice_compile.hydrate import KernelConfig
from lattice_core.binary_lattice import classify_lattice_position
from lattice_core.dimensions import clone_dimensions, dimensions_to_dict, merge_dimension_states
from lattice_core.guards import as_finite, coerce_number, safe_call
from lattice_core.types import DimensionState, Node, NodeKey, format_key

from .expansion import LatticeGrid, evaluate_effective_value

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================


@dataclass
class NodeUpdate:
    """Updates accumulated for one node during one step."""
    value_delta: float = 0
    value_override: Optional[float] = None
    dimensions: Dict[str, float] = field(default_factory=dict)

    def accumulate(self, update: Mapping) -> None:
        override = as_finite(update.get("valueOverride"))
        delta = as_finite(update.get("valueDelta"))
        if override is not None:
            self.value_override = override
        elif delta is not None:
            self.value_delta += delta

        deltas = update.get("dimensions")
        if isinstance(deltas, Mapping):
            for key, raw_delta in deltas.items():
                numeric = coerce_number(raw_delta, default=None)
                if numeric is None:
                    continue
                self.dimensions[key] = self.dimensions.get(key, 0) + numeric


@dataclass
class BackpropReceipt:
    """
    Backpropagation run receipt.

    steps: Number of steps executed
    edges_visited: (parent, child) edges handed to the formula, all steps
    formula_updates: Formula calls that returned a parent or child update
    nodes_updated_per_step: Nodes touched by the apply phase, per step
    """
    steps: int = 0
    edges_visited: int = 0
    formula_updates: int = 0
    nodes_updated_per_step: List[int] = field(default_factory=list)


# =============================================================================
# Main Entry Point
# =============================================================================


def backpropagate(grid: LatticeGrid, config: KernelConfig) -> BackpropReceipt:
    """
    Run config.backprop_steps corrective passes over the lattice.

    Does nothing unless a backprop formula is configured and steps > 0.

    Args:
        grid: Lattice produced by expand_lattice (mutated in place)
        config: Hydrated kernel configuration

    Returns:
        BackpropReceipt
    """
    receipt = BackpropReceipt()
    if not config.backprop_enabled:
        return receipt

    buckets = grid.by_generation()
    generations = sorted(buckets, reverse=True)
    steps = config.backprop_steps

    for step in range(steps):
        parent_updates: Dict[NodeKey, NodeUpdate] = {}
        child_updates: Dict[NodeKey, NodeUpdate] = {}
        mode = config.step_mode(step)

        for generation in generations:
            for child in buckets[generation]:
                if not child.parents:
                    continue
                metrics = classify_lattice_position(child.key, child.generation)
                lattice = metrics.to_dict() if metrics is not None else None

                for parent_key in child.parents:
                    parent = grid.get(parent_key)
                    if parent is None:
                        continue
                    receipt.edges_visited += 1
                    result = safe_call(
                        config.backprop_formula,
                        "Backprop logic",
                        build_backprop_state(child),
                        build_backprop_state(parent),
                        {
                            "generation": generation,
                            "step": step,
                            "totalSteps": steps,
                            "childKey": format_key(child.key),
                            "parentKey": format_key(parent_key),
                            "mode": mode,
                            "reverseFill": config.backprop_fill_formula,
                            "lattice": lattice,
                        },
                    )
                    if not isinstance(result, Mapping):
                        continue
                    parent_update = result.get("parent")
                    child_update = result.get("child")
                    if isinstance(parent_update, Mapping) or isinstance(child_update, Mapping):
                        receipt.formula_updates += 1
                    # an empty update still marks the node for recomputation
                    if parent_update is not None:
                        accumulate_node_update(parent_updates, parent_key, parent_update)
                    if child_update is not None:
                        accumulate_node_update(child_updates, child.key, child_update)

        touched = apply_accumulated_updates(grid, config, parent_updates, step)
        touched += apply_accumulated_updates(grid, config, child_updates, step)
        receipt.steps += 1
        receipt.nodes_updated_per_step.append(touched)

    logger.debug(
        f"Backprop: {receipt.steps} steps, {receipt.edges_visited} edges, "
        f"{receipt.formula_updates} updates"
    )
    return receipt


# =============================================================================
# Helper Functions
# =============================================================================


def build_backprop_state(node: Node) -> Dict[str, Any]:
    """Detached snapshot of a node handed to the backprop formula."""
    value = as_finite(node.value)
    return {
        "key": format_key(node.key),
        "value": 0 if value is None else value,
        "dimensions": dimensions_to_dict(clone_dimensions(node.dimensions)),
        "generation": node.generation,
    }


def accumulate_node_update(table: Dict[NodeKey, NodeUpdate], key: NodeKey, update: Any) -> None:
    """Fold one formula update into the per-node table (non-mappings ignored)."""
    if not isinstance(update, Mapping):
        return
    table.setdefault(key, NodeUpdate()).accumulate(update)


def apply_accumulated_updates(
    grid: LatticeGrid,
    config: KernelConfig,
    table: Dict[NodeKey, NodeUpdate],
    step: int,
) -> int:
    """
    Apply one role table of accumulated updates.

    Dimension deltas are merged one at a time, recomputing the effective
    value after each, so later dimensions see the consequences of earlier
    ones. The final value is the override if any, else the last effective
    value plus the accumulated value delta; non-finite values become 0.

    Returns:
        Number of nodes updated
    """
    updated = 0
    for key, update in table.items():
        node = grid.get(key)
        if node is None:
            continue
        context = {
            "key": format_key(key),
            "generation": node.generation,
            "phase": "backprop",
            "step": step,
        }
        base_value = evaluate_effective_value(config, node.dimensions, context)
        for dimension_key, delta in update.dimensions.items():
            node.dimensions = merge_dimension_states(
                node.dimensions,
                {dimension_key: DimensionState(value=delta, is_active=True, contributors=1)},
                config.dimension_defaults,
            )
            base_value = evaluate_effective_value(config, node.dimensions, context)

        if update.value_override is not None:
            node.value = update.value_override
        else:
            try:
                next_value = as_finite(base_value + update.value_delta)
            except OverflowError:
                next_value = None
            node.value = base_value if next_value is None else next_value
        if as_finite(node.value) is None:
            node.value = 0
        updated += 1
    return updated
