"""
Binary lattice classifier: symmetry metadata from a node's (row, col).

A node at generation `row` with vertical offset `y` sits in column
col = round((row + y) / 2) of an implicit binary counting triangle, i.e.
it was reached with `row - col` left moves and `col` right moves.

Algorithm (all integer bit arithmetic):
1. conflict = leftMoves & rightMoves; zero (or col outside [0, row]) is
   degenerate: no fold boundary at this node
2. exponent = floor(log2(conflict)), highestBit = 1 << exponent,
   mask = highestBit - 1
3. apex = moves & ~mask, local = moves - apex (per side)
4. orientationReverse = (localLeft & localRight) == 0
5. mirrored = mask - local (per side),
   orientationForward = (mirroredLeft & mirroredRight) == 0

The backpropagation engine hands the result to user formulas so they can
recognize structurally symmetric sibling pairs.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple, Union

from .types import NodeKey, parse_key


@dataclass(frozen=True)
class LatticeMetrics:
    """
    Classification of one node.

    Degenerate results carry conflict=0, highest_bit=0, layer_depth=-1 and
    both orientation flags False; the apex/local/mirror fields stay None.
    """
    coords: Tuple[Any, Any]
    row: int
    col: int
    left_moves: int
    right_moves: int
    conflict: int
    highest_bit: int
    layer_depth: int
    orientation_reverse: bool
    orientation_forward: bool
    mask: Optional[int] = None
    apex_left: Optional[int] = None
    apex_right: Optional[int] = None
    local_left: Optional[int] = None
    local_right: Optional[int] = None
    mirrored_left: Optional[int] = None
    mirrored_right: Optional[int] = None

    @property
    def is_degenerate(self) -> bool:
        return self.layer_depth < 0

    def to_dict(self) -> Dict[str, Any]:
        """Formula-facing camelCase view (None fields omitted)."""
        names = {
            "coords": "coords",
            "row": "row",
            "col": "col",
            "left_moves": "leftMoves",
            "right_moves": "rightMoves",
            "conflict": "conflict",
            "highest_bit": "highestBit",
            "layer_depth": "layerDepth",
            "orientation_reverse": "orientationReverse",
            "orientation_forward": "orientationForward",
            "mask": "mask",
            "apex_left": "apexLeft",
            "apex_right": "apexRight",
            "local_left": "localLeft",
            "local_right": "localRight",
            "mirrored_left": "mirroredLeft",
            "mirrored_right": "mirroredRight",
        }
        view = {names[name]: value for name, value in asdict(self).items() if value is not None}
        view["coords"] = {"x": self.coords[0], "y": self.coords[1]}
        return view


def round_half_up(value: float) -> int:
    """
    Round with halves going towards +infinity.

    Python's round() is banker's rounding; the column index needs
    round(0.5) == 1 and round(-0.5) == 0.

    Examples:
        >>> round_half_up(2.5)
        3
        >>> round_half_up(-0.5)
        0
    """
    return math.floor(value + 0.5)


def _degenerate(coords, row: int, col: int) -> LatticeMetrics:
    return LatticeMetrics(
        coords=coords,
        row=row,
        col=col,
        left_moves=row - col,
        right_moves=col,
        conflict=0,
        highest_bit=0,
        layer_depth=-1,
        orientation_reverse=False,
        orientation_forward=False,
    )


def classify_row_col(row: int, col: int, coords=(0, 0)) -> LatticeMetrics:
    """
    Classify a (row, col) position of the binary counting triangle.

    Args:
        row: Generation index (>= 0)
        col: Column index (number of right moves)
        coords: Original (x, y) coordinates, carried through for reference

    Returns:
        LatticeMetrics (degenerate when outside the triangle or conflict == 0)

    Examples:
        >>> classify_row_col(4, 1).orientation_reverse
        True
        >>> classify_row_col(3, 1).layer_depth
        -1
    """
    if col < 0 or col > row:
        return _degenerate(coords, row, col)

    left_moves = row - col
    right_moves = col
    conflict = left_moves & right_moves
    if conflict == 0:
        return _degenerate(coords, row, col)

    # floor(log2(conflict)) without float error for large rows
    exponent = conflict.bit_length() - 1
    highest_bit = 1 << exponent
    mask = highest_bit - 1

    apex_left = left_moves & ~mask
    apex_right = right_moves & ~mask
    local_left = left_moves - apex_left
    local_right = right_moves - apex_right
    orientation_reverse = (local_left & local_right) == 0

    mirrored_left = mask - local_left
    mirrored_right = mask - local_right
    orientation_forward = (mirrored_left & mirrored_right) == 0

    return LatticeMetrics(
        coords=coords,
        row=row,
        col=col,
        left_moves=left_moves,
        right_moves=right_moves,
        conflict=conflict,
        highest_bit=highest_bit,
        layer_depth=exponent,
        orientation_reverse=orientation_reverse,
        orientation_forward=orientation_forward,
        mask=mask,
        apex_left=apex_left,
        apex_right=apex_right,
        local_left=local_left,
        local_right=local_right,
        mirrored_left=mirrored_left,
        mirrored_right=mirrored_right,
    )


def classify_lattice_position(
    key: Union[NodeKey, str],
    generation: Optional[int] = None,
) -> Optional[LatticeMetrics]:
    """
    Classify a node from its key and generation.

    Args:
        key: Node key (x, y) or its wire form "x,y"
        generation: Node generation; when None the row is read from x

    Returns:
        LatticeMetrics, or None when no valid non-negative integer row exists
    """
    if isinstance(key, str):
        key = parse_key(key)
    if key is None:
        return None
    x, y = key
    row = generation if generation is not None else x
    if isinstance(row, float):
        if not math.isfinite(row) or not row.is_integer():
            return None
        row = int(row)
    if row < 0:
        return None
    col_raw = (row + y) / 2
    if not math.isfinite(col_raw):
        return None
    return classify_row_col(row, round_half_up(col_raw), coords=(x, y))
