"""
Path enumeration metadata (count, ones-histogram, sampled paths).

A path string is the sequence of move indices from the root, one character
per move: '1' for move index 1 and '0' for every other index (meaningful for
two-move configurations). Counting stays exact; explicit enumeration is
capped at ENUMERATION_SAMPLE_LIMIT samples per node.
"""

from typing import Dict, Iterable, List, Optional

from .types import ENUMERATION_SAMPLE_LIMIT, PathMeta


def root_path_meta() -> PathMeta:
    """Metadata of the root: one empty path with zero '1' moves."""
    return PathMeta(depth=0, total=1, ones_histogram={0: 1}, samples=[""], sample_complete=True)


def clone_path_meta(meta: Optional[PathMeta]) -> Optional[PathMeta]:
    if meta is None:
        return None
    return PathMeta(
        depth=meta.depth,
        total=meta.total,
        ones_histogram={int(k): v for k, v in meta.ones_histogram.items()},
        samples=list(meta.samples),
        sample_complete=bool(meta.sample_complete),
    )


def advance_path_meta(parent_meta: Optional[PathMeta], move_index: int) -> Optional[PathMeta]:
    """
    Extend every path of the parent by one move.

    Args:
        parent_meta: Metadata of the node the move starts from
        move_index: Index of the move in the configured move list

    Returns:
        New PathMeta (parent untouched), or None without parent metadata

    Examples:
        >>> advance_path_meta(root_path_meta(), 1).samples
        ['1']
    """
    if parent_meta is None:
        return None
    increment = 1 if move_index == 1 else 0
    histogram: Dict[int, int] = {}
    for ones, count in parent_meta.ones_histogram.items():
        shifted = int(ones) + increment
        histogram[shifted] = histogram.get(shifted, 0) + count

    step = "1" if move_index == 1 else "0"
    samples = [sample + step for sample in parent_meta.samples]
    sample_complete = parent_meta.sample_complete
    if len(samples) > ENUMERATION_SAMPLE_LIMIT:
        samples = samples[:ENUMERATION_SAMPLE_LIMIT]
        sample_complete = False

    return PathMeta(
        depth=parent_meta.depth + 1,
        total=parent_meta.total,
        ones_histogram=histogram,
        samples=samples,
        sample_complete=sample_complete,
    )


def merge_unique_samples(a: Iterable[str], b: Iterable[str]) -> List[str]:
    """Deduplicated, lexicographically sorted union of two sample lists."""
    return sorted({sample for sample in [*a, *b] if isinstance(sample, str)})


def merge_path_metas(base: Optional[PathMeta], addition: Optional[PathMeta]) -> Optional[PathMeta]:
    """
    Merge the path sets of two arrivals at the same node.

    depth = max, total = sum, histograms sum per key, samples are the sorted
    union. The merge is complete only if both sides were complete and both
    the union size and the total fit under the cap; otherwise samples are
    truncated to the cap and marked incomplete.
    """
    if addition is None:
        return clone_path_meta(base)
    if base is None:
        return clone_path_meta(addition)

    total = base.total + addition.total
    histogram: Dict[int, int] = {}
    for source in (base.ones_histogram, addition.ones_histogram):
        for ones, count in source.items():
            histogram[int(ones)] = histogram.get(int(ones), 0) + count

    combined = merge_unique_samples(base.samples, addition.samples)
    complete = (
        len(combined) <= ENUMERATION_SAMPLE_LIMIT
        and base.sample_complete
        and addition.sample_complete
        and total <= ENUMERATION_SAMPLE_LIMIT
    )
    return PathMeta(
        depth=max(base.depth, addition.depth),
        total=total,
        ones_histogram=histogram,
        samples=combined if complete else combined[:ENUMERATION_SAMPLE_LIMIT],
        sample_complete=complete,
    )
