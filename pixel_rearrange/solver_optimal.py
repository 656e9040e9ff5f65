"""Optimal assignment by rank matching.

For a cost that is a convex function of the difference of one scalar per
pixel, pairing the k-th lightest source pixel with the k-th lightest slot
minimises the total cost (rearrangement inequality). Sorting both sides
is O(n log n), so this scales to grids far beyond what a full cost
matrix and the Hungarian method could handle.
"""

from __future__ import annotations

import logging
import time

import numpy as np

from pixel_rearrange.errors import GenerationCancelled, InvalidSettings
from pixel_rearrange.progress import CancelFlag

logger = logging.getLogger(__name__)


def rank_match(source_key: np.ndarray, target_key: np.ndarray) -> np.ndarray:
    """Map the k-th ranked slot to the k-th ranked source pixel.

    Both sorts are stable, so ties keep their original index order and the
    result is fully deterministic.
    """
    src_order = np.argsort(source_key, kind="stable")
    dst_order = np.argsort(target_key, kind="stable")
    assignment = np.empty(len(src_order), dtype=np.int64)
    assignment[dst_order] = src_order
    return assignment


def solve_optimal(
    source_weight: np.ndarray,
    target_weight: np.ndarray,
    cancel: CancelFlag | None = None,
) -> np.ndarray:
    """Find the cost-minimal slot → source assignment for scalar weights.

    Args:
        source_weight: (n,) scalar weight of each source pixel.
        target_weight: (n,) desired weight of each destination slot.
        cancel:        Checked once before sorting.

    Returns:
        (n,) int64 - ``assignment[dst] = src``.
    """
    src = np.asarray(source_weight, dtype=np.float64)
    tgt = np.asarray(target_weight, dtype=np.float64)
    if src.ndim == 2 and src.shape[1] == 1:
        src = src[:, 0]
    if tgt.ndim == 2 and tgt.shape[1] == 1:
        tgt = tgt[:, 0]
    if src.ndim != 1 or tgt.ndim != 1:
        raise InvalidSettings(
            f"optimal solver needs scalar weights, got shapes {src.shape} and {tgt.shape}"
        )
    if src.shape != tgt.shape:
        raise InvalidSettings(
            f"weight arrays differ in length: {len(src)} vs {len(tgt)}"
        )

    if cancel is not None and cancel.is_set():
        raise GenerationCancelled()

    logger.info("Rank matching %d pixels …", len(src))
    t0 = time.perf_counter()
    assignment = rank_match(src, tgt)
    logger.info("Assignment solved  (%.2f s)", time.perf_counter() - t0)
    return assignment
