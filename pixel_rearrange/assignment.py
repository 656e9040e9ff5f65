"""Applying, validating and inverting pixel assignments.

An assignment is an (n,) integer array where ``assignment[dst] = src``:
destination slot ``dst`` receives the pixel originally at ``src``.
"""

from __future__ import annotations

import numpy as np

from pixel_rearrange.cost_model import CostModel
from pixel_rearrange.errors import MalformedAssignment


def validate_assignment(assignment: np.ndarray, size: int | None = None) -> np.ndarray:
    """Return *assignment* as an int64 array, or raise if it is not a permutation.

    Args:
        assignment: Sequence of source indices, one per destination slot.
        size:       Expected number of slots (defaults to ``len(assignment)``).
    """
    arr = np.asarray(assignment)
    if arr.ndim != 1:
        raise MalformedAssignment(f"assignment must be 1-D, got shape {arr.shape}")
    if arr.size and not np.issubdtype(arr.dtype, np.integer):
        raise MalformedAssignment(f"assignment must hold integers, got {arr.dtype}")
    n = len(arr) if size is None else size
    if len(arr) != n:
        raise MalformedAssignment(f"assignment has {len(arr)} entries, grid has {n} pixels")
    arr = arr.astype(np.int64, copy=False)
    if n == 0:
        return arr

    lo, hi = int(arr.min()), int(arr.max())
    if lo < 0 or hi >= n:
        raise MalformedAssignment(f"assignment index out of range [0, {n}): {lo}..{hi}")
    counts = np.bincount(arr, minlength=n)
    if np.any(counts != 1):
        dupes = np.flatnonzero(counts > 1)
        raise MalformedAssignment(
            f"assignment is not a permutation: {len(dupes)} duplicated source "
            f"indices (first: {int(dupes[0])})"
        )
    return arr


def apply_assignment(source: np.ndarray, assignment: np.ndarray) -> np.ndarray:
    """Rearrange *source* so that slot ``d`` holds pixel ``assignment[d]``.

    Args:
        source:     (H, W, C), (H, W) or flat (n, C) pixel buffer.
        assignment: (n,) permutation with n = H * W.

    Returns:
        New buffer with the same shape and dtype as *source*.
    """
    src = np.asarray(source)
    if src.ndim == 3:
        flat = src.reshape(-1, src.shape[2])
    elif src.ndim == 2 and src.shape[0] != len(assignment):
        # (H, W) single-channel grid rather than (n, C) rows
        flat = src.reshape(-1)
    else:
        flat = src
    arr = validate_assignment(assignment, size=flat.shape[0])
    return flat[arr].reshape(src.shape)


def invert_assignment(assignment: np.ndarray) -> np.ndarray:
    """Inverse permutation: ``inverse[src] = dst``."""
    arr = validate_assignment(assignment)
    inverse = np.empty_like(arr)
    inverse[arr] = np.arange(len(arr), dtype=arr.dtype)
    return inverse


def random_assignment(n: int, rng: np.random.Generator | None = None) -> np.ndarray:
    rng = rng or np.random.default_rng()
    return rng.permutation(n).astype(np.int64)


def assignment_cost(cost: CostModel, assignment: np.ndarray) -> float:
    """Total squared feature distance of a validated *assignment* under *cost*."""
    return cost.total_cost(validate_assignment(assignment, size=cost.size))
