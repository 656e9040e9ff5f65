"""Pairing cost between source pixels and destination slots.

The cost of sending source pixel ``i`` to slot ``j`` is the squared
Euclidean distance between their feature vectors; the total cost of an
assignment is the sum over all slots. With one feature per pixel
(luminance against a weight mask) the cost is rank-reducible and the
optimal solver is exact. With colour features (CIELAB or RGB against a
target image) only the genetic solver applies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from pixel_rearrange.color_utils import luminance, rgb_to_lab
from pixel_rearrange.config import COLOR_SPACES
from pixel_rearrange.errors import InvalidSettings

logger = logging.getLogger(__name__)


def as_features(weights: np.ndarray) -> np.ndarray:
    """Return *weights* as a float64 (n, d) feature matrix."""
    arr = np.asarray(weights, dtype=np.float64)
    if arr.ndim == 1:
        return arr.reshape(-1, 1)
    if arr.ndim == 2:
        return arr
    raise InvalidSettings(f"weights must be 1-D or 2-D, got shape {arr.shape}")


@dataclass(frozen=True)
class CostModel:
    """Feature arrays for both sides of the matching.

    Attributes:
        source:     (n, d) float64 - feature of each source pixel.
        target:     (n, d) float64 - desired feature of each slot.
        source_key: (n,) float64 - scalar used to rank source pixels.
        target_key: (n,) float64 - scalar used to rank slots.
    """

    source: np.ndarray
    target: np.ndarray
    source_key: np.ndarray
    target_key: np.ndarray

    def __post_init__(self) -> None:
        if self.source.shape != self.target.shape:
            raise InvalidSettings(
                f"source features {self.source.shape} do not match "
                f"target features {self.target.shape}"
            )

    @classmethod
    def from_weights(cls, source_weight: np.ndarray, target_weight: np.ndarray) -> CostModel:
        """Build a model straight from weight arrays, ranking by the first column."""
        source = as_features(source_weight)
        target = as_features(target_weight)
        return cls(source, target, source[:, 0].copy(), target[:, 0].copy())

    @property
    def size(self) -> int:
        return self.source.shape[0]

    @property
    def is_scalar(self) -> bool:
        return self.source.shape[1] == 1

    def pair_cost(self, src: int, dst: int) -> float:
        d = self.source[src] - self.target[dst]
        return float(np.dot(d, d))

    def slot_costs(self, assignment: np.ndarray) -> np.ndarray:
        """(n,) cost contributed by each destination slot."""
        return np.sum((self.source[assignment] - self.target) ** 2, axis=1)

    def total_cost(self, assignment: np.ndarray) -> float:
        return float(np.sum(self.slot_costs(assignment)))


def build_cost_model(
    source_grid: np.ndarray,
    target_grid: np.ndarray,
    color_space: str = "luminance",
) -> CostModel:
    """Derive the matching features for two equal-size working grids.

    Args:
        source_grid: (N, N, 3) uint8 source pixels.
        target_grid: (N, N, 3) uint8 target image or (N, N) weight mask.
        color_space: ``"luminance"``, ``"lab"`` or ``"rgb"``.
    """
    if color_space not in COLOR_SPACES:
        raise InvalidSettings(f"unknown color space {color_space!r}")
    n = source_grid.shape[0] * source_grid.shape[1]
    if target_grid.shape[0] * target_grid.shape[1] != n:
        raise InvalidSettings(
            f"grids differ in size: {source_grid.shape[:2]} vs {target_grid.shape[:2]}"
        )

    src_key = luminance(source_grid)
    tgt_key = luminance(target_grid)

    if color_space == "luminance":
        return CostModel(src_key.reshape(-1, 1), tgt_key.reshape(-1, 1), src_key, tgt_key)

    if target_grid.ndim != 3:
        raise InvalidSettings(
            f"color space {color_space!r} needs an RGB target image, not a weight mask"
        )

    src_rgb = source_grid.reshape(-1, 3)
    tgt_rgb = target_grid.reshape(-1, 3)
    if color_space == "lab":
        src = rgb_to_lab(src_rgb)
        tgt = rgb_to_lab(tgt_rgb)
        logger.debug("Cost model: CIELAB features for %d pixels", n)
        return CostModel(src, tgt, src[:, 0].copy(), tgt[:, 0].copy())

    logger.debug("Cost model: RGB features for %d pixels", n)
    return CostModel(
        src_rgb.astype(np.float64), tgt_rgb.astype(np.float64), src_key, tgt_key,
    )
