"""Colour-space conversion for the matching features."""

from __future__ import annotations

import numpy as np
from skimage.color import rgb2gray, rgb2lab


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert flat (N, 3) uint8 RGB → (N, 3) float64 CIELAB."""
    return rgb2lab(rgb.astype(np.float64).reshape(1, -1, 3) / 255.0).reshape(-1, 3)


def luminance(pixels: np.ndarray) -> np.ndarray:
    """Per-pixel luminance on a 0..255 scale, flattened to shape (N,).

    Accepts an (H, W, 3) RGB grid or a single-channel (H, W) mask; the mask
    is taken as-is, so a grayscale weight mask keeps its exact values.
    """
    arr = np.asarray(pixels)
    if arr.ndim == 3 and arr.shape[-1] == 3:
        flat = arr.reshape(-1, 3).astype(np.float64) / 255.0
        return rgb2gray(flat.reshape(1, -1, 3)).reshape(-1) * 255.0
    return arr.reshape(-1).astype(np.float64)
