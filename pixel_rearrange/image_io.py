"""Image loading, crop geometry, saving, and comparison-grid generation."""

from __future__ import annotations

import math
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from pixel_rearrange.color_utils import luminance
from pixel_rearrange.config import CropScale
from pixel_rearrange.errors import InvalidCrop, InvalidSettings


def crop_box(
    width: int,
    height: int,
    crop: CropScale,
) -> tuple[float, float, float, float]:
    """Resolve *crop* to a ``(left, top, right, bottom)`` box in pixels.

    The crop is expressed relative to the centred square of the image
    (side = shorter dimension), so a non-square image always loses the
    ends of its longer dimension, even with the identity crop.
    """
    if width < 1 or height < 1:
        raise InvalidCrop(f"image has no pixels ({width}x{height})")
    if not (math.isfinite(crop.scale) and 0.0 < crop.scale <= 1.0):
        raise InvalidCrop(f"crop scale must be in (0, 1], got {crop.scale}")
    if not (math.isfinite(crop.x) and math.isfinite(crop.y)) or crop.x < 0 or crop.y < 0:
        raise InvalidCrop(f"crop offset must be non-negative, got ({crop.x}, {crop.y})")
    # Small tolerance so that e.g. x=0.7, scale=0.3 is accepted.
    if crop.x + crop.scale > 1.0 + 1e-9 or crop.y + crop.scale > 1.0 + 1e-9:
        raise InvalidCrop(
            f"crop ({crop.x}, {crop.y}, {crop.scale}) exceeds the image bounds"
        )

    square = min(width, height)
    extent = crop.scale * square
    if extent < 1.0:
        raise InvalidCrop(
            f"crop selects {extent:.2f} px of a {square} px square; need at least 1 px"
        )

    base_x = (width - square) / 2
    base_y = (height - square) / 2
    left = min(base_x + crop.x * square, width - extent)
    top = min(base_y + crop.y * square, height - extent)
    return left, top, left + extent, top + extent


def normalize(
    image: Image.Image | np.ndarray,
    crop: CropScale,
    side: int,
) -> np.ndarray:
    """Crop *image* and resample it to a ``side x side`` working grid.

    RGB input gives a ``(side, side, 3)`` grid; single-channel input
    (a weight mask) gives ``(side, side)``. The returned array is read-only.
    """
    if side < 1:
        raise InvalidSettings(f"side length must be >= 1, got {side}")

    if isinstance(image, np.ndarray):
        image = Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8))
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    box = crop_box(image.width, image.height, crop)
    img = image.resize((side, side), Image.LANCZOS, box=box)

    grid = np.array(img, dtype=np.uint8)
    grid.flags.writeable = False
    return grid


def load_rgb(path: str | Path) -> np.ndarray:
    """Load any image as an ``(H, W, 3)`` uint8 array at native resolution."""
    with Image.open(path) as img:
        return np.array(img.convert("RGB"), dtype=np.uint8)


def load_array(path: str | Path) -> np.ndarray:
    """Load an image keeping grayscale as (H, W); anything else becomes RGB."""
    with Image.open(path) as img:
        if img.mode != "L":
            img = img.convert("RGB")
        return np.array(img, dtype=np.uint8)


def load_weight_mask(path: str | Path, side: int | None = None) -> np.ndarray:
    """Load an image as a single-channel weight mask (brighter = heavier).

    Pixels are reduced with the same luminance the cost model uses, then
    the centred square is resampled to *side* (default: the shorter side).
    """
    rgb = load_rgb(path)
    luma = luminance(rgb).reshape(rgb.shape[:2])
    gray = np.clip(np.rint(luma), 0, 255).astype(np.uint8)
    side = side if side is not None else min(gray.shape)
    return normalize(gray, CropScale.identity(), side)


def save_image(array: np.ndarray, path: str | Path) -> None:
    """Save a uint8 RGB or grayscale array at its native size."""
    Image.fromarray(np.ascontiguousarray(array, dtype=np.uint8)).save(path)


def save_upscaled(
    array: np.ndarray,
    path: str | Path,
    pixel_upscale: int = 4,
) -> None:
    """Save a small array as a nearest-neighbour-upscaled image."""
    img = Image.fromarray(np.ascontiguousarray(array, dtype=np.uint8))
    h, w = array.shape[:2]
    img = img.resize((w * pixel_upscale, h * pixel_upscale), Image.NEAREST)
    img.save(path)


def make_comparison_grid(
    source: np.ndarray,
    target: np.ndarray | None,
    output: np.ndarray,
    output_path: str | Path,
    pixel_upscale: int = 4,
) -> None:
    """Create a comparison strip: Source | Target | Output.

    The target panel is skipped when *target* is None. Grayscale panels
    are shown as RGB.
    """
    side = output.shape[0]
    panel = side * pixel_upscale
    label_height = 36

    def _panel(array: np.ndarray) -> Image.Image:
        img = Image.fromarray(np.ascontiguousarray(array, dtype=np.uint8)).convert("RGB")
        return img.resize((panel, panel), Image.NEAREST)

    panels = [_panel(source)]
    labels = [f"Source {side}x{side}"]
    if target is not None:
        panels.append(_panel(target))
        labels.append("Target")
    panels.append(_panel(output))
    labels.append("Output")

    gap = 8
    total_w = len(panels) * panel + (len(panels) - 1) * gap
    total_h = panel + label_height

    canvas = Image.new("RGB", (total_w, total_h), (30, 30, 30))
    draw = ImageDraw.Draw(canvas)

    try:
        font = ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", 18,
        )
    except OSError:
        font = ImageFont.load_default()

    for i, (img, label) in enumerate(zip(panels, labels, strict=False)):
        x = i * (panel + gap)
        canvas.paste(img, (x, label_height))

        bbox = draw.textbbox((0, 0), label, font=font)
        text_w = bbox[2] - bbox[0]
        tx = x + (panel - text_w) // 2
        draw.text((tx, 6), label, fill=(220, 220, 220), font=font)

    canvas.save(output_path)
