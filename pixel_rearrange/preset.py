"""Run inputs and results, and their on-disk representation.

A saved preset is a directory::

    source.png        working-grid source pixels
    target.png        optional, the normalised target
    output.png        source rearranged by the assignment
    assignments.json  JSON integer list, index = slot, value = source index
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from pixel_rearrange.assignment import apply_assignment, validate_assignment
from pixel_rearrange.errors import MalformedAssignment
from pixel_rearrange.image_io import load_array, load_rgb, save_image

logger = logging.getLogger(__name__)

ASSIGNMENTS_FILE = "assignments.json"


@dataclass(frozen=True)
class UnprocessedPreset:
    """Raw run input: the source image at native resolution."""

    name: str
    width: int
    height: int
    source_img: np.ndarray

    @classmethod
    def from_array(cls, name: str, source: np.ndarray) -> UnprocessedPreset:
        h, w = source.shape[:2]
        return cls(name=name, width=w, height=h, source_img=source)

    @classmethod
    def from_path(cls, path: str | Path, name: str | None = None) -> UnprocessedPreset:
        path = Path(path)
        return cls.from_array(name or path.stem, load_rgb(path))


@dataclass(frozen=True)
class Preset:
    """A finished run.

    ``inner`` holds the working-grid source (width == height == sidelen) so
    that ``assignments`` indexes its pixels directly.
    """

    inner: UnprocessedPreset
    assignments: np.ndarray
    target_img: np.ndarray | None = None

    def __post_init__(self) -> None:
        validate_assignment(self.assignments, size=self.inner.width * self.inner.height)

    @property
    def name(self) -> str:
        return self.inner.name

    @property
    def sidelen(self) -> int:
        return self.inner.width

    def output(self) -> np.ndarray:
        return apply_assignment(self.inner.source_img, self.assignments)


def save_assignments(path: str | Path, assignment: np.ndarray) -> None:
    arr = validate_assignment(assignment)
    Path(path).write_text(json.dumps(arr.tolist()))


def load_assignments(path: str | Path, size: int | None = None) -> np.ndarray:
    try:
        data = json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise MalformedAssignment(f"{path}: not valid JSON ({exc})") from exc
    if not isinstance(data, list) or not all(
        isinstance(v, int) and not isinstance(v, bool) for v in data
    ):
        raise MalformedAssignment(f"{path}: expected a list of integers")
    return validate_assignment(np.array(data, dtype=np.int64), size=size)


def save_preset(preset: Preset, out_dir: str | Path) -> Path:
    """Write *preset* to *out_dir* (created if missing)."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    save_image(preset.inner.source_img, out_dir / "source.png")
    if preset.target_img is not None:
        save_image(preset.target_img, out_dir / "target.png")
    save_image(preset.output(), out_dir / "output.png")
    save_assignments(out_dir / ASSIGNMENTS_FILE, preset.assignments)

    logger.info("Preset %r saved to %s", preset.name, out_dir)
    return out_dir


def load_preset(preset_dir: str | Path, name: str | None = None) -> Preset:
    preset_dir = Path(preset_dir)
    inner = UnprocessedPreset.from_path(preset_dir / "source.png", name or preset_dir.name)
    assignments = load_assignments(
        preset_dir / ASSIGNMENTS_FILE, size=inner.width * inner.height,
    )
    target_path = preset_dir / "target.png"
    target = load_array(target_path) if target_path.exists() else None
    return Preset(inner=inner, assignments=assignments, target_img=target)
