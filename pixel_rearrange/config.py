"""Centralised configuration via frozen dataclasses."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pixel_rearrange.errors import InvalidCrop, InvalidSettings

COLOR_SPACES = ("luminance", "lab", "rgb")

# Colour spaces whose cost reduces to one scalar per pixel.
SCALAR_COLOR_SPACES = frozenset({"luminance"})


class Algorithm(str, Enum):
    """Closed set of solving strategies."""

    OPTIMAL = "optimal"
    GENETIC = "genetic"

    @classmethod
    def parse(cls, tag: str | Algorithm) -> Algorithm:
        if isinstance(tag, cls):
            return tag
        try:
            return cls(str(tag).strip().lower())
        except ValueError:
            choices = ", ".join(a.value for a in cls)
            raise InvalidSettings(
                f"unknown algorithm {tag!r}, expected one of: {choices}"
            ) from None


@dataclass(frozen=True)
class CropScale:
    """Normalised square sub-rectangle, relative to the centred square.

    Attributes:
        x:     Left offset as a fraction of the square's side.
        y:     Top offset as a fraction of the square's side.
        scale: Side of the crop as a fraction of the square's side.
    """

    x: float = 0.0
    y: float = 0.0
    scale: float = 1.0

    @classmethod
    def identity(cls) -> CropScale:
        return cls(0.0, 0.0, 1.0)

    @classmethod
    def parse(cls, text: str) -> CropScale:
        """Parse ``"x,y,scale"`` (as typed on the command line)."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 3:
            raise InvalidCrop(f"crop must be 'x,y,scale', got {text!r}")
        try:
            x, y, scale = (float(p) for p in parts)
        except ValueError:
            raise InvalidCrop(f"crop values must be numbers, got {text!r}") from None
        return cls(x, y, scale)

    @property
    def is_identity(self) -> bool:
        return self == CropScale.identity()


@dataclass(frozen=True)
class GeneticParams:
    """Tuneable parameters of the genetic solver.

    Attributes:
        population:       Candidate permutations per generation.
        generations:      Generation limit.
        elite_fraction:   Share of the population carried over unmodified.
        crossover_rate:   Probability that an offspring is produced by PMX.
        mutation_rate:    Per-position probability of taking part in a swap.
        tournament_size:  Contenders per tournament selection.
        local_swaps:      Improving-swap attempts on the best candidate per
                          generation (0 disables).
        time_budget:      Wall-clock limit in seconds (None = unbounded).
        preview_interval: Generations between assignment/preview updates.
        seed:             Random seed (None = non-deterministic).
    """

    population: int = 24
    generations: int = 300
    elite_fraction: float = 0.1
    crossover_rate: float = 0.9
    mutation_rate: float = 0.002
    tournament_size: int = 3
    local_swaps: int = 512
    time_budget: float | None = None
    preview_interval: int = 10
    seed: int | None = None

    def validate(self) -> None:
        if self.population < 2:
            raise InvalidSettings(f"population must be >= 2, got {self.population}")
        if self.generations < 1:
            raise InvalidSettings(f"generations must be >= 1, got {self.generations}")
        if not 0.0 <= self.elite_fraction < 1.0:
            raise InvalidSettings(
                f"elite_fraction must be in [0, 1), got {self.elite_fraction}"
            )
        for name in ("crossover_rate", "mutation_rate"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidSettings(f"{name} must be in [0, 1], got {value}")
        if self.tournament_size < 1:
            raise InvalidSettings(
                f"tournament_size must be >= 1, got {self.tournament_size}"
            )
        if self.local_swaps < 0:
            raise InvalidSettings(f"local_swaps must be >= 0, got {self.local_swaps}")
        if self.time_budget is not None and self.time_budget <= 0:
            raise InvalidSettings(f"time_budget must be > 0, got {self.time_budget}")
        if self.preview_interval < 1:
            raise InvalidSettings(
                f"preview_interval must be >= 1, got {self.preview_interval}"
            )

    @property
    def elite_count(self) -> int:
        return max(1, round(self.population * self.elite_fraction))


@dataclass(frozen=True)
class GenerationSettings:
    """Everything a single run needs besides the images themselves."""

    name: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    sidelen: int = 128
    algorithm: Algorithm = Algorithm.OPTIMAL
    source_crop: CropScale = field(default_factory=CropScale.identity)
    target_crop: CropScale = field(default_factory=CropScale.identity)
    color_space: str = "luminance"
    genetic: GeneticParams = field(default_factory=GeneticParams)
    retain_target: bool = True

    @classmethod
    def default(cls, name: str, run_id: uuid.UUID | None = None) -> GenerationSettings:
        return cls(name=name, id=run_id or uuid.uuid4())

    def validate(self) -> None:
        """Raise :class:`InvalidSettings` if the run cannot start."""
        if not isinstance(self.sidelen, int) or self.sidelen < 1:
            raise InvalidSettings(f"sidelen must be a positive integer, got {self.sidelen!r}")
        algorithm = Algorithm.parse(self.algorithm)
        if self.color_space not in COLOR_SPACES:
            raise InvalidSettings(
                f"unknown color space {self.color_space!r}, "
                f"expected one of: {', '.join(COLOR_SPACES)}"
            )
        if algorithm is Algorithm.OPTIMAL and self.color_space not in SCALAR_COLOR_SPACES:
            raise InvalidSettings(
                f"the optimal solver needs a scalar cost; color space "
                f"{self.color_space!r} is only supported by the genetic solver"
            )
        if algorithm is Algorithm.GENETIC:
            self.genetic.validate()


@dataclass(frozen=True)
class RearrangeConfig:
    """Defaults shared by the CLI and the Streamlit app.

    Attributes:
        sidelen:        Side of the square working grid.
        algorithm:      "optimal" (rank matching) or "genetic".
        color_space:    Matching feature - "luminance", "lab" or "rgb".
        pixel_upscale:  Each logical pixel becomes n x n in saved previews.
        output_format:  Image format for upscaled previews.
        channel_size:   Capacity of the progress channel.
        send_timeout:   Seconds a progress update may wait on a full channel.
        output_dir:     Folder for results.
    """

    sidelen: int = 128
    algorithm: str = "optimal"
    color_space: str = "luminance"

    pixel_upscale: int = 4
    output_format: str = "png"

    channel_size: int = 16
    send_timeout: float = 0.05

    output_dir: Path = field(default_factory=lambda: Path("output"))
