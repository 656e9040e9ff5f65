"""
Pixel Rearrange
===============

Permute the pixels of a source image so the result approximates a target
image or weight mask. No colour is created or lost; every source pixel
lands in exactly one slot. Ships two solvers:

- **Optimal** (rank matching, exact for the scalar luminance cost)
- **Genetic** (population search, any cost, cancellable with live progress)
"""

__version__ = "0.3.0"

from pixel_rearrange.assignment import (
    apply_assignment,
    assignment_cost,
    invert_assignment,
    validate_assignment,
)
from pixel_rearrange.config import (
    Algorithm,
    CropScale,
    GenerationSettings,
    GeneticParams,
    RearrangeConfig,
)
from pixel_rearrange.cost_model import CostModel, build_cost_model
from pixel_rearrange.engine import (
    GenerationHandle,
    execute,
    generate,
    prepare_run,
    start_generation,
)
from pixel_rearrange.errors import (
    GenerationCancelled,
    InvalidCrop,
    InvalidSettings,
    MalformedAssignment,
    RearrangeError,
    SolverFailure,
)
from pixel_rearrange.image_io import normalize
from pixel_rearrange.preset import Preset, UnprocessedPreset, load_preset, save_preset
from pixel_rearrange.progress import CancelFlag, ProgressChannel
from pixel_rearrange.solver_genetic import solve_genetic
from pixel_rearrange.solver_optimal import solve_optimal

__all__ = [
    "Algorithm",
    "CancelFlag",
    "CostModel",
    "CropScale",
    "GenerationCancelled",
    "GenerationHandle",
    "GenerationSettings",
    "GeneticParams",
    "InvalidCrop",
    "InvalidSettings",
    "MalformedAssignment",
    "Preset",
    "ProgressChannel",
    "RearrangeConfig",
    "RearrangeError",
    "SolverFailure",
    "UnprocessedPreset",
    "apply_assignment",
    "assignment_cost",
    "build_cost_model",
    "execute",
    "generate",
    "invert_assignment",
    "load_preset",
    "normalize",
    "prepare_run",
    "save_preset",
    "solve_genetic",
    "solve_optimal",
    "start_generation",
    "validate_assignment",
]
