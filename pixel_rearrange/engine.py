"""Run orchestration: preparation, solver dispatch and the worker thread.

Preparation happens on the caller's thread and raises straight away;
nothing is spawned for a run that cannot start. Once the worker runs,
every outcome is reported as exactly one terminal message on the
channel and no exception crosses the thread boundary.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

import numpy as np

from pixel_rearrange.assignment import assignment_cost, validate_assignment
from pixel_rearrange.config import Algorithm, GenerationSettings
from pixel_rearrange.cost_model import CostModel, build_cost_model
from pixel_rearrange.errors import (
    GenerationCancelled,
    InvalidSettings,
    RearrangeError,
    SolverFailure,
)
from pixel_rearrange.image_io import normalize
from pixel_rearrange.preset import Preset, UnprocessedPreset
from pixel_rearrange.progress import (
    CancelFlag,
    Cancelled,
    Done,
    Error,
    Progress,
    ProgressChannel,
    ProgressMsg,
    is_terminal,
)
from pixel_rearrange.solver_genetic import solve_genetic
from pixel_rearrange.solver_optimal import solve_optimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedRun:
    """Validated settings plus both working grids and their cost model."""

    unprocessed: UnprocessedPreset
    settings: GenerationSettings
    source: np.ndarray
    target: np.ndarray
    cost: CostModel

    @property
    def algorithm(self) -> Algorithm:
        return Algorithm.parse(self.settings.algorithm)


def prepare_run(
    unprocessed: UnprocessedPreset,
    target_image: np.ndarray,
    settings: GenerationSettings,
) -> PreparedRun:
    """Validate *settings* and normalise both images to the working grid.

    Args:
        unprocessed:  Source image at native resolution.
        target_image: (H, W, 3) target image or (H, W) weight mask.
        settings:     Run parameters.

    Raises:
        InvalidSettings, InvalidCrop: before any computation starts.
    """
    settings.validate()
    side = settings.sidelen

    t0 = time.perf_counter()
    source = normalize(unprocessed.source_img, settings.source_crop, side)
    target = normalize(np.asarray(target_image), settings.target_crop, side)
    cost = build_cost_model(source, target, settings.color_space)
    logger.info(
        "Prepared %r: %dx%d grid, %s cost  (%.2f s)",
        settings.name, side, side, settings.color_space, time.perf_counter() - t0,
    )
    return PreparedRun(unprocessed, settings, source, target, cost)


def _finish(run: PreparedRun, assignment: np.ndarray) -> Preset:
    side = run.settings.sidelen
    try:
        assignment = validate_assignment(assignment, size=side * side)
    except RearrangeError as exc:
        raise SolverFailure(f"solver produced an invalid assignment: {exc}") from exc
    inner = UnprocessedPreset(
        name=run.unprocessed.name, width=side, height=side, source_img=run.source,
    )
    target = run.target if run.settings.retain_target else None
    return Preset(inner=inner, assignments=assignment, target_img=target)


def process_optimal(
    run: PreparedRun,
    channel: ProgressChannel,
    cancel: CancelFlag,
) -> Preset:
    if not run.cost.is_scalar:
        raise InvalidSettings("the optimal solver needs a scalar cost model")
    channel.send(Progress(0.0))
    assignment = solve_optimal(run.cost.source_key, run.cost.target_key, cancel=cancel)
    logger.info("Optimal cost: %.0f", assignment_cost(run.cost, assignment))
    channel.send(Progress(1.0))
    return _finish(run, assignment)


def process_genetic(
    run: PreparedRun,
    channel: ProgressChannel,
    cancel: CancelFlag,
) -> Preset:
    channel.send(Progress(0.0))
    assignment = solve_genetic(
        run.cost,
        params=run.settings.genetic,
        channel=channel,
        cancel=cancel,
        preview_source=run.source,
    )
    channel.send(Progress(1.0))
    return _finish(run, assignment)


SOLVERS: dict[Algorithm, Callable[[PreparedRun, ProgressChannel, CancelFlag], Preset]] = {
    Algorithm.OPTIMAL: process_optimal,
    Algorithm.GENETIC: process_genetic,
}


def execute(run: PreparedRun, channel: ProgressChannel, cancel: CancelFlag) -> None:
    """Run the selected solver and emit exactly one terminal message."""
    try:
        preset = SOLVERS[run.algorithm](run, channel, cancel)
    except GenerationCancelled:
        logger.info("Run %r cancelled", run.settings.name)
        channel.send(Cancelled())
    except RearrangeError as exc:
        logger.error("Run %r failed: %s", run.settings.name, exc)
        channel.send(Error(str(exc)))
    except Exception as exc:
        logger.exception("Unexpected failure in run %r", run.settings.name)
        channel.send(Error(f"{type(exc).__name__}: {exc}"))
    else:
        channel.send(Done(preset))


@dataclass
class GenerationHandle:
    """Controller-side view of a run executing on a worker thread."""

    channel: ProgressChannel
    cancel_flag: CancelFlag
    thread: threading.Thread = field(repr=False)

    def cancel(self) -> None:
        self.cancel_flag.cancel()

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout)

    def is_alive(self) -> bool:
        return self.thread.is_alive()

    def messages(self) -> Iterator[ProgressMsg]:
        return iter(self.channel)


def start_generation(
    run: PreparedRun,
    channel_size: int = 16,
    send_timeout: float = 0.05,
    cancel: CancelFlag | None = None,
) -> GenerationHandle:
    """Execute *run* on a daemon worker thread; drain ``handle.messages()``."""
    channel = ProgressChannel(maxsize=channel_size, send_timeout=send_timeout)
    if cancel is None:
        cancel = CancelFlag()
    thread = threading.Thread(
        target=execute,
        args=(run, channel, cancel),
        name=f"rearrange-{run.settings.id}",
        daemon=True,
    )
    thread.start()
    return GenerationHandle(channel=channel, cancel_flag=cancel, thread=thread)


def generate(
    unprocessed: UnprocessedPreset,
    target_image: np.ndarray,
    settings: GenerationSettings,
    on_message: Callable[[ProgressMsg], None] | None = None,
    cancel: CancelFlag | None = None,
) -> Preset:
    """Prepare, run and wait; the channel is drained on the calling thread.

    Raises:
        InvalidSettings, InvalidCrop: the run could not start.
        GenerationCancelled:          *cancel* was set during the run.
        SolverFailure:                the run ended with an Error message.
    """
    run = prepare_run(unprocessed, target_image, settings)
    handle = start_generation(run, cancel=cancel)
    result: Preset | None = None
    try:
        for msg in handle.messages():
            if on_message is not None:
                on_message(msg)
            if isinstance(msg, Done):
                result = msg.preset
            elif isinstance(msg, Error):
                raise SolverFailure(msg.message)
            elif isinstance(msg, Cancelled):
                raise GenerationCancelled()
    except BaseException:
        handle.cancel()
        handle.channel.close()
        raise
    finally:
        handle.join()
    if result is None:
        raise SolverFailure("run ended without a result")
    return result


def drain(channel: ProgressChannel, timeout: float) -> list[ProgressMsg]:
    """Collect messages until the terminal one or until *timeout* elapses."""
    deadline = time.monotonic() + timeout
    out: list[ProgressMsg] = []
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            msg = channel.recv(timeout=remaining)
        except queue.Empty:
            break
        out.append(msg)
        if is_terminal(msg):
            break
    return out
