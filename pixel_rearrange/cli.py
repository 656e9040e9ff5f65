"""Rich command-line interface powered by Typer."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import numpy as np
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from pixel_rearrange import progress as msgs
from pixel_rearrange.assignment import assignment_cost
from pixel_rearrange.config import (
    Algorithm,
    CropScale,
    GenerationSettings,
    GeneticParams,
    RearrangeConfig,
)
from pixel_rearrange.engine import GenerationHandle, prepare_run, start_generation
from pixel_rearrange.errors import RearrangeError
from pixel_rearrange.image_io import (
    load_array,
    load_rgb,
    load_weight_mask,
    make_comparison_grid,
    save_image,
    save_upscaled,
)
from pixel_rearrange.preset import Preset, UnprocessedPreset, load_preset, save_preset

app = typer.Typer(
    name="pixel-rearrange",
    help="Rearrange the pixels of one image to look like another.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()
logger = logging.getLogger("pixel_rearrange")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
    )


def _quality_metric(target: np.ndarray, output: np.ndarray) -> float:
    """Mean absolute per-channel error between target and output."""
    t = target.reshape(target.shape[0] * target.shape[1], -1).astype(np.float64)
    o = output.reshape(output.shape[0] * output.shape[1], -1).astype(np.float64)
    if t.shape[1] != o.shape[1]:
        t = t.mean(axis=1, keepdims=True)
        o = o.mean(axis=1, keepdims=True)
    return float(np.mean(np.abs(t - o)))


def _parse_crop(text: str | None) -> CropScale:
    if not text:
        return CropScale.identity()
    try:
        return CropScale.parse(text)
    except RearrangeError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _drain(handle: GenerationHandle) -> msgs.ProgressMsg:
    """Render progress until the terminal message; Ctrl-C requests cancel."""
    with Progress(
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>5.1f}%"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as bar:
        task = bar.add_task("Solving", total=1.0)
        try:
            for msg in handle.messages():
                if isinstance(msg, msgs.Progress):
                    bar.update(task, completed=msg.fraction)
                elif isinstance(msg, msgs.AssignmentUpdate):
                    logger.debug("Intermediate assignment received")
        except KeyboardInterrupt:
            console.print("[yellow]Cancelling …[/yellow]")
            handle.cancel()
    # The worker always sends exactly one terminal message before exiting
    handle.join()
    return handle.channel.terminal


# Defaults come from RearrangeConfig - single source of truth
_DEFAULTS = RearrangeConfig()
_GA = GeneticParams()


# -- generate command --------------------------------------------------

@app.command()
def generate(
    source: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Image whose pixels are rearranged",
    ),
    target: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Target image or grayscale weight mask",
    ),
    name: str | None = typer.Option(None, "--name", "-n", help="Preset name"),
    output_dir: Path | None = typer.Option(
        None, "--output", "-o", help="Results folder (default: output/<name>)",
    ),
    algorithm: str = typer.Option(
        _DEFAULTS.algorithm, "--algo", "-a", help="'optimal' or 'genetic'",
    ),
    sidelen: int | None = typer.Option(
        None, "--sidelen", "-s",
        help="Side of the working grid (default: the source's shorter side)",
    ),
    color_space: str = typer.Option(
        _DEFAULTS.color_space, "--color-space",
        help="'luminance', or 'lab' / 'rgb' (genetic only)",
    ),
    source_crop: str | None = typer.Option(
        None, "--source-crop", help="Source crop as 'x,y,scale'",
    ),
    target_crop: str | None = typer.Option(
        None, "--target-crop", help="Target crop as 'x,y,scale'",
    ),
    population: int = typer.Option(_GA.population, "--population", help="GA population"),
    generations: int = typer.Option(_GA.generations, "--generations", help="GA generations"),
    mutation_rate: float = typer.Option(_GA.mutation_rate, "--mutation-rate"),
    time_budget: float | None = typer.Option(
        None, "--time-budget", help="GA wall-clock limit in seconds",
    ),
    seed: int | None = typer.Option(None, "--seed", help="GA random seed"),
    keep_target: bool = typer.Option(
        True, "--target/--no-target", help="Save the normalised target with the preset",
    ),
    upscale: int = typer.Option(
        _DEFAULTS.pixel_upscale, "--upscale", "-u", help="Pixel upscale factor",
    ),
    comparison: bool = typer.Option(
        True, "--comparison/--no-comparison", help="Save a side-by-side comparison",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Compute an assignment for SOURCE against TARGET and save the preset."""
    _setup_logging(verbose)

    unprocessed = UnprocessedPreset.from_path(source, name)
    target_img = load_array(target)
    side = sidelen if sidelen is not None else min(unprocessed.width, unprocessed.height)
    out_dir = output_dir or _DEFAULTS.output_dir / unprocessed.name

    try:
        settings = GenerationSettings(
            name=f"{unprocessed.name}-regen",
            sidelen=side,
            algorithm=Algorithm.parse(algorithm),
            source_crop=_parse_crop(source_crop),
            target_crop=_parse_crop(target_crop),
            color_space=color_space,
            genetic=GeneticParams(
                population=population,
                generations=generations,
                mutation_rate=mutation_rate,
                time_budget=time_budget,
                seed=seed,
            ),
            retain_target=keep_target,
        )
        run = prepare_run(unprocessed, target_img, settings)
    except RearrangeError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(2) from exc

    console.print(Panel.fit(
        f"[bold]PIXEL REARRANGE[/bold]\n"
        f"Source: {source.name} ({unprocessed.width}x{unprocessed.height})  |  "
        f"Target: {target.name}\n"
        f"Grid: {side}x{side}  |  Solver: {settings.algorithm.value}  |  "
        f"Cost: {settings.color_space}",
        border_style="cyan",
    ))

    t0 = time.perf_counter()
    handle = start_generation(
        run,
        channel_size=_DEFAULTS.channel_size,
        send_timeout=_DEFAULTS.send_timeout,
    )
    terminal = _drain(handle)

    if isinstance(terminal, msgs.Cancelled):
        console.print("[yellow]Generation cancelled.[/yellow]")
        raise typer.Exit(1)
    if isinstance(terminal, msgs.Error):
        console.print(f"[red]✗[/red] Generation failed: {terminal.message}")
        raise typer.Exit(1)

    preset: Preset = terminal.preset
    save_preset(preset, out_dir)
    output = preset.output()
    save_upscaled(output, out_dir / f"output_x{upscale}.{_DEFAULTS.output_format}", upscale)
    if comparison:
        make_comparison_grid(
            preset.inner.source_img, preset.target_img, output,
            out_dir / f"comparison.{_DEFAULTS.output_format}", upscale,
        )

    err = _quality_metric(run.target, output)
    console.print(
        f"  [green]✓[/green] {out_dir}  "
        f"[dim]{side}x{side} = {side * side} px  cost={assignment_cost(run.cost, preset.assignments):.0f}"
        f"  error={err:.1f}  time={time.perf_counter() - t0:.1f}s[/dim]"
    )


# -- weights command ---------------------------------------------------

@app.command()
def weights(
    input_path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Image to derive the mask from",
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Default: weights<size>.png next to the input",
    ),
    size: int | None = typer.Option(
        None, "--size", help="Side of the mask (default: the shorter side)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Write a grayscale weight mask (brighter = higher weight)."""
    _setup_logging(verbose)

    rgb = load_rgb(input_path)
    h, w = rgb.shape[:2]
    if w != h:
        logger.warning(
            "Input is not square (%dx%d); the mask uses its centred square", w, h,
        )
    try:
        mask = load_weight_mask(input_path, size)
    except RearrangeError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(2) from exc

    side = mask.shape[0]
    output = output or input_path.parent / f"weights{side}.png"
    save_image(mask, output)
    console.print(
        f"[green]✓[/green] Wrote weights to {output}  [dim]{side}x{side} from {input_path}[/dim]"
    )


# -- render command ----------------------------------------------------

@app.command()
def render(
    preset_dir: Path = typer.Argument(
        ..., exists=True, file_okay=False, help="Folder written by 'generate'",
    ),
    output: Path | None = typer.Option(None, "--output", "-o"),
    upscale: int = typer.Option(1, "--upscale", "-u"),
    comparison: bool = typer.Option(False, "--comparison/--no-comparison"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Rebuild the output image of a saved preset from its assignments."""
    _setup_logging(verbose)

    try:
        preset = load_preset(preset_dir)
    except (RearrangeError, FileNotFoundError) as exc:
        console.print(f"[red]✗[/red] Cannot load preset: {exc}")
        raise typer.Exit(2) from exc

    image = preset.output()
    output = output or preset_dir / "output.png"
    save_upscaled(image, output, upscale)
    if comparison:
        make_comparison_grid(
            preset.inner.source_img, preset.target_img, image,
            output.with_name(f"{output.stem}_comparison{output.suffix}"), max(upscale, 1),
        )
    console.print(f"[green]✓[/green] Rendered {preset.name} to {output}")


if __name__ == "__main__":
    app()
