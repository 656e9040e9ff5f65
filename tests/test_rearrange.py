"""Tests for geometry, cost model, solvers and assignments."""

from __future__ import annotations

import json
import queue
from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from scipy.optimize import linear_sum_assignment

from pixel_rearrange.assignment import (
    apply_assignment,
    assignment_cost,
    invert_assignment,
    random_assignment,
    validate_assignment,
)
from pixel_rearrange.color_utils import luminance
from pixel_rearrange.config import (
    Algorithm,
    CropScale,
    GenerationSettings,
    GeneticParams,
)
from pixel_rearrange.cost_model import CostModel, build_cost_model
from pixel_rearrange.errors import (
    GenerationCancelled,
    InvalidCrop,
    InvalidSettings,
    MalformedAssignment,
)
from pixel_rearrange.image_io import crop_box, load_weight_mask, normalize
from pixel_rearrange.preset import (
    Preset,
    UnprocessedPreset,
    load_assignments,
    load_preset,
    save_assignments,
    save_preset,
)
from pixel_rearrange.progress import (
    AssignmentUpdate,
    CancelFlag,
    PreviewUpdate,
    ProgressChannel,
    ProgressMsg,
)
from pixel_rearrange.solver_genetic import (
    improve_swaps,
    pmx_crossover,
    solve_genetic,
    swap_mutation,
)
from pixel_rearrange.solver_optimal import rank_match, solve_optimal

# -- Fixtures ----------------------------------------------------------

SIDE = 6
N = SIDE * SIDE


@pytest.fixture
def source() -> np.ndarray:
    rng = np.random.default_rng(456)
    return rng.integers(0, 256, size=(SIDE, SIDE, 3), dtype=np.uint8)


@pytest.fixture
def target() -> np.ndarray:
    rng = np.random.default_rng(789)
    return rng.integers(0, 256, size=(SIDE, SIDE, 3), dtype=np.uint8)


@pytest.fixture
def mask() -> np.ndarray:
    """Horizontal gradient weight mask."""
    row = np.linspace(0, 255, SIDE).astype(np.uint8)
    return np.tile(row, (SIDE, 1))


@pytest.fixture
def weights() -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(7)
    return rng.uniform(0, 255, N), rng.uniform(0, 255, N)


def _ga(**overrides) -> GeneticParams:
    params = dict(population=8, generations=20, seed=1, local_swaps=16)
    params.update(overrides)
    return GeneticParams(**params)


def _is_permutation(a: np.ndarray, n: int) -> bool:
    return len(a) == n and np.array_equal(np.sort(a), np.arange(n))


def _pending(channel: ProgressChannel) -> list[ProgressMsg]:
    out = []
    while True:
        try:
            out.append(channel.recv(timeout=0))
        except queue.Empty:
            return out


# -- Config ------------------------------------------------------------

class TestConfig:
    def test_defaults(self) -> None:
        settings = GenerationSettings.default("demo")
        assert settings.algorithm is Algorithm.OPTIMAL
        assert settings.source_crop.is_identity
        settings.validate()

    def test_frozen(self) -> None:
        settings = GenerationSettings.default("demo")
        with pytest.raises(AttributeError):
            settings.sidelen = 64  # type: ignore[misc]

    def test_distinct_ids(self) -> None:
        assert GenerationSettings.default("a").id != GenerationSettings.default("a").id

    def test_algorithm_parse(self) -> None:
        assert Algorithm.parse(" Genetic ") is Algorithm.GENETIC
        with pytest.raises(InvalidSettings):
            Algorithm.parse("annealing")

    def test_non_positive_sidelen(self) -> None:
        with pytest.raises(InvalidSettings):
            GenerationSettings(name="x", sidelen=0).validate()

    def test_unknown_algorithm_tag(self) -> None:
        with pytest.raises(InvalidSettings):
            GenerationSettings(name="x", algorithm="greedy").validate()  # type: ignore[arg-type]

    def test_optimal_rejects_colour_cost(self) -> None:
        with pytest.raises(InvalidSettings):
            GenerationSettings(name="x", color_space="lab").validate()

    def test_genetic_accepts_colour_cost(self) -> None:
        GenerationSettings(
            name="x", algorithm=Algorithm.GENETIC, color_space="lab",
        ).validate()

    def test_invalid_genetic_params(self) -> None:
        for bad in (
            GeneticParams(population=1),
            GeneticParams(generations=0),
            GeneticParams(elite_fraction=1.0),
            GeneticParams(mutation_rate=1.5),
            GeneticParams(time_budget=0),
        ):
            with pytest.raises(InvalidSettings):
                bad.validate()

    def test_elite_count_at_least_one(self) -> None:
        assert GeneticParams(population=4, elite_fraction=0.0).elite_count == 1

    def test_crop_parse(self) -> None:
        assert CropScale.parse("0.1, 0.2, 0.5") == CropScale(0.1, 0.2, 0.5)
        with pytest.raises(InvalidCrop):
            CropScale.parse("0.1,0.2")
        with pytest.raises(InvalidCrop):
            CropScale.parse("a,b,c")


# -- Geometry ----------------------------------------------------------

class TestGeometry:
    def test_identity_square(self) -> None:
        assert crop_box(10, 10, CropScale.identity()) == (0, 0, 10, 10)

    def test_identity_centres_landscape(self) -> None:
        assert crop_box(20, 10, CropScale.identity()) == (5, 0, 15, 10)

    def test_identity_centres_portrait(self) -> None:
        assert crop_box(10, 30, CropScale.identity()) == (0, 10, 10, 20)

    def test_offset_crop(self) -> None:
        assert crop_box(20, 20, CropScale(0.5, 0.25, 0.5)) == (10, 5, 20, 15)

    def test_out_of_bounds(self) -> None:
        with pytest.raises(InvalidCrop):
            crop_box(10, 10, CropScale(0.5, 0.0, 0.6))

    def test_non_positive_extent(self) -> None:
        with pytest.raises(InvalidCrop):
            crop_box(10, 10, CropScale(0.0, 0.0, 0.0))
        with pytest.raises(InvalidCrop):
            crop_box(10, 10, CropScale(0.0, 0.0, 0.05))

    def test_negative_offset(self) -> None:
        with pytest.raises(InvalidCrop):
            crop_box(10, 10, CropScale(-0.1, 0.0, 0.5))

    def test_normalize_rgb_shape(self) -> None:
        img = np.random.default_rng(0).integers(0, 256, (30, 40, 3), dtype=np.uint8)
        grid = normalize(img, CropScale.identity(), 8)
        assert grid.shape == (8, 8, 3)
        assert grid.dtype == np.uint8

    def test_normalize_mask_shape(self) -> None:
        img = np.full((30, 40), 200, dtype=np.uint8)
        grid = normalize(img, CropScale.identity(), 8)
        assert grid.shape == (8, 8)

    def test_normalize_is_read_only(self) -> None:
        grid = normalize(np.zeros((4, 4, 3), dtype=np.uint8), CropScale.identity(), 4)
        with pytest.raises(ValueError):
            grid[0, 0, 0] = 1

    def test_uniform_image_stays_uniform(self) -> None:
        img = np.full((50, 70, 3), 128, dtype=np.uint8)
        grid = normalize(img, CropScale.identity(), 16)
        assert np.all(grid == 128)

    def test_crop_selects_region(self) -> None:
        img = np.zeros((20, 20, 3), dtype=np.uint8)
        img[:, :10] = (255, 0, 0)
        img[:, 10:] = (0, 0, 255)
        grid = normalize(img, CropScale(0.5, 0.0, 0.5), 10)
        expected = img[0:10, 10:20]
        assert np.max(np.abs(grid.astype(int) - expected.astype(int))) <= 1

    def test_invalid_side(self) -> None:
        with pytest.raises(InvalidSettings):
            normalize(np.zeros((4, 4, 3), dtype=np.uint8), CropScale.identity(), 0)

    def test_load_weight_mask(self, tmp_path: Path) -> None:
        p = tmp_path / "mask.png"
        Image.fromarray(np.full((12, 16, 3), 90, dtype=np.uint8)).save(p)
        mask = load_weight_mask(p, 6)
        assert mask.shape == (6, 6)
        assert np.all(mask == 90)

    @pytest.mark.parametrize("rgb", [(255, 0, 0), (0, 255, 0), (0, 0, 255), (40, 120, 200)])
    def test_weight_mask_matches_engine_luminance(self, tmp_path: Path, rgb) -> None:
        p = tmp_path / "colour.png"
        Image.fromarray(np.full((10, 10, 3), rgb, dtype=np.uint8)).save(p)
        pixel = np.array([[rgb]], dtype=np.uint8)
        expected = np.rint(luminance(pixel))[0]
        mask = load_weight_mask(p, 5)
        assert np.all(mask == expected)


# -- Cost model --------------------------------------------------------

class TestCostModel:
    def test_luminance_is_scalar(self, source: np.ndarray, target: np.ndarray) -> None:
        cost = build_cost_model(source, target, "luminance")
        assert cost.is_scalar
        assert cost.source.shape == (N, 1)

    def test_mask_used_as_is(self, source: np.ndarray, mask: np.ndarray) -> None:
        cost = build_cost_model(source, mask, "luminance")
        np.testing.assert_array_equal(cost.target_key, mask.reshape(-1).astype(float))

    def test_grey_luminance_equals_level(self) -> None:
        grey = np.full((2, 2, 3), 77, dtype=np.uint8)
        cost = build_cost_model(grey, grey, "luminance")
        np.testing.assert_allclose(cost.source_key, 77.0, atol=1e-6)

    def test_lab_not_scalar(self, source: np.ndarray, target: np.ndarray) -> None:
        cost = build_cost_model(source, target, "lab")
        assert not cost.is_scalar
        assert cost.source.shape == (N, 3)

    def test_colour_needs_rgb_target(self, source: np.ndarray, mask: np.ndarray) -> None:
        with pytest.raises(InvalidSettings):
            build_cost_model(source, mask, "rgb")

    def test_size_mismatch(self, source: np.ndarray) -> None:
        with pytest.raises(InvalidSettings):
            build_cost_model(source, np.zeros((3, 3), dtype=np.uint8))

    def test_total_cost(self) -> None:
        cost = CostModel.from_weights(np.array([1.0, 5.0]), np.array([2.0, 3.0]))
        assert cost.total_cost(np.array([0, 1])) == pytest.approx(1 + 4)
        assert cost.total_cost(np.array([1, 0])) == pytest.approx(9 + 4)
        assert cost.pair_cost(1, 0) == pytest.approx(9)


# -- Optimal solver ----------------------------------------------------

class TestOptimal:
    def test_worked_example(self) -> None:
        assignment = solve_optimal(
            np.array([10, 200, 50, 150]), np.array([0, 100, 50, 200]),
        )
        np.testing.assert_array_equal(assignment, [0, 3, 2, 1])

    def test_permutation(self) -> None:
        for side in (1, 2, 5, 17):
            n = side * side
            rng = np.random.default_rng(side)
            a = solve_optimal(rng.uniform(size=n), rng.uniform(size=n))
            assert _is_permutation(a, n)

    def test_ties_keep_index_order(self) -> None:
        a = solve_optimal(np.zeros(9), np.zeros(9))
        np.testing.assert_array_equal(a, np.arange(9))

    def test_deterministic(self) -> None:
        rng = np.random.default_rng(3)
        src = rng.integers(0, 4, N).astype(float)
        tgt = rng.integers(0, 4, N).astype(float)
        np.testing.assert_array_equal(solve_optimal(src, tgt), solve_optimal(src, tgt))

    def test_beats_random(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        src, tgt = weights
        cost = CostModel.from_weights(src, tgt)
        best = cost.total_cost(solve_optimal(src, tgt))
        rng = np.random.default_rng(0)
        for _ in range(20):
            assert best <= cost.total_cost(random_assignment(N, rng))

    def test_matches_hungarian(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        src, tgt = weights
        matrix = (src[:, np.newaxis] - tgt[np.newaxis, :]) ** 2
        rows, cols = linear_sum_assignment(matrix)
        exact = matrix[rows, cols].sum()
        cost = CostModel.from_weights(src, tgt)
        assert cost.total_cost(solve_optimal(src, tgt)) == pytest.approx(exact)

    def test_cancel_before_start(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        flag = CancelFlag()
        flag.cancel()
        with pytest.raises(GenerationCancelled):
            solve_optimal(*weights, cancel=flag)

    def test_rejects_vector_weights(self) -> None:
        with pytest.raises(InvalidSettings):
            solve_optimal(np.zeros((4, 3)), np.zeros((4, 3)))

    def test_rejects_length_mismatch(self) -> None:
        with pytest.raises(InvalidSettings):
            solve_optimal(np.zeros(4), np.zeros(5))


# -- Genetic solver ----------------------------------------------------

class TestGeneticOperators:
    def test_pmx_yields_permutations(self) -> None:
        rng = np.random.default_rng(11)
        for _ in range(200):
            a, b = rng.permutation(50), rng.permutation(50)
            assert _is_permutation(pmx_crossover(a, b, rng), 50)

    def test_pmx_of_identical_parents(self) -> None:
        rng = np.random.default_rng(0)
        p = rng.permutation(20)
        np.testing.assert_array_equal(pmx_crossover(p, p.copy(), rng), p)

    def test_pmx_tiny(self) -> None:
        rng = np.random.default_rng(0)
        np.testing.assert_array_equal(pmx_crossover(np.array([0]), np.array([0]), rng), [0])

    def test_swap_mutation_keeps_permutation(self) -> None:
        rng = np.random.default_rng(5)
        c = np.arange(100)
        swap_mutation(c, 0.2, rng)
        assert _is_permutation(c, 100)
        assert not np.array_equal(c, np.arange(100))

    def test_improve_swaps_never_worsens(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        cost = CostModel.from_weights(*weights)
        rng = np.random.default_rng(2)
        c = rng.permutation(N)
        before = cost.total_cost(c)
        delta = improve_swaps(c, cost, 18, rng)
        assert delta <= 0
        assert _is_permutation(c, N)
        assert cost.total_cost(c) == pytest.approx(before + delta)


class TestGenetic:
    def test_returns_permutation(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        a = solve_genetic(*weights, params=_ga())
        assert _is_permutation(a, N)

    def test_never_worse_than_optimal(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        src, tgt = weights
        cost = CostModel.from_weights(src, tgt)
        optimal = cost.total_cost(solve_optimal(src, tgt))
        genetic = cost.total_cost(solve_genetic(src, tgt, params=_ga()))
        assert genetic <= optimal + 1e-6

    def test_best_cost_non_increasing(self, source: np.ndarray, target: np.ndarray) -> None:
        cost = build_cost_model(source, target, "lab")
        channel = ProgressChannel(maxsize=500)
        solve_genetic(
            cost, params=_ga(generations=30, preview_interval=1), channel=channel,
            preview_source=source,
        )
        costs, previews = [], 0
        for msg in _pending(channel):
            if isinstance(msg, AssignmentUpdate):
                assert _is_permutation(msg.assignment, N)
                costs.append(cost.total_cost(msg.assignment))
            elif isinstance(msg, PreviewUpdate):
                assert msg.image.shape == source.shape
                previews += 1
        assert len(costs) == 30
        assert previews == 30
        assert all(b <= a + 1e-9 for a, b in zip(costs, costs[1:], strict=False))

    def test_colour_cost_improves_on_seed(self, source: np.ndarray, target: np.ndarray) -> None:
        cost = build_cost_model(source, target, "rgb")
        seed = cost.total_cost(rank_match(cost.source_key, cost.target_key))
        result = cost.total_cost(solve_genetic(cost, params=_ga(generations=40)))
        assert result <= seed

    def test_seeded_runs_are_reproducible(self) -> None:
        src = np.random.default_rng(1).permutation(N).astype(float)
        tgt = np.random.default_rng(2).uniform(0, 1, (N, 3))
        a = solve_genetic(np.tile(src[:, None], (1, 3)), tgt, params=_ga(seed=9))
        b = solve_genetic(np.tile(src[:, None], (1, 3)), tgt, params=_ga(seed=9))
        np.testing.assert_array_equal(a, b)

    def test_cancel_flag(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        flag = CancelFlag()
        flag.cancel()
        with pytest.raises(GenerationCancelled):
            solve_genetic(*weights, params=_ga(), cancel=flag)

    def test_time_budget_stops_early(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        a = solve_genetic(*weights, params=_ga(generations=10**7, time_budget=0.05))
        assert _is_permutation(a, N)

    def test_invalid_params(self, weights: tuple[np.ndarray, np.ndarray]) -> None:
        with pytest.raises(InvalidSettings):
            solve_genetic(*weights, params=GeneticParams(population=1))

    def test_missing_target(self) -> None:
        with pytest.raises(InvalidSettings):
            solve_genetic(np.zeros(4))


# -- Assignment application -------------------------------------------

class TestAssignment:
    def test_apply_worked_example(self) -> None:
        src = np.array([[10], [200], [50], [150]], dtype=np.uint8)
        out = apply_assignment(src, np.array([0, 3, 2, 1]))
        np.testing.assert_array_equal(out.reshape(-1), [10, 150, 50, 200])

    def test_round_trip_with_inverse(self, source: np.ndarray) -> None:
        a = random_assignment(N, np.random.default_rng(4))
        out = apply_assignment(source, a)
        assert out.shape == source.shape
        np.testing.assert_array_equal(apply_assignment(out, invert_assignment(a)), source)

    def test_preserves_palette(self, source: np.ndarray) -> None:
        out = apply_assignment(source, random_assignment(N))
        np.testing.assert_array_equal(
            np.sort(out.reshape(-1, 3), axis=0), np.sort(source.reshape(-1, 3), axis=0),
        )

    def test_single_channel_grid(self, mask: np.ndarray) -> None:
        a = random_assignment(N, np.random.default_rng(0))
        out = apply_assignment(mask, a)
        np.testing.assert_array_equal(out.reshape(-1), mask.reshape(-1)[a])

    def test_duplicate_index(self, source: np.ndarray) -> None:
        a = np.arange(N)
        a[1] = 0
        with pytest.raises(MalformedAssignment):
            apply_assignment(source, a)

    def test_out_of_range(self, source: np.ndarray) -> None:
        a = np.arange(N)
        a[0] = N
        with pytest.raises(MalformedAssignment):
            apply_assignment(source, a)

    def test_length_mismatch(self, source: np.ndarray) -> None:
        with pytest.raises(MalformedAssignment):
            apply_assignment(source, np.arange(N - 1))

    def test_assignment_cost(self) -> None:
        cost = CostModel.from_weights(np.array([1.0, 5.0]), np.array([2.0, 3.0]))
        assert assignment_cost(cost, np.array([1, 0])) == pytest.approx(13)
        assert assignment_cost(cost, [0, 1]) == cost.total_cost(np.array([0, 1]))

    def test_assignment_cost_rejects_malformed(self) -> None:
        cost = CostModel.from_weights(np.zeros(3), np.zeros(3))
        with pytest.raises(MalformedAssignment):
            assignment_cost(cost, np.array([0, 0, 1]))
        with pytest.raises(MalformedAssignment):
            assignment_cost(cost, np.array([0, 1]))

    def test_non_integer(self) -> None:
        with pytest.raises(MalformedAssignment):
            validate_assignment(np.array([0.0, 1.0]))


# -- Presets -----------------------------------------------------------

class TestPreset:
    def test_assignments_round_trip(self, tmp_path: Path) -> None:
        a = random_assignment(N, np.random.default_rng(8))
        save_assignments(tmp_path / "a.json", a)
        assert json.loads((tmp_path / "a.json").read_text()) == a.tolist()
        np.testing.assert_array_equal(load_assignments(tmp_path / "a.json", N), a)

    def test_load_rejects_bad_data(self, tmp_path: Path) -> None:
        p = tmp_path / "a.json"
        p.write_text("[0, 0, 1]")
        with pytest.raises(MalformedAssignment):
            load_assignments(p)
        p.write_text("{not json")
        with pytest.raises(MalformedAssignment):
            load_assignments(p)
        p.write_text('["0", "1"]')
        with pytest.raises(MalformedAssignment):
            load_assignments(p)

    def test_preset_validates(self, source: np.ndarray) -> None:
        inner = UnprocessedPreset.from_array("x", source)
        with pytest.raises(MalformedAssignment):
            Preset(inner=inner, assignments=np.zeros(N, dtype=np.int64))

    def test_save_and_load(self, tmp_path: Path, source: np.ndarray, mask: np.ndarray) -> None:
        a = random_assignment(N, np.random.default_rng(1))
        preset = Preset(UnprocessedPreset.from_array("demo", source), a, mask)
        out = save_preset(preset, tmp_path / "demo")
        for name in ("source.png", "target.png", "output.png", "assignments.json"):
            assert (out / name).exists()

        loaded = load_preset(out)
        assert loaded.name == "demo"
        np.testing.assert_array_equal(loaded.assignments, a)
        np.testing.assert_array_equal(loaded.inner.source_img, source)
        np.testing.assert_array_equal(loaded.target_img, mask)
        np.testing.assert_array_equal(loaded.output(), apply_assignment(source, a))
