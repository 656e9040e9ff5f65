"""Genetic search over permutations.

Each candidate is an (n,) index array into the source pixels, so the
population is a single (P, n) integer matrix and pixel data never moves.
One generation:

1. score every candidate (total squared feature distance),
2. carry the elite over unchanged,
3. fill the rest with offspring from tournament-selected parents via
   partially-mapped crossover (PMX) and random pairwise swaps,
4. polish a copy of the best candidate with improving disjoint swaps.

The population is seeded with the rank-matching solution, so the result
is never worse than that baseline; with a scalar cost it is already
optimal and the search can only confirm it.
"""

from __future__ import annotations

import logging
import time

import numpy as np

from pixel_rearrange.config import GeneticParams
from pixel_rearrange.cost_model import CostModel
from pixel_rearrange.errors import GenerationCancelled, InvalidSettings
from pixel_rearrange.progress import (
    AssignmentUpdate,
    CancelFlag,
    PreviewUpdate,
    Progress,
    ProgressChannel,
)
from pixel_rearrange.solver_optimal import rank_match

logger = logging.getLogger(__name__)


def pmx_crossover(
    parent_a: np.ndarray,
    parent_b: np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    """Partially-mapped crossover; the child is always a valid permutation.

    A random segment is copied from *parent_a*, everything else from
    *parent_b*. A value from *parent_b* that the segment already holds is
    replaced by following the segment's mapping until a free value is hit.
    """
    n = len(parent_a)
    if n < 2:
        return parent_a.copy()
    lo, hi = np.sort(rng.choice(n + 1, size=2, replace=False))

    child = parent_b.copy()
    child[lo:hi] = parent_a[lo:hi]

    pos_in_a = np.empty(n, dtype=np.int64)
    pos_in_a[parent_a] = np.arange(n)
    in_segment = np.zeros(n, dtype=bool)
    in_segment[parent_a[lo:hi]] = True

    outside = np.ones(n, dtype=bool)
    outside[lo:hi] = False
    idx = np.flatnonzero(outside & in_segment[parent_b])
    vals = parent_b[idx]
    while idx.size:
        vals = parent_b[pos_in_a[vals]]
        pending = in_segment[vals]
        child[idx[~pending]] = vals[~pending]
        idx = idx[pending]
        vals = vals[pending]
    return child


def swap_mutation(
    candidate: np.ndarray,
    rate: float,
    rng: np.random.Generator,
) -> None:
    """Swap disjoint random position pairs in place; ~rate*n positions move."""
    n = len(candidate)
    if n < 2 or rate <= 0.0:
        return
    pairs = min(int(rng.binomial(n, rate)) // 2 or 1, n // 2)
    pos = rng.choice(n, size=2 * pairs, replace=False)
    i, j = pos[:pairs], pos[pairs:]
    candidate[i], candidate[j] = candidate[j], candidate[i]


def improve_swaps(
    candidate: np.ndarray,
    cost: CostModel,
    attempts: int,
    rng: np.random.Generator,
) -> float:
    """Apply every improving swap among *attempts* disjoint random pairs.

    The pairs share no position, so their cost deltas are independent and
    all improving swaps can be accepted at once. Returns the (non-positive)
    change in total cost.
    """
    n = len(candidate)
    pairs = min(attempts, n // 2)
    if pairs == 0:
        return 0.0
    pos = rng.choice(n, size=2 * pairs, replace=False)
    i, j = pos[:pairs], pos[pairs:]

    src_i = cost.source[candidate[i]]
    src_j = cost.source[candidate[j]]
    tgt_i = cost.target[i]
    tgt_j = cost.target[j]
    current = np.sum((src_i - tgt_i) ** 2, axis=1) + np.sum((src_j - tgt_j) ** 2, axis=1)
    swapped = np.sum((src_j - tgt_i) ** 2, axis=1) + np.sum((src_i - tgt_j) ** 2, axis=1)
    delta = swapped - current

    accept = delta < 0
    if not np.any(accept):
        return 0.0
    ia, ja = i[accept], j[accept]
    candidate[ia], candidate[ja] = candidate[ja], candidate[ia]
    return float(np.sum(delta[accept]))


def _tournament(costs: np.ndarray, size: int, rng: np.random.Generator) -> int:
    contenders = rng.integers(0, len(costs), size=size)
    return int(contenders[np.argmin(costs[contenders])])


def solve_genetic(
    source_weight: np.ndarray | CostModel,
    target_weight: np.ndarray | None = None,
    params: GeneticParams | None = None,
    channel: ProgressChannel | None = None,
    cancel: CancelFlag | None = None,
    preview_source: np.ndarray | None = None,
) -> np.ndarray:
    """Search for a low-cost slot → source assignment.

    Args:
        source_weight:  (n,) or (n, d) source features, or a ready CostModel
                        (then *target_weight* is ignored).
        target_weight:  (n,) or (n, d) slot features.
        params:         Population size, limits and rates.
        channel:        Receives Progress every generation and, every
                        ``preview_interval`` generations, AssignmentUpdate
                        and (with *preview_source*) PreviewUpdate.
        cancel:         Polled at every generation boundary.
        preview_source: Source pixel grid used to render previews.

    Returns:
        (n,) int64 - best assignment found.

    Raises:
        GenerationCancelled: *cancel* was set before the search finished.
        InvalidSettings:     Bad parameters or mismatched weights.
    """
    params = params or GeneticParams()
    params.validate()
    if isinstance(source_weight, CostModel):
        cost = source_weight
    else:
        if target_weight is None:
            raise InvalidSettings("target_weight is required without a CostModel")
        cost = CostModel.from_weights(source_weight, target_weight)

    def _check_cancel() -> None:
        if cancel is not None and cancel.is_set():
            logger.info("GA cancelled")
            raise GenerationCancelled()

    def _publish(msg) -> None:
        if channel is not None:
            channel.send(msg)

    _check_cancel()

    n = cost.size
    size = params.population
    elite = min(params.elite_count, size - 1)
    rng = np.random.default_rng(params.seed)

    # Initial population: rank-matching seed plus random permutations
    population = np.empty((size, n), dtype=np.int64)
    population[0] = rank_match(cost.source_key, cost.target_key)
    for k in range(1, size):
        population[k] = rng.permutation(n)
    costs = np.array([cost.total_cost(c) for c in population])
    seed_cost = float(costs[0])

    logger.info(
        "GA start  | n=%d  population=%d  generations=%d  elite=%d  seed cost=%.0f",
        n, size, params.generations, elite, seed_cost,
    )

    t0 = time.perf_counter()
    log_interval = max(1, params.generations // 10)
    generation = 0

    for generation in range(1, params.generations + 1):
        _check_cancel()

        order = np.argsort(costs, kind="stable")
        population = population[order]
        costs = costs[order]

        offspring = np.empty((size - elite, n), dtype=np.int64)
        for k in range(size - elite):
            a = _tournament(costs, params.tournament_size, rng)
            if rng.random() < params.crossover_rate:
                b = _tournament(costs, params.tournament_size, rng)
                child = pmx_crossover(population[a], population[b], rng)
            else:
                child = population[a].copy()
            swap_mutation(child, params.mutation_rate, rng)
            offspring[k] = child

        population[elite:] = offspring
        costs[elite:] = [cost.total_cost(c) for c in offspring]

        if params.local_swaps:
            best = population[0].copy()
            if improve_swaps(best, cost, params.local_swaps, rng) < 0:
                population[0] = best
                costs[0] = cost.total_cost(best)

        best_idx = int(np.argmin(costs))
        elapsed = time.perf_counter() - t0

        fraction = generation / params.generations
        if params.time_budget is not None:
            fraction = max(fraction, elapsed / params.time_budget)
        _publish(Progress(min(1.0, fraction)))

        if generation % params.preview_interval == 0:
            best = population[best_idx].copy()
            _publish(AssignmentUpdate(best))
            if preview_source is not None:
                flat = np.asarray(preview_source).reshape(n, -1)
                _publish(PreviewUpdate(flat[best].reshape(np.shape(preview_source))))

        if generation % log_interval == 0:
            logger.info(
                "  GA gen %5d  best=%.0f  mean=%.0f  (%.0f s)",
                generation, costs[best_idx], float(np.mean(costs)), elapsed,
            )

        if params.time_budget is not None and elapsed >= params.time_budget:
            logger.info("GA time budget of %.1f s reached", params.time_budget)
            break

    best_idx = int(np.argmin(costs))
    logger.info(
        "GA done   | cost=%.0f  (seed %.0f)  generations=%d  (%.1f s)",
        costs[best_idx], seed_cost, generation, time.perf_counter() - t0,
    )
    return population[best_idx].copy()
