"""Monte Carlo simulation of future balance paths"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import List, Optional, Sequence, Tuple

import numpy as np

from cashflow_engine.domain.exceptions import InvalidParameterError, SimulationCancelledError
from cashflow_engine.domain.models import ValidatedRecurrence, signed
from cashflow_engine.domain.residuals import ResidualSampler
from cashflow_engine.domain.schedule import ScheduledOccurrence, apply_jitter
from cashflow_engine.utils.stats import clamp

DEFAULT_PERCENTILES: Tuple[int, int, int] = (10, 50, 90)


def sample_recurring_amount(recurrence: ValidatedRecurrence, rng: np.random.Generator) -> float:
    """
    Draw one signed amount for a recurrence occurrence.

    Normal(mean, stddev) clipped to the observed bounds when a stddev is
    known, otherwise uniform between the bounds, otherwise the flat mean.
    """
    lower, upper = recurrence.amount_min, recurrence.amount_max

    if recurrence.amount_stddev > 0:
        value = clamp(float(rng.normal(recurrence.mean_amount, recurrence.amount_stddev)), lower, upper)
    elif lower is not None and upper is not None and upper > lower:
        value = float(rng.uniform(lower, upper))
    else:
        value = recurrence.mean_amount

    # Amounts are unsigned; a draw below zero means "nothing"
    return signed(max(value, 0.0), recurrence.kind)


def _check_cancelled(deadline: Optional[float], cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SimulationCancelledError("Simulation cancelled")
    if deadline is not None and time.monotonic() > deadline:
        raise SimulationCancelledError("Simulation deadline exceeded")


def _simulate_chunk(
    count: int,
    rng: np.random.Generator,
    start_balance: float,
    horizon_days: int,
    schedule: Sequence[ScheduledOccurrence],
    residual_sampler: ResidualSampler,
    today: date,
    deadline: Optional[float],
    cancel_event: Optional[threading.Event],
) -> np.ndarray:
    paths = np.empty((count, horizon_days + 1), dtype=float)

    for i in range(count):
        _check_cancelled(deadline, cancel_event)

        # flows[d] = net movement on day today + d; day 0 is the starting point
        flows = np.zeros(horizon_days + 1, dtype=float)
        for occurrence in apply_jitter(schedule, rng):
            offset = (occurrence.date - today).days
            if not 1 <= offset <= horizon_days:
                continue
            if rng.random() < occurrence.recurrence.occurrence_probability:
                flows[offset] += sample_recurring_amount(occurrence.recurrence, rng)

        flows[1:] += residual_sampler.sample(rng, horizon_days)
        paths[i] = start_balance + np.cumsum(flows)
        paths[i, 0] = start_balance

    return paths


def simulate_paths(
    start_balance: float,
    horizon_days: int,
    simulation_count: int,
    schedule: Sequence[ScheduledOccurrence],
    residual_sampler: ResidualSampler,
    today: date,
    seed: Optional[int] = None,
    workers: int = 1,
    chunk_size: int = 250,
    deadline: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> np.ndarray:
    """
    Simulate independent balance paths.

    Returns an array of shape (simulation_count, horizon_days + 1) where
    column 0 is the starting balance and column d the balance at the end of
    day today + d.

    Paths are split into chunks of chunk_size; every chunk draws from its own
    generator spawned from a single SeedSequence, so a seeded run gives the
    same paths whatever the number of workers. deadline is a
    time.monotonic() timestamp.
    """
    if horizon_days < 1 or simulation_count < 1:
        raise InvalidParameterError("horizon_days and simulation_count must be at least 1")

    chunk_size = max(int(chunk_size), 1)
    sizes = [chunk_size] * (simulation_count // chunk_size)
    if simulation_count % chunk_size:
        sizes.append(simulation_count % chunk_size)

    generators = [np.random.default_rng(s) for s in np.random.SeedSequence(seed).spawn(len(sizes))]
    args = (start_balance, horizon_days, schedule, residual_sampler, today, deadline, cancel_event)

    if workers <= 1 or len(sizes) == 1:
        chunks = [_simulate_chunk(size, rng, *args) for size, rng in zip(sizes, generators)]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            chunks = list(executor.map(lambda job: _simulate_chunk(job[0], job[1], *args), zip(sizes, generators)))

    return np.vstack(chunks)


def checkpoint_indices(horizon: int, count: int = 12) -> List[int]:
    """Evenly spaced integers in [1, horizon]; the last one is the horizon"""
    count = max(min(count, horizon), 1)
    return [(w * horizon) // count for w in range(1, count + 1)]


def percentile_bands(
    paths: np.ndarray,
    indices: Sequence[int],
    percentiles: Sequence[float] = DEFAULT_PERCENTILES,
) -> List[List[float]]:
    """One list per requested percentile, linear interpolation between order statistics"""
    bands = np.percentile(paths[:, list(indices)], list(percentiles), axis=0)
    # keep bands ordered under floating point rounding
    bands = np.maximum.accumulate(bands, axis=0)
    return [[float(v) for v in row] for row in bands]


def negative_risk(paths: np.ndarray) -> float:
    """Share of paths whose balance is below zero at any point"""
    if paths.size == 0:
        return 0.0
    return float(np.mean(paths.min(axis=1) < 0))


def risk_level(negative_risk_percent: float) -> str:
    """Alert level shown next to the projection"""
    if negative_risk_percent > 30:
        return "danger"
    if negative_risk_percent > 10:
        return "warning"
    return "success"

