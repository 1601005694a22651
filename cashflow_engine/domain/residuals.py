"""Residual cash-flow model - bootstrap of non-recurring daily net flows"""

from datetime import date
from typing import Dict, Iterable, List, Sequence

import numpy as np

from cashflow_engine.domain.models import Transaction
from cashflow_engine.utils.date_utils import generate_date_range
from cashflow_engine.utils.stats import mean, pstdev

RESIDUAL_MODES = ("historical", "zero")


def build_daily_residual_series(transactions: Iterable[Transaction], start: date, end: date) -> List[float]:
    """
    Daily net signed flow for every calendar day in [start, end].

    Days without a transaction are real zeros and are kept in the series.
    Transactions outside the window are ignored.
    """
    if start > end:
        return []

    by_day: Dict[date, float] = {}
    for txn in transactions:
        if start <= txn.date <= end:
            by_day[txn.date] = by_day.get(txn.date, 0.0) + txn.signed_amount

    return [by_day.get(day, 0.0) for day in generate_date_range(start, end)]


class ResidualSampler:
    """
    Bootstrap sampler over a centered daily residual series.

    The series is centered on its mean and, when its population stddev
    exceeds sd_cap, rescaled down to sd_cap. A draw picks one historical day
    uniformly with replacement and adds back the mean ("historical" mode) or
    nothing ("zero" mode).
    """

    def __init__(self, series: Sequence[float], sd_cap: float = 50.0, mode: str = "historical"):
        if mode not in RESIDUAL_MODES:
            raise ValueError(f"Unknown residual mode: {mode!r}")

        self.mode = mode
        self.length = len(series)
        self.mean = mean(series)
        self.raw_stddev = pstdev(series)
        self.stddev = min(self.raw_stddev, sd_cap)

        centered = np.asarray(series, dtype=float) - self.mean
        if self.raw_stddev > 0 and self.stddev != self.raw_stddev:
            centered = centered * (self.stddev / self.raw_stddev)
        self._centered = centered

    @classmethod
    def from_transactions(
        cls,
        transactions: Iterable[Transaction],
        start: date,
        end: date,
        sd_cap: float = 50.0,
        mode: str = "historical",
    ) -> "ResidualSampler":
        return cls(build_daily_residual_series(transactions, start, end), sd_cap=sd_cap, mode=mode)

    @property
    def drift(self) -> float:
        return self.mean if self.mode == "historical" else 0.0

    def sample(self, rng: np.random.Generator, size: int) -> np.ndarray:
        """size residual draws; all zeros when there is no history"""
        if self.length == 0:
            return np.zeros(size)
        idx = rng.integers(0, self.length, size=size)
        return self._centered[idx] + self.drift
