"""Cash-flow projection - recurring schedule + bootstrapped residual noise"""

import threading
from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from cashflow_engine.config import Settings, settings as default_settings
from cashflow_engine.domain.exceptions import InsufficientDataError, InvalidParameterError
from cashflow_engine.domain.models import (
    ProjectionMetrics,
    ProjectionResult,
    Transaction,
    ValidatedRecurrence,
)
from cashflow_engine.domain.residuals import ResidualSampler
from cashflow_engine.domain.schedule import build_schedule
from cashflow_engine.domain.simulation import (
    checkpoint_indices,
    negative_risk,
    percentile_bands,
    risk_level,
    simulate_paths,
)

TODAY_LABEL = "Today"


def split_residual(
    transactions: Iterable[Transaction], mapped_ids: Set[str]
) -> Tuple[List[Transaction], List[Transaction]]:
    """(residual, recurring) split on the explicit transaction/recurrence mapping"""
    residual, recurring = [], []
    for txn in transactions:
        (recurring if txn.transaction_id in mapped_ids else residual).append(txn)
    return residual, recurring


def balance_from_history(transactions: Iterable[Transaction]) -> float:
    """Current balance as the sum of signed amounts"""
    return sum(t.signed_amount for t in transactions)


class CashflowProjector:
    """Simulates the probable evolution of the balance over a horizon"""

    def __init__(self, config: Settings | None = None):
        self.config = config or default_settings

    def _check_parameters(self, horizon_weeks: int, simulation_count: int) -> Tuple[int, int]:
        if horizon_weeks is None or horizon_weeks < 1:
            raise InvalidParameterError(f"horizon_weeks must be at least 1 (got {horizon_weeks})")
        if simulation_count is None or simulation_count < 1:
            raise InvalidParameterError(f"simulation_count must be at least 1 (got {simulation_count})")

        horizon_weeks = min(int(horizon_weeks), self.config.max_horizon_weeks)
        simulation_count = min(
            max(int(simulation_count), self.config.min_simulations), self.config.max_simulations
        )
        return horizon_weeks, simulation_count

    def residual_window(self, transactions: Sequence[Transaction], today: date) -> Tuple[date, date]:
        """Lookback window, shortened to the available history"""
        start = today - timedelta(days=self.config.lookback_days - 1)
        in_window = [t.date for t in transactions if start <= t.date <= today]
        if in_window:
            start = max(start, min(in_window))
        else:
            start = today
        return start, today

    def project(
        self,
        transactions: Sequence[Transaction],
        recurrences: Sequence[ValidatedRecurrence],
        mapped_transaction_ids: Set[str],
        horizon_weeks: int = 12,
        simulation_count: int = 1000,
        start_balance: Optional[float] = None,
        today: Optional[date] = None,
        seed: Optional[int] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProjectionResult:
        """
        Monte Carlo projection of the balance.

        Flow:
        1. Validate and clamp horizon / simulation count
        2. Establish the starting balance (explicit, else derived from history)
        3. Build the recurring schedule for [today, today + horizon]
        4. Build the residual sampler from non-mapped transactions
        5. Simulate paths and aggregate P10/P50/P90 at checkpoints
        """
        horizon_weeks, simulation_count = self._check_parameters(horizon_weeks, simulation_count)

        if not transactions and start_balance is None:
            raise InsufficientDataError("No transaction history and no starting balance")

        today = today or date.today()
        horizon_days = horizon_weeks * 7
        current_balance = float(start_balance) if start_balance is not None else balance_from_history(transactions)

        active = [r for r in recurrences if r.active]
        schedule = build_schedule(active, today, today + timedelta(days=horizon_days))

        residual, _ = split_residual(transactions, mapped_transaction_ids)
        window_start, window_end = self.residual_window(transactions, today)
        sampler = ResidualSampler.from_transactions(
            residual,
            window_start,
            window_end,
            sd_cap=self.config.residual_sd_cap,
            mode=self.config.residual_mode,
        )

        paths = simulate_paths(
            start_balance=current_balance,
            horizon_days=horizon_days,
            simulation_count=simulation_count,
            schedule=schedule,
            residual_sampler=sampler,
            today=today,
            seed=seed,
            workers=self.config.simulation_workers,
            chunk_size=self.config.simulation_chunk_size,
            deadline=deadline,
            cancel_event=cancel_event,
        )

        # Checkpoints fall on whole weeks, evenly spread when the horizon exceeds checkpoint_count
        weeks = checkpoint_indices(horizon_weeks, self.config.checkpoint_count)
        indices = [week * 7 for week in weeks]
        p10, p50, p90 = percentile_bands(paths, indices)
        risk_percent = round(negative_risk(paths) * 100, 2)

        # The today anchor is the starting balance itself, not a percentile
        return ProjectionResult(
            labels=[TODAY_LABEL] + [f"W{week}" for week in weeks],
            checkpoint_days=[0] + indices,
            p10=[current_balance] + p10,
            p50=[current_balance] + p50,
            p90=[current_balance] + p90,
            metrics=ProjectionMetrics(
                current_balance=current_balance,
                median_final_balance=p50[-1],
                negative_risk_percent=risk_percent,
                risk_level=risk_level(risk_percent),
                recurrence_count=len(active),
                residual_transaction_count=len(residual),
                simulation_count=simulation_count,
                horizon_days=horizon_days,
            ),
        )
