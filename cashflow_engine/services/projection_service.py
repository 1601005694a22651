"""Balance projection over the repositories"""

import logging
import threading
import time
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from cashflow_engine.config import Settings, settings as default_settings
from cashflow_engine.domain.exceptions import InsufficientDataError, SimulationCancelledError
from cashflow_engine.domain.interfaces import (
    BalanceSnapshotProvider,
    MappingRepository,
    RecurrenceRepository,
    TransactionRepository,
)
from cashflow_engine.domain.models import ProjectionResult
from cashflow_engine.domain.projection import CashflowProjector
from cashflow_engine.infrastructure.database.repositories import (
    SqlBalanceSnapshotProvider,
    SqlMappingRepository,
    SqlRecurrenceRepository,
    SqlTransactionRepository,
)
from cashflow_engine.infrastructure.observability.logging import log_projection
from cashflow_engine.infrastructure.observability.metrics import record_projection

logger = logging.getLogger(__name__)


class ProjectionService:
    """Fetches a user's snapshot then runs the Monte Carlo projector on it"""

    def __init__(
        self,
        transactions: TransactionRepository,
        recurrences: RecurrenceRepository,
        mappings: MappingRepository,
        balances: Optional[BalanceSnapshotProvider] = None,
        config: Settings | None = None,
    ):
        self.transactions = transactions
        self.recurrences = recurrences
        self.mappings = mappings
        self.balances = balances
        self.config = config or default_settings

    @classmethod
    def from_session(cls, db: Session, config: Settings | None = None) -> "ProjectionService":
        return cls(
            SqlTransactionRepository(db),
            SqlRecurrenceRepository(db),
            SqlMappingRepository(db),
            SqlBalanceSnapshotProvider(db),
            config,
        )

    def project_result(
        self,
        user_id: str,
        horizon_weeks: Optional[int] = None,
        simulation_count: Optional[int] = None,
        start_balance: Optional[float] = None,
        seed: Optional[int] = None,
        today: Optional[date] = None,
        timeout_seconds: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProjectionResult:
        """
        Project the user's balance.

        Flow:
        1. Fetch history, active recurrences and mapped ids (all I/O happens here)
        2. Resolve the starting balance: caller value, else latest snapshot,
           else derived from history by the projector
        3. Simulate
        4. Record metrics and logs
        """
        start_time = time.time()
        horizon_weeks = self.config.default_horizon_weeks if horizon_weeks is None else horizon_weeks
        simulation_count = self.config.default_simulations if simulation_count is None else simulation_count

        # 1. Snapshot of the inputs
        transactions = self.transactions.list_for_user(user_id)
        recurrences = self.recurrences.list_active_for_user(user_id)
        mapped_ids = self.mappings.list_mapped_transaction_ids(user_id)

        # 2. Starting balance
        if start_balance is None and self.balances is not None:
            start_balance = self.balances.latest(user_id)

        deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None

        # 3. Simulate
        try:
            result = CashflowProjector(self.config).project(
                transactions,
                recurrences,
                mapped_ids,
                horizon_weeks=horizon_weeks,
                simulation_count=simulation_count,
                start_balance=start_balance,
                today=today,
                seed=seed,
                deadline=deadline,
                cancel_event=cancel_event,
            )
        except InsufficientDataError as e:
            logger.warning(f"Insufficient data: {e}", extra={"user_id": user_id})
            raise
        except SimulationCancelledError as e:
            logger.warning(f"Projection aborted: {e}", extra={"user_id": user_id})
            raise

        # 4. Observability
        duration = time.time() - start_time
        metrics = result.metrics
        record_projection(metrics.risk_level, metrics.simulation_count, duration)
        log_projection(
            user_id,
            metrics.horizon_days,
            metrics.simulation_count,
            metrics.negative_risk_percent,
            metrics.risk_level,
            duration * 1000,
        )
        return result

    def project(
        self,
        user_id: str,
        horizon_weeks: Optional[int] = None,
        simulation_count: Optional[int] = None,
        start_balance: Optional[float] = None,
        **kwargs,
    ) -> dict:
        """Chart series + metrics, ready for the reporting layer"""
        return self.project_result(user_id, horizon_weeks, simulation_count, start_balance, **kwargs).to_dict()
