"""Recurrence detection and lifecycle workflows over the repositories"""

import logging
import time
from datetime import date, timedelta
from typing import Any, List, Mapping, Optional

from sqlalchemy.orm import Session

from cashflow_engine.config import Settings, settings as default_settings
from cashflow_engine.domain.detection import RecurrenceDetector, group_summary
from cashflow_engine.domain.exceptions import (
    DuplicateDetectionError,
    RecurrenceNotFoundError,
    TransactionNotFoundError,
)
from cashflow_engine.domain.interfaces import MappingRepository, RecurrenceRepository, TransactionRepository
from cashflow_engine.domain.models import (
    DetectionResult,
    DetectionStatus,
    RecurrenceCandidate,
    Transaction,
    ValidatedRecurrence,
)
from cashflow_engine.domain.recurrences import (
    add_transaction,
    create_manual_recurrence,
    ensure_not_duplicate,
    reject_candidate,
    remove_transaction,
    suggest_candidate_transactions,
    update_recurrence,
    validate_candidate,
)
from cashflow_engine.infrastructure.database.repositories import (
    SqlMappingRepository,
    SqlRecurrenceRepository,
    SqlTransactionRepository,
)
from cashflow_engine.infrastructure.observability.logging import log_detection
from cashflow_engine.infrastructure.observability.metrics import record_detection

logger = logging.getLogger(__name__)


class DetectionService:
    """
    Detection runs and the human-in-the-loop recurrence workflow.

    The service never commits: callers own the unit of work (see
    session_scope) so a failure leaves nothing half-written.
    """

    def __init__(
        self,
        transactions: TransactionRepository,
        recurrences: RecurrenceRepository,
        mappings: MappingRepository,
        config: Settings | None = None,
    ):
        self.transactions = transactions
        self.recurrences = recurrences
        self.mappings = mappings
        self.config = config or default_settings

    @classmethod
    def from_session(cls, db: Session, config: Settings | None = None) -> "DetectionService":
        return cls(
            SqlTransactionRepository(db),
            SqlRecurrenceRepository(db),
            SqlMappingRepository(db),
            config,
        )

    def _get_recurrence(self, user_id: str, recurrence_id: str) -> ValidatedRecurrence:
        recurrence = self.recurrences.get(user_id, recurrence_id)
        if recurrence is None:
            raise RecurrenceNotFoundError(f"Recurrence {recurrence_id} not found")
        return recurrence

    def _get_candidate(self, user_id: str, candidate_id: str) -> RecurrenceCandidate:
        candidate = self.recurrences.get_candidate(user_id, candidate_id)
        if candidate is None:
            raise RecurrenceNotFoundError(f"Detection {candidate_id} not found")
        return candidate

    def _get_transaction(self, user_id: str, transaction_id: str) -> Transaction:
        transaction = self.transactions.get(user_id, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    # ---- detection ---------------------------------------------------------

    def run_detection(self, user_id: str, include_weak: bool = False) -> DetectionResult:
        """
        Detect recurrences in the user's full history.

        Flow:
        1. Fetch the transaction history
        2. Detect candidates
        3. Skip candidates already covered by a validated recurrence
        4. Replace previous pending detections with the new ones
        """
        start_time = time.time()

        # 1. Fetch history
        history = self.transactions.list_for_user(user_id)

        # 2. Detect
        detector = RecurrenceDetector(self.config)
        result = detector.detect(history, include_weak=include_weak)
        if not result.success:
            logger.warning(f"Detection skipped: {result.message}", extra={"user_id": user_id})
            record_detection(False, [], 0)
            return result

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Transaction groups",
                extra={"user_id": user_id, "groups": group_summary(detector.group_transactions(history))},
            )

        # 3. Drop duplicates of validated recurrences
        validated = self.recurrences.list_active_for_user(user_id)
        fresh: List[RecurrenceCandidate] = []
        skipped = 0
        for candidate in result.detections:
            try:
                ensure_not_duplicate(
                    candidate,
                    validated,
                    amount_tolerance=self.config.amount_tolerance,
                    label_similarity=self.config.description_similarity,
                )
            except DuplicateDetectionError as e:
                skipped += 1
                logger.info(
                    f"Duplicate detection skipped: {e}",
                    extra={"user_id": user_id, "recurrence_id": e.recurrence_id},
                )
                continue
            fresh.append(candidate)

        # 4. Persist
        self.recurrences.clear_pending_candidates(user_id)
        saved = self.recurrences.create_candidates(fresh) if fresh else []

        message = f"{len(saved)} recurrence(s) detected" if saved else "No recurrence detected"
        record_detection(True, [c.frequency.value for c in saved], skipped)
        log_detection(user_id, len(history), len(saved), skipped, (time.time() - start_time) * 1000)

        return DetectionResult(detections=saved, message=message, success=True, skipped_duplicates=skipped)

    def list_pending(self, user_id: str) -> List[RecurrenceCandidate]:
        return self.recurrences.list_pending_candidates(user_id)

    # ---- candidate lifecycle -----------------------------------------------

    def validate(
        self,
        user_id: str,
        candidate_id: str,
        user_edits: Optional[Mapping[str, Any]] = None,
    ) -> ValidatedRecurrence:
        """Promote a pending detection and map its transactions to the new recurrence"""
        candidate = self._get_candidate(user_id, candidate_id)
        recurrence = self.recurrences.create(validate_candidate(candidate, user_edits))
        self.recurrences.update_candidate_status(
            candidate_id, DetectionStatus.validated, recurrence.recurrence_id
        )
        for transaction_id in recurrence.transaction_ids:
            self.mappings.create(user_id, transaction_id, recurrence.recurrence_id)

        logger.info(
            "Detection validated",
            extra={"user_id": user_id, "candidate_id": candidate_id, "recurrence_id": recurrence.recurrence_id},
        )
        return recurrence

    def reject(self, user_id: str, candidate_id: str) -> RecurrenceCandidate:
        candidate = reject_candidate(self._get_candidate(user_id, candidate_id))
        self.recurrences.update_candidate_status(candidate_id, DetectionStatus.rejected)
        logger.info("Detection rejected", extra={"user_id": user_id, "candidate_id": candidate_id})
        return candidate

    # ---- validated recurrences ---------------------------------------------

    def list_recurrences(self, user_id: str, include_inactive: bool = False) -> List[ValidatedRecurrence]:
        if include_inactive:
            return self.recurrences.list_for_user(user_id)
        return self.recurrences.list_active_for_user(user_id)

    def create_recurrence(self, user_id: str, **fields: Any) -> ValidatedRecurrence:
        """Recurrence declared manually by the user"""
        return self.recurrences.create(create_manual_recurrence(user_id, **fields))

    def update_recurrence(self, user_id: str, recurrence_id: str, updates: Mapping[str, Any]) -> ValidatedRecurrence:
        recurrence = self._get_recurrence(user_id, recurrence_id)
        return self.recurrences.update(update_recurrence(recurrence, updates))

    def deactivate(self, user_id: str, recurrence_id: str) -> None:
        if not self.recurrences.deactivate(user_id, recurrence_id):
            raise RecurrenceNotFoundError(f"Recurrence {recurrence_id} not found")

    def delete(self, user_id: str, recurrence_id: str) -> None:
        """Hard delete, mappings included"""
        self._get_recurrence(user_id, recurrence_id)
        self.mappings.remove_for_recurrence(user_id, recurrence_id)
        self.recurrences.delete(user_id, recurrence_id)

    # ---- membership --------------------------------------------------------

    def add_transaction(self, user_id: str, recurrence_id: str, transaction_id: str) -> ValidatedRecurrence:
        recurrence = self._get_recurrence(user_id, recurrence_id)
        transaction = self._get_transaction(user_id, transaction_id)

        updated = self.recurrences.update(add_transaction(recurrence, transaction))
        self.mappings.create(user_id, transaction_id, recurrence_id)
        return updated

    def remove_transaction(self, user_id: str, recurrence_id: str, transaction_id: str) -> ValidatedRecurrence:
        recurrence = self._get_recurrence(user_id, recurrence_id)

        updated = self.recurrences.update(remove_transaction(recurrence, transaction_id))
        self.mappings.remove(user_id, transaction_id, recurrence_id)
        if not updated.active:
            logger.info(
                "Recurrence deactivated: no transaction left",
                extra={"user_id": user_id, "recurrence_id": recurrence_id},
            )
        return updated

    def list_mappings(self, user_id: str, recurrence_id: str) -> List[Transaction]:
        self._get_recurrence(user_id, recurrence_id)
        mapped = []
        for transaction_id in self.mappings.list_for_recurrence(user_id, recurrence_id):
            transaction = self.transactions.get(user_id, transaction_id)
            if transaction is not None:
                mapped.append(transaction)
        return mapped

    def suggest_candidate_transactions(
        self, user_id: str, recurrence_id: str, today: Optional[date] = None
    ) -> List[Transaction]:
        recurrence = self._get_recurrence(user_id, recurrence_id)
        since = (today or date.today()) - timedelta(days=self.config.suggestion_lookback_days)
        return suggest_candidate_transactions(
            recurrence,
            self.transactions.list_for_user(user_id, since=since),
            self.mappings.list_mapped_transaction_ids(user_id),
            limit=self.config.suggestion_limit,
            tolerance=self.config.suggestion_amount_tolerance,
        )
