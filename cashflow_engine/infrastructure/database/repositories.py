"""Data access layer - SQLAlchemy implementations of the domain contracts"""

from datetime import date, datetime, timezone
from typing import List, Optional, Sequence, Set
from sqlalchemy.orm import Session

from cashflow_engine.domain.interfaces import (
    BalanceSnapshotProvider,
    MappingRepository,
    RecurrenceRepository,
    TransactionRepository,
)
from cashflow_engine.domain.models import (
    DetectionStatus,
    Frequency,
    RecurrenceCandidate,
    Transaction,
    TransactionKind,
    ValidatedRecurrence,
)
from cashflow_engine.infrastructure.database.models import (
    AccountSnapshotRecord,
    DetectedRecurrenceRecord,
    RecurrenceMappingRecord,
    RecurringTransactionRecord,
    TransactionRecord,
)

# Columns copied verbatim between ValidatedRecurrence and its record
_RECURRENCE_FIELDS = (
    "user_id",
    "label",
    "mean_amount",
    "amount_stddev",
    "amount_min",
    "amount_max",
    "reference_day",
    "occurrence_probability",
    "jitter_days",
    "confidence",
    "first_occurrence",
    "last_occurrence",
    "start_date",
    "end_date",
    "variability_pct",
    "category_id",
    "active",
)


def to_transaction(record: TransactionRecord) -> Transaction:
    return Transaction(
        transaction_id=record.id,
        user_id=record.user_id,
        date=record.date,
        amount=abs(record.amount),
        kind=TransactionKind(record.kind),
        description=record.description or "",
        category_id=record.category_id,
    )


def to_recurrence(record: RecurringTransactionRecord) -> ValidatedRecurrence:
    return ValidatedRecurrence(
        recurrence_id=record.id,
        kind=TransactionKind(record.kind),
        frequency=Frequency(record.frequency),
        transaction_ids=list(record.transaction_ids or []),
        **{name: getattr(record, name) for name in _RECURRENCE_FIELDS},
    )


def to_candidate(record: DetectedRecurrenceRecord) -> RecurrenceCandidate:
    return RecurrenceCandidate(
        candidate_id=record.id,
        user_id=record.user_id,
        label=record.label,
        kind=TransactionKind(record.kind),
        mean_amount=record.mean_amount,
        amount_stddev=record.amount_stddev,
        amount_min=record.amount_min,
        amount_max=record.amount_max,
        frequency=Frequency(record.frequency),
        reference_day=record.reference_day,
        confidence=record.confidence,
        transaction_ids=list(record.transaction_ids or []),
        first_occurrence=record.first_occurrence,
        last_occurrence=record.last_occurrence,
        occurrence_count=record.occurrence_count,
        interval_mean_days=record.interval_mean_days,
        interval_stddev_days=record.interval_stddev_days,
        coefficient_of_variation=record.coefficient_of_variation,
        category_id=record.category_id,
        weak=record.weak,
        status=DetectionStatus(record.status),
    )


class SqlTransactionRepository(TransactionRepository):
    """Repository for transactions"""

    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, user_id: str, since: Optional[date] = None) -> List[Transaction]:
        query = self.db.query(TransactionRecord).filter(TransactionRecord.user_id == str(user_id))
        if since is not None:
            query = query.filter(TransactionRecord.date >= since)
        records = query.order_by(TransactionRecord.date.asc(), TransactionRecord.id.asc()).all()
        return [to_transaction(r) for r in records]

    def get(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        record = (
            self.db.query(TransactionRecord)
            .filter(TransactionRecord.id == str(transaction_id), TransactionRecord.user_id == str(user_id))
            .first()
        )
        return to_transaction(record) if record else None

    @staticmethod
    def _record(transaction: Transaction) -> TransactionRecord:
        return TransactionRecord(
            id=transaction.transaction_id,
            user_id=transaction.user_id,
            date=transaction.date,
            amount=abs(transaction.amount),
            kind=transaction.kind.value,
            description=transaction.description,
            category_id=transaction.category_id,
        )

    def add(self, transaction: Transaction) -> Transaction:
        """Insert a transaction (ingestion and fixtures)"""
        record = self._record(transaction)
        self.db.add(record)
        self.db.flush()
        return to_transaction(record)

    def add_many(self, transactions: Sequence[Transaction]) -> int:
        """Insert transactions whose id is not stored yet; returns how many were inserted"""
        ids = [t.transaction_id for t in transactions]
        existing = {
            row.id for row in self.db.query(TransactionRecord.id).filter(TransactionRecord.id.in_(ids)).all()
        }
        fresh = {t.transaction_id: t for t in transactions if t.transaction_id not in existing}
        self.db.add_all([self._record(t) for t in fresh.values()])
        self.db.flush()
        return len(fresh)


class SqlRecurrenceRepository(RecurrenceRepository):
    """Repository for validated recurrences and pending detections"""

    def __init__(self, db: Session):
        self.db = db

    def _record(self, user_id: str, recurrence_id: str) -> Optional[RecurringTransactionRecord]:
        return (
            self.db.query(RecurringTransactionRecord)
            .filter(
                RecurringTransactionRecord.id == str(recurrence_id),
                RecurringTransactionRecord.user_id == str(user_id),
            )
            .first()
        )

    def list_active_for_user(self, user_id: str) -> List[ValidatedRecurrence]:
        records = (
            self.db.query(RecurringTransactionRecord)
            .filter(
                RecurringTransactionRecord.user_id == str(user_id),
                RecurringTransactionRecord.active.is_(True),
            )
            .order_by(RecurringTransactionRecord.created_at.desc(), RecurringTransactionRecord.id)
            .all()
        )
        return [to_recurrence(r) for r in records]

    def list_for_user(self, user_id: str) -> List[ValidatedRecurrence]:
        records = (
            self.db.query(RecurringTransactionRecord)
            .filter(RecurringTransactionRecord.user_id == str(user_id))
            .order_by(RecurringTransactionRecord.created_at.desc(), RecurringTransactionRecord.id)
            .all()
        )
        return [to_recurrence(r) for r in records]

    def get(self, user_id: str, recurrence_id: str) -> Optional[ValidatedRecurrence]:
        record = self._record(user_id, recurrence_id)
        return to_recurrence(record) if record else None

    def create(self, recurrence: ValidatedRecurrence) -> ValidatedRecurrence:
        record = RecurringTransactionRecord(
            kind=recurrence.kind.value,
            frequency=recurrence.frequency.value,
            transaction_ids=list(recurrence.transaction_ids),
            **{name: getattr(recurrence, name) for name in _RECURRENCE_FIELDS},
        )
        if recurrence.recurrence_id:
            record.id = recurrence.recurrence_id
        self.db.add(record)
        self.db.flush()  # Get ID without committing
        return to_recurrence(record)

    def update(self, recurrence: ValidatedRecurrence) -> ValidatedRecurrence:
        record = self._record(recurrence.user_id, recurrence.recurrence_id)
        if record is None:
            raise LookupError(f"Recurrence {recurrence.recurrence_id} not found")
        for name in _RECURRENCE_FIELDS:
            setattr(record, name, getattr(recurrence, name))
        record.kind = recurrence.kind.value
        record.frequency = recurrence.frequency.value
        record.transaction_ids = list(recurrence.transaction_ids)  # new list so the JSON change is tracked
        self.db.flush()
        return to_recurrence(record)

    def deactivate(self, user_id: str, recurrence_id: str) -> bool:
        record = self._record(user_id, recurrence_id)
        if record is None:
            return False
        record.active = False
        self.db.flush()
        return True

    def delete(self, user_id: str, recurrence_id: str) -> bool:
        record = self._record(user_id, recurrence_id)
        if record is None:
            return False
        (
            self.db.query(DetectedRecurrenceRecord)
            .filter(DetectedRecurrenceRecord.recurring_transaction_id == record.id)
            .delete(synchronize_session=False)
        )
        self.db.delete(record)
        self.db.flush()
        return True

    def list_pending_candidates(self, user_id: str) -> List[RecurrenceCandidate]:
        records = (
            self.db.query(DetectedRecurrenceRecord)
            .filter(
                DetectedRecurrenceRecord.user_id == str(user_id),
                DetectedRecurrenceRecord.status == DetectionStatus.pending.value,
            )
            .order_by(DetectedRecurrenceRecord.confidence.desc(), DetectedRecurrenceRecord.first_occurrence)
            .all()
        )
        return [to_candidate(r) for r in records]

    def get_candidate(self, user_id: str, candidate_id: str) -> Optional[RecurrenceCandidate]:
        record = (
            self.db.query(DetectedRecurrenceRecord)
            .filter(
                DetectedRecurrenceRecord.id == str(candidate_id),
                DetectedRecurrenceRecord.user_id == str(user_id),
            )
            .first()
        )
        return to_candidate(record) if record else None

    def create_candidates(self, candidates: Sequence[RecurrenceCandidate]) -> List[RecurrenceCandidate]:
        records = [
            DetectedRecurrenceRecord(
                user_id=c.user_id,
                label=c.label,
                kind=c.kind.value,
                mean_amount=c.mean_amount,
                amount_stddev=c.amount_stddev,
                amount_min=c.amount_min,
                amount_max=c.amount_max,
                frequency=c.frequency.value,
                reference_day=c.reference_day,
                confidence=c.confidence,
                coefficient_of_variation=c.coefficient_of_variation,
                interval_mean_days=c.interval_mean_days,
                interval_stddev_days=c.interval_stddev_days,
                transaction_ids=list(c.transaction_ids),
                occurrence_count=c.occurrence_count,
                first_occurrence=c.first_occurrence,
                last_occurrence=c.last_occurrence,
                category_id=c.category_id,
                weak=c.weak,
                status=c.status.value,
            )
            for c in candidates
        ]
        self.db.add_all(records)
        self.db.flush()
        return [to_candidate(r) for r in records]

    def clear_pending_candidates(self, user_id: str) -> int:
        return (
            self.db.query(DetectedRecurrenceRecord)
            .filter(
                DetectedRecurrenceRecord.user_id == str(user_id),
                DetectedRecurrenceRecord.status == DetectionStatus.pending.value,
            )
            .delete(synchronize_session=False)
        )

    def update_candidate_status(
        self,
        candidate_id: str,
        status: DetectionStatus,
        recurrence_id: Optional[str] = None,
    ) -> None:
        record = self.db.get(DetectedRecurrenceRecord, str(candidate_id))
        if record is None:
            raise LookupError(f"Detection {candidate_id} not found")
        record.status = status.value
        if status == DetectionStatus.validated:
            record.validated_at = datetime.now(timezone.utc)
            record.recurring_transaction_id = recurrence_id
        self.db.flush()


class SqlMappingRepository(MappingRepository):
    """Repository for transaction/recurrence mappings"""

    def __init__(self, db: Session):
        self.db = db

    def list_mapped_transaction_ids(self, user_id: str) -> Set[str]:
        rows = (
            self.db.query(RecurrenceMappingRecord.transaction_id)
            .filter(RecurrenceMappingRecord.user_id == str(user_id))
            .all()
        )
        return {row.transaction_id for row in rows}

    def list_for_recurrence(self, user_id: str, recurrence_id: str) -> List[str]:
        rows = (
            self.db.query(RecurrenceMappingRecord.transaction_id)
            .filter(
                RecurrenceMappingRecord.user_id == str(user_id),
                RecurrenceMappingRecord.recurring_transaction_id == str(recurrence_id),
            )
            .order_by(RecurrenceMappingRecord.matched_at.desc(), RecurrenceMappingRecord.transaction_id)
            .all()
        )
        return [row.transaction_id for row in rows]

    def create(self, user_id: str, transaction_id: str, recurrence_id: str) -> None:
        exists = (
            self.db.query(RecurrenceMappingRecord.id)
            .filter(
                RecurrenceMappingRecord.transaction_id == str(transaction_id),
                RecurrenceMappingRecord.recurring_transaction_id == str(recurrence_id),
            )
            .first()
        )
        if exists:
            return
        self.db.add(
            RecurrenceMappingRecord(
                user_id=str(user_id),
                transaction_id=str(transaction_id),
                recurring_transaction_id=str(recurrence_id),
            )
        )
        self.db.flush()

    def remove(self, user_id: str, transaction_id: str, recurrence_id: str) -> bool:
        deleted = (
            self.db.query(RecurrenceMappingRecord)
            .filter(
                RecurrenceMappingRecord.user_id == str(user_id),
                RecurrenceMappingRecord.transaction_id == str(transaction_id),
                RecurrenceMappingRecord.recurring_transaction_id == str(recurrence_id),
            )
            .delete(synchronize_session=False)
        )
        return deleted > 0

    def remove_for_recurrence(self, user_id: str, recurrence_id: str) -> int:
        return (
            self.db.query(RecurrenceMappingRecord)
            .filter(
                RecurrenceMappingRecord.user_id == str(user_id),
                RecurrenceMappingRecord.recurring_transaction_id == str(recurrence_id),
            )
            .delete(synchronize_session=False)
        )


class SqlBalanceSnapshotProvider(BalanceSnapshotProvider):
    """Latest account snapshot"""

    def __init__(self, db: Session):
        self.db = db

    def latest(self, user_id: str) -> Optional[float]:
        record = (
            self.db.query(AccountSnapshotRecord)
            .filter(AccountSnapshotRecord.user_id == str(user_id))
            .order_by(AccountSnapshotRecord.date_snapshot.desc())
            .first()
        )
        return float(record.balance) if record else None

    def record(self, user_id: str, balance: float, taken_at: Optional[datetime] = None) -> None:
        snapshot = AccountSnapshotRecord(user_id=str(user_id), balance=float(balance))
        if taken_at is not None:
            snapshot.date_snapshot = taken_at
        self.db.add(snapshot)
        self.db.flush()
