"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional

from cashflow_engine.domain.exceptions import InvalidTransactionDataError


class TransactionKind(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"
    irregular = "irregular"


class DetectionStatus(str, Enum):
    pending = "pending"
    validated = "validated"
    rejected = "rejected"


def signed(amount: float, kind: TransactionKind) -> float:
    """Apply the sign carried by kind to an unsigned amount"""
    return abs(amount) if kind == TransactionKind.income else -abs(amount)


@dataclass(frozen=True)
class Transaction:
    """
    Atomic financial movement.

    Amounts are unsigned; kind is authoritative for the sign. Use
    normalize_transaction() when ingesting data that carries signed amounts.
    """

    transaction_id: str
    user_id: str
    date: date
    amount: float
    kind: TransactionKind
    description: str
    category_id: Optional[str] = None

    @property
    def signed_amount(self) -> float:
        return signed(self.amount, self.kind)


def normalize_transaction(
    transaction_id: str,
    user_id: str,
    on: date,
    amount: float,
    description: str,
    kind: TransactionKind | str | None = None,
    category_id: Optional[str] = None,
) -> Transaction:
    """
    Build a Transaction from either sign convention.

    Without an explicit kind, a negative amount is an expense and a positive
    one is income. With an explicit kind, only the absolute value is kept.
    """
    if kind is None:
        resolved = TransactionKind.expense if amount < 0 else TransactionKind.income
    else:
        try:
            resolved = TransactionKind(kind)
        except ValueError as e:
            raise InvalidTransactionDataError(f"Unknown transaction kind: {kind!r}") from e

    return Transaction(
        transaction_id=str(transaction_id),
        user_id=str(user_id),
        date=on,
        amount=abs(float(amount)),
        kind=resolved,
        description=description or "",
        category_id=category_id,
    )


@dataclass
class RecurrenceCandidate:
    """Detected periodic payment awaiting human confirmation"""

    user_id: str
    label: str
    kind: TransactionKind
    mean_amount: float
    amount_stddev: float
    amount_min: float
    amount_max: float
    frequency: Frequency
    reference_day: Optional[int]
    confidence: float
    transaction_ids: List[str]
    first_occurrence: date
    last_occurrence: date
    occurrence_count: int
    interval_mean_days: float
    interval_stddev_days: float
    coefficient_of_variation: float
    category_id: Optional[str] = None
    weak: bool = False
    status: DetectionStatus = DetectionStatus.pending
    candidate_id: Optional[str] = None


@dataclass
class ValidatedRecurrence:
    """Confirmed recurrence used by the projector"""

    recurrence_id: Optional[str]
    user_id: str
    label: str
    kind: TransactionKind
    mean_amount: float
    frequency: Frequency
    reference_day: Optional[int] = None
    amount_stddev: float = 0.0
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    occurrence_probability: float = 1.0
    jitter_days: int = 0
    confidence: float = 1.0
    transaction_ids: List[str] = field(default_factory=list)
    first_occurrence: Optional[date] = None
    last_occurrence: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    variability_pct: float = 0.0
    category_id: Optional[str] = None
    active: bool = True

    def __post_init__(self) -> None:
        self.occurrence_probability = min(max(float(self.occurrence_probability), 0.0), 1.0)
        self.jitter_days = max(int(self.jitter_days), 0)
        self.amount_stddev = max(float(self.amount_stddev or 0.0), 0.0)
        # Widen bounds so that min <= mean <= max always holds
        if self.amount_min is not None and self.amount_min > self.mean_amount:
            self.amount_min = self.mean_amount
        if self.amount_max is not None and self.amount_max < self.mean_amount:
            self.amount_max = self.mean_amount


@dataclass
class DetectionResult:
    """Outcome of one detection run"""

    detections: List[RecurrenceCandidate]
    message: str
    success: bool = True
    skipped_duplicates: int = 0


@dataclass
class ProjectionMetrics:
    """Summary metrics of a projection"""

    current_balance: float
    median_final_balance: float
    negative_risk_percent: float
    risk_level: str
    recurrence_count: int = 0
    residual_transaction_count: int = 0
    simulation_count: int = 0
    horizon_days: int = 0


@dataclass
class ProjectionResult:
    """Percentile fan chart of projected balances"""

    labels: List[str]
    checkpoint_days: List[int]
    p10: List[float]
    p50: List[float]
    p90: List[float]
    metrics: ProjectionMetrics

    def to_chart(self) -> dict:
        """Chart series: shared labels plus one dataset per percentile band"""
        return {
            "labels": list(self.labels),
            "datasets": [
                {"label": "P10 (pessimistic)", "data": list(self.p10)},
                {"label": "P50 (median)", "data": list(self.p50)},
                {"label": "P90 (optimistic)", "data": list(self.p90)},
            ],
        }

    def to_dict(self) -> dict:
        metrics = asdict(self.metrics)
        metrics["current_balance"] = round(self.metrics.current_balance, 2)
        metrics["median_final_balance"] = round(self.metrics.median_final_balance, 2)
        return {"projection": self.to_chart(), "metrics": metrics}
