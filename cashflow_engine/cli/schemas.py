"""Pydantic schemas for command input validation and JSON output"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import date
from typing import List, Optional

from cashflow_engine.domain.models import DetectionStatus, Frequency, TransactionKind


class RecurrenceEdits(BaseModel):
    """User overrides applied when validating a detection"""

    label: Optional[str] = Field(None, min_length=1, description="Display label")
    mean_amount: Optional[float] = Field(None, gt=0, description="Unsigned expected amount")
    frequency: Optional[Frequency] = None
    reference_day: Optional[int] = Field(None, ge=1, le=366)
    occurrence_probability: Optional[float] = Field(None, ge=0, le=1)
    jitter_days: Optional[int] = Field(None, ge=0)


class CandidateSchema(BaseModel):
    """Detected recurrence"""

    model_config = ConfigDict(from_attributes=True)

    candidate_id: Optional[str] = None
    label: str
    kind: TransactionKind
    frequency: Frequency
    mean_amount: float
    amount_stddev: float
    reference_day: Optional[int] = None
    confidence: float
    occurrence_count: int
    first_occurrence: date
    last_occurrence: date
    weak: bool = False
    status: DetectionStatus


class DetectionResponse(BaseModel):
    """Result of a detection run"""

    model_config = ConfigDict(from_attributes=True)

    success: bool
    message: str
    skipped_duplicates: int = 0
    detections: List[CandidateSchema]


class RecurrenceSchema(BaseModel):
    """Validated recurrence"""

    model_config = ConfigDict(from_attributes=True)

    recurrence_id: str
    label: str
    kind: TransactionKind
    frequency: Frequency
    mean_amount: float
    reference_day: Optional[int] = None
    occurrence_probability: float
    jitter_days: int
    transaction_ids: List[str]
    active: bool


class RecurrenceListResponse(BaseModel):
    user_id: str
    recurrences: List[RecurrenceSchema]


class ImportResponse(BaseModel):
    """Statement import summary"""

    user_id: str
    read: int
    inserted: int


class ChartDataset(BaseModel):
    label: str
    data: List[float]


class ChartSchema(BaseModel):
    labels: List[str]
    datasets: List[ChartDataset]


class ProjectionMetricsSchema(BaseModel):
    current_balance: float
    median_final_balance: float
    negative_risk_percent: float
    risk_level: str
    recurrence_count: int
    residual_transaction_count: int
    simulation_count: int
    horizon_days: int


class ProjectionResponse(BaseModel):
    """Fan chart + summary metrics"""

    projection: ChartSchema
    metrics: ProjectionMetricsSchema


class StatusResponse(BaseModel):
    status: str
    service: str
