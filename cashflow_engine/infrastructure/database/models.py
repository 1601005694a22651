"""SQLAlchemy ORM models backing the repositories"""

import uuid
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class TransactionRecord(Base):
    """Imported or manually entered transaction (amount unsigned, kind gives the sign)"""

    __tablename__ = "transactions"

    id = Column(Text, primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    amount = Column(Float, nullable=False)
    kind = Column(Text, nullable=False)  # income | expense
    description = Column(Text, nullable=False, default="")
    category_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RecurringTransactionRecord(Base):
    """Validated recurrence"""

    __tablename__ = "recurring_transactions"

    id = Column(Text, primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False, index=True)
    label = Column(Text, nullable=False)
    kind = Column(Text, nullable=False)
    mean_amount = Column(Float, nullable=False)
    amount_stddev = Column(Float, nullable=False, default=0.0)
    amount_min = Column(Float, nullable=True)
    amount_max = Column(Float, nullable=True)
    frequency = Column(Text, nullable=False)
    reference_day = Column(Integer, nullable=True)
    occurrence_probability = Column(Float, nullable=False, default=1.0)
    jitter_days = Column(Integer, nullable=False, default=0)
    confidence = Column(Float, nullable=False, default=1.0)
    transaction_ids = Column(JSON, nullable=False, default=list)
    first_occurrence = Column(Date, nullable=True)
    last_occurrence = Column(Date, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    variability_pct = Column(Float, nullable=False, default=0.0)
    category_id = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    mappings = relationship("RecurrenceMappingRecord", back_populates="recurrence", cascade="all, delete-orphan")


class DetectedRecurrenceRecord(Base):
    """Detection awaiting validation (pending), or its final status"""

    __tablename__ = "detected_recurrences"

    id = Column(Text, primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False, index=True)
    label = Column(Text, nullable=False)
    kind = Column(Text, nullable=False)
    mean_amount = Column(Float, nullable=False)
    amount_stddev = Column(Float, nullable=False)
    amount_min = Column(Float, nullable=False)
    amount_max = Column(Float, nullable=False)
    frequency = Column(Text, nullable=False)
    reference_day = Column(Integer, nullable=True)
    confidence = Column(Float, nullable=False)
    coefficient_of_variation = Column(Float, nullable=False)
    interval_mean_days = Column(Float, nullable=False)
    interval_stddev_days = Column(Float, nullable=False)
    transaction_ids = Column(JSON, nullable=False, default=list)
    occurrence_count = Column(Integer, nullable=False)
    first_occurrence = Column(Date, nullable=False)
    last_occurrence = Column(Date, nullable=False)
    category_id = Column(Text, nullable=True)
    weak = Column(Boolean, nullable=False, default=False)
    status = Column(Text, nullable=False, default="pending", index=True)
    recurring_transaction_id = Column(
        Text, ForeignKey("recurring_transactions.id", ondelete="SET NULL"), nullable=True
    )
    validated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RecurrenceMappingRecord(Base):
    """Transaction attributed to a recurrence (excluded from the residual)"""

    __tablename__ = "transaction_recurrence_mapping"
    __table_args__ = (UniqueConstraint("transaction_id", "recurring_transaction_id"),)

    id = Column(Text, primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False, index=True)
    transaction_id = Column(Text, nullable=False, index=True)
    recurring_transaction_id = Column(
        Text, ForeignKey("recurring_transactions.id", ondelete="CASCADE"), nullable=False
    )
    confidence = Column(Float, nullable=False, default=1.0)
    matched_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    recurrence = relationship("RecurringTransactionRecord", back_populates="mappings")


class AccountSnapshotRecord(Base):
    """Balance reported by the bank at a point in time"""

    __tablename__ = "account_snapshot"

    id = Column(Text, primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False, index=True)
    balance = Column(Float, nullable=False)
    date_snapshot = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
