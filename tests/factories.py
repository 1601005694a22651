"""Builders for domain objects used across the test suite"""

from datetime import date
from typing import Optional
from cashflow_engine.domain.models import Frequency, Transaction, TransactionKind, ValidatedRecurrence

TODAY = date(2025, 6, 30)


def make_transaction(
    transaction_id: str,
    on: date,
    amount: float,
    description: str,
    kind: TransactionKind = TransactionKind.expense,
    user_id: str = "user_1",
    category_id: Optional[str] = None,
) -> Transaction:
    return Transaction(
        transaction_id=transaction_id,
        user_id=user_id,
        date=on,
        amount=amount,
        kind=kind,
        description=description,
        category_id=category_id,
    )


def make_recurrence(**overrides) -> ValidatedRecurrence:
    fields = dict(
        recurrence_id="rec_1",
        user_id="user_1",
        label="Rent",
        kind=TransactionKind.expense,
        mean_amount=800.0,
        frequency=Frequency.monthly,
        reference_day=5,
    )
    fields.update(overrides)
    return ValidatedRecurrence(**fields)
