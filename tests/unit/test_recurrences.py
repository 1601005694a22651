"""Unit tests for the recurrence lifecycle"""

import pytest
from datetime import date
from cashflow_engine.domain.exceptions import (
    DuplicateDetectionError,
    InvalidParameterError,
    InvalidStatusTransitionError,
    InvalidTransactionDataError,
)
from cashflow_engine.domain.models import (
    DetectionStatus,
    Frequency,
    RecurrenceCandidate,
    TransactionKind,
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
    variability_pct,
)
from cashflow_engine.domain.schedule import expected_occurrences
from tests.factories import make_recurrence, make_transaction


def make_candidate(**overrides) -> RecurrenceCandidate:
    fields = dict(
        user_id="user_1",
        label="NETFLIX",
        kind=TransactionKind.expense,
        mean_amount=15.99,
        amount_stddev=0.8,
        amount_min=15.0,
        amount_max=17.0,
        frequency=Frequency.monthly,
        reference_day=12,
        confidence=0.95,
        transaction_ids=["t1", "t2", "t3"],
        first_occurrence=date(2025, 1, 12),
        last_occurrence=date(2025, 3, 12),
        occurrence_count=3,
        interval_mean_days=29.5,
        interval_stddev_days=1.5,
        coefficient_of_variation=0.05,
        candidate_id="cand_1",
    )
    fields.update(overrides)
    return RecurrenceCandidate(**fields)


def test_validate_candidate_copies_detected_fields():
    candidate = make_candidate()

    recurrence = validate_candidate(candidate)

    assert candidate.status == DetectionStatus.validated
    assert recurrence.active is True
    assert recurrence.label == "NETFLIX"
    assert recurrence.mean_amount == 15.99
    assert recurrence.frequency == Frequency.monthly
    assert recurrence.reference_day == 12
    assert recurrence.occurrence_probability == 1.0
    assert recurrence.jitter_days == 0
    assert recurrence.transaction_ids == ["t1", "t2", "t3"]
    assert recurrence.start_date == date(2025, 1, 12)
    assert recurrence.variability_pct == variability_pct(15.99, 0.8)


def test_validate_candidate_applies_user_edits():
    recurrence = validate_candidate(
        make_candidate(),
        {"label": "  Netflix  ", "mean_amount": -17.99, "frequency": "monthly", "jitter_days": 2},
    )

    assert recurrence.label == "Netflix"
    assert recurrence.mean_amount == 17.99
    assert recurrence.jitter_days == 2
    # bounds widened so the edited mean stays inside them
    assert recurrence.amount_max == 17.99


def test_validate_twice_is_rejected():
    candidate = make_candidate()
    validate_candidate(candidate)

    with pytest.raises(InvalidStatusTransitionError):
        validate_candidate(candidate)
    with pytest.raises(InvalidStatusTransitionError):
        reject_candidate(candidate)


def test_reject_candidate():
    candidate = reject_candidate(make_candidate())

    assert candidate.status == DetectionStatus.rejected
    with pytest.raises(InvalidStatusTransitionError):
        validate_candidate(candidate)


@pytest.mark.parametrize(
    "edits",
    [
        {"frequency": "fortnightly"},
        {"frequency": "irregular"},
        {"occurrence_probability": 1.5},
        {"jitter_days": -1},
        {"label": "   "},
        {"transaction_ids": []},
    ],
)
def test_invalid_edits(edits):
    with pytest.raises(InvalidParameterError):
        validate_candidate(make_candidate(), edits)


def test_duplicate_of_validated_recurrence_is_refused():
    validated = [make_recurrence(label="Netflix", mean_amount=16.2)]

    with pytest.raises(DuplicateDetectionError) as exc_info:
        ensure_not_duplicate(make_candidate(), validated)

    assert exc_info.value.recurrence_id == "rec_1"


@pytest.mark.parametrize(
    "overrides",
    [
        {"label": "Spotify"},
        {"mean_amount": 25.0},
        {"kind": TransactionKind.income},
        {"active": False},
        {"user_id": "user_2"},
    ],
)
def test_not_a_duplicate(overrides):
    fields = dict(label="Netflix", mean_amount=15.99)
    fields.update(overrides)

    ensure_not_duplicate(make_candidate(), [make_recurrence(**fields)])


def test_add_transaction_updates_occurrences():
    recurrence = make_recurrence(
        transaction_ids=["t1"], first_occurrence=date(2025, 2, 5), last_occurrence=date(2025, 2, 5)
    )

    add_transaction(recurrence, make_transaction("t0", date(2025, 1, 5), 800.0, "LOYER"))
    add_transaction(recurrence, make_transaction("t2", date(2025, 3, 5), 800.0, "LOYER"))
    add_transaction(recurrence, make_transaction("t2", date(2025, 3, 5), 800.0, "LOYER"))

    assert recurrence.transaction_ids == ["t1", "t0", "t2"]
    assert recurrence.first_occurrence == date(2025, 1, 5)
    assert recurrence.last_occurrence == date(2025, 3, 5)


def test_add_transaction_checks_kind_and_owner():
    recurrence = make_recurrence()

    with pytest.raises(InvalidTransactionDataError):
        add_transaction(recurrence, make_transaction("t1", date(2025, 1, 5), 800.0, "X", kind=TransactionKind.income))
    with pytest.raises(InvalidTransactionDataError):
        add_transaction(recurrence, make_transaction("t1", date(2025, 1, 5), 800.0, "X", user_id="user_2"))


def test_removing_last_transaction_deactivates():
    recurrence = make_recurrence(transaction_ids=["t1", "t2"])

    remove_transaction(recurrence, "t1")
    assert recurrence.active is True

    remove_transaction(recurrence, "t2")
    assert recurrence.transaction_ids == []
    assert recurrence.active is False


def test_suggest_candidate_transactions():
    recurrence = make_recurrence(transaction_ids=["mine"])
    transactions = [
        make_transaction("mine", date(2025, 1, 5), 800.0, "LOYER"),
        make_transaction("close_old", date(2025, 2, 5), 790.0, "LOYER"),
        make_transaction("close_new", date(2025, 3, 5), 860.0, "LOYER"),
        make_transaction("too_far", date(2025, 3, 6), 950.0, "LOYER"),
        make_transaction("income", date(2025, 3, 7), 800.0, "LOYER", kind=TransactionKind.income),
        make_transaction("mapped", date(2025, 3, 8), 800.0, "LOYER"),
    ]

    suggestions = suggest_candidate_transactions(recurrence, transactions, mapped_ids={"mapped"})

    assert [t.transaction_id for t in suggestions] == ["close_new", "close_old"]
    assert suggest_candidate_transactions(recurrence, transactions, {"mapped"}, limit=1)[0].transaction_id == "close_new"
    assert suggest_candidate_transactions(recurrence, transactions, {"mapped"}, since=date(2025, 3, 1)) == [
        transactions[2]
    ]


def test_create_manual_recurrence():
    recurrence = create_manual_recurrence(
        "user_1", "Gym", "expense", 35.0, frequency="weekly", reference_day=1, amount_stddev=3.5
    )

    assert recurrence.recurrence_id is None
    assert recurrence.kind == TransactionKind.expense
    assert recurrence.frequency == Frequency.weekly
    assert recurrence.confidence == 1.0
    assert recurrence.variability_pct == 10.0
    assert recurrence.active is True


def test_create_manual_recurrence_requires_label_and_kind():
    with pytest.raises(InvalidParameterError):
        create_manual_recurrence("user_1", "", "expense", 35.0)
    with pytest.raises(InvalidParameterError):
        create_manual_recurrence("user_1", "Gym", "transfer", 35.0)


def test_update_recurrence_returns_copy():
    original = make_recurrence(amount_stddev=80.0)

    updated = update_recurrence(original, {"mean_amount": 400.0, "occurrence_probability": 0.5})

    assert updated.mean_amount == 400.0
    assert updated.occurrence_probability == 0.5
    assert updated.variability_pct == 20.0
    assert original.mean_amount == 800.0


def test_variability_pct_handles_zero():
    assert variability_pct(0.0, 10.0) == 0.0
    assert variability_pct(100.0, 0.0) == 0.0


def test_frequency_override_recomputes_anchor():
    """A monthly day-of-month anchor means nothing for a weekly recurrence"""
    recurrence = validate_candidate(make_candidate(), {"frequency": "weekly"})

    assert recurrence.reference_day == 3  # 2025-03-12 is a Wednesday
    occurrences = expected_occurrences(recurrence, date(2025, 4, 1), date(2025, 6, 30))
    assert len(occurrences) == 13
    assert all(day.isoweekday() == 3 for day in occurrences)


def test_yearly_to_monthly_override_uses_day_of_month():
    candidate = make_candidate(
        frequency=Frequency.yearly, reference_day=200, first_occurrence=date(2023, 7, 19), last_occurrence=date(2024, 7, 18)
    )

    recurrence = validate_candidate(candidate, {"frequency": "monthly"})

    assert recurrence.reference_day == 18
    assert expected_occurrences(recurrence, date(2025, 1, 1), date(2025, 3, 31)) == [
        date(2025, 1, 18),
        date(2025, 2, 18),
        date(2025, 3, 18),
    ]


def test_explicit_anchor_wins_over_recomputed_one():
    recurrence = validate_candidate(make_candidate(), {"frequency": "weekly", "reference_day": 5})

    assert recurrence.reference_day == 5


def test_update_frequency_recomputes_anchor():
    rent = make_recurrence(last_occurrence=date(2025, 6, 5))

    updated = update_recurrence(rent, {"frequency": "biweekly"})
    unchanged = update_recurrence(rent, {"label": "Loyer"})

    assert updated.reference_day == 4  # Thursday
    assert unchanged.reference_day == 5


@pytest.mark.parametrize(
    "edits",
    [
        {"frequency": "weekly", "reference_day": 15},
        {"reference_day": 32},
        {"reference_day": 0},
        {"frequency": "yearly", "reference_day": 367},
    ],
)
def test_anchor_out_of_range_for_frequency(edits):
    with pytest.raises(InvalidParameterError):
        validate_candidate(make_candidate(), edits)
    with pytest.raises(InvalidParameterError):
        update_recurrence(make_recurrence(), edits)


def test_manual_recurrence_anchor_is_checked():
    with pytest.raises(InvalidParameterError):
        create_manual_recurrence("user_1", "Gym", "expense", 35.0, frequency="weekly", reference_day=12)
