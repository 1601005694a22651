"""Integration tests for the SQLAlchemy repositories"""

from datetime import date, datetime, timezone
from cashflow_engine.domain.models import DetectionStatus, Frequency, TransactionKind
from cashflow_engine.domain.detection import detect_recurrences
from tests.factories import make_recurrence, make_transaction


def test_transactions_are_scoped_to_user(repositories):
    transactions = repositories["transactions"]
    transactions.add(make_transaction("t1", date(2025, 1, 2), 10.0, "A"))
    transactions.add(make_transaction("t2", date(2025, 1, 1), 20.0, "B", kind=TransactionKind.income))
    transactions.add(make_transaction("t3", date(2025, 1, 1), 30.0, "C", user_id="user_2"))

    history = transactions.list_for_user("user_1")

    assert [t.transaction_id for t in history] == ["t2", "t1"]
    assert history[0].kind == TransactionKind.income
    assert history[0].signed_amount == 20.0
    assert transactions.get("user_1", "t3") is None
    assert [t.transaction_id for t in transactions.list_for_user("user_1", since=date(2025, 1, 2))] == ["t1"]


def test_recurrence_round_trip(repositories):
    recurrences = repositories["recurrences"]

    created = recurrences.create(
        make_recurrence(
            recurrence_id=None,
            transaction_ids=["t1", "t2"],
            jitter_days=2,
            occurrence_probability=0.8,
            first_occurrence=date(2025, 1, 5),
            last_occurrence=date(2025, 2, 5),
        )
    )

    assert created.recurrence_id is not None
    loaded = recurrences.get("user_1", created.recurrence_id)
    assert loaded == created
    assert loaded.frequency == Frequency.monthly
    assert loaded.transaction_ids == ["t1", "t2"]
    assert recurrences.get("user_2", created.recurrence_id) is None


def test_recurrence_update_deactivate_delete(repositories):
    recurrences = repositories["recurrences"]
    created = recurrences.create(make_recurrence(recurrence_id=None))

    created.transaction_ids.append("t9")
    created.label = "Loyer"
    updated = recurrences.update(created)
    assert updated.label == "Loyer"
    assert updated.transaction_ids == ["t9"]

    assert recurrences.deactivate("user_1", created.recurrence_id) is True
    assert recurrences.list_active_for_user("user_1") == []
    assert len(recurrences.list_for_user("user_1")) == 1

    assert recurrences.delete("user_1", created.recurrence_id) is True
    assert recurrences.list_for_user("user_1") == []
    assert recurrences.delete("user_1", created.recurrence_id) is False


def test_candidates_lifecycle(repositories, sample_transactions, config):
    recurrences = repositories["recurrences"]
    detected = detect_recurrences(sample_transactions, config).detections

    saved = recurrences.create_candidates(detected)

    assert all(c.candidate_id for c in saved)
    pending = recurrences.list_pending_candidates("user_1")
    assert [c.label for c in pending] == [c.label for c in detected]
    assert pending[0].transaction_ids == detected[0].transaction_ids

    recurrence = recurrences.create(make_recurrence(recurrence_id=None))
    recurrences.update_candidate_status(saved[0].candidate_id, DetectionStatus.validated, recurrence.recurrence_id)
    recurrences.update_candidate_status(saved[1].candidate_id, DetectionStatus.rejected)

    assert len(recurrences.list_pending_candidates("user_1")) == 1
    assert recurrences.clear_pending_candidates("user_1") == 1
    assert recurrences.get_candidate("user_1", saved[0].candidate_id).status == DetectionStatus.validated


def test_mappings_are_idempotent(repositories):
    mappings = repositories["mappings"]
    recurrence = repositories["recurrences"].create(make_recurrence(recurrence_id=None))

    mappings.create("user_1", "t1", recurrence.recurrence_id)
    mappings.create("user_1", "t1", recurrence.recurrence_id)
    mappings.create("user_1", "t2", recurrence.recurrence_id)

    assert mappings.list_mapped_transaction_ids("user_1") == {"t1", "t2"}
    assert sorted(mappings.list_for_recurrence("user_1", recurrence.recurrence_id)) == ["t1", "t2"]
    assert mappings.remove("user_1", "t1", recurrence.recurrence_id) is True
    assert mappings.remove("user_1", "t1", recurrence.recurrence_id) is False
    assert mappings.remove_for_recurrence("user_1", recurrence.recurrence_id) == 1
    assert mappings.list_mapped_transaction_ids("user_1") == set()


def test_latest_balance_snapshot(repositories):
    balances = repositories["balances"]

    assert balances.latest("user_1") is None

    balances.record("user_1", 1200.0, datetime(2025, 6, 1, tzinfo=timezone.utc))
    balances.record("user_1", 950.5, datetime(2025, 6, 28, tzinfo=timezone.utc))
    balances.record("user_2", 10.0, datetime(2025, 6, 29, tzinfo=timezone.utc))

    assert balances.latest("user_1") == 950.5
