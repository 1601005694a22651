"""Recurrence lifecycle - candidate promotion, membership edits and suggestions"""

from dataclasses import replace
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from cashflow_engine.domain.detection import anchor_day, description_similarity, normalize_description
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
    Transaction,
    TransactionKind,
    ValidatedRecurrence,
)

EDITABLE_FIELDS = frozenset(
    {
        "label",
        "mean_amount",
        "frequency",
        "reference_day",
        "occurrence_probability",
        "jitter_days",
        "category_id",
        "start_date",
        "end_date",
    }
)

# Valid anchors: ISO weekday, day of month, day of year
REFERENCE_DAY_RANGES: Dict[Frequency, Tuple[int, int]] = {
    Frequency.weekly: (1, 7),
    Frequency.biweekly: (1, 7),
    Frequency.monthly: (1, 31),
    Frequency.quarterly: (1, 31),
    Frequency.yearly: (1, 366),
}


def variability_pct(mean_amount: float, stddev: float) -> float:
    """Amount stddev as a percentage of the mean, rounded to 2 decimals"""
    if not stddev or not mean_amount:
        return 0.0
    return round(stddev / mean_amount * 100, 2)


def _check_edits(edits: Mapping[str, Any]) -> Dict[str, Any]:
    unknown = set(edits) - EDITABLE_FIELDS
    if unknown:
        raise InvalidParameterError(f"Unsupported recurrence fields: {', '.join(sorted(unknown))}")

    cleaned = {key: value for key, value in edits.items() if value is not None}
    if "frequency" in cleaned:
        try:
            cleaned["frequency"] = Frequency(cleaned["frequency"])
        except ValueError as e:
            raise InvalidParameterError(f"Unknown frequency: {cleaned['frequency']!r}") from e
        if cleaned["frequency"] == Frequency.irregular:
            raise InvalidParameterError("An irregular frequency cannot be scheduled")
    if "mean_amount" in cleaned:
        cleaned["mean_amount"] = abs(float(cleaned["mean_amount"]))
    if "occurrence_probability" in cleaned:
        probability = float(cleaned["occurrence_probability"])
        if not 0.0 <= probability <= 1.0:
            raise InvalidParameterError("occurrence_probability must be between 0 and 1")
        cleaned["occurrence_probability"] = probability
    if "jitter_days" in cleaned and int(cleaned["jitter_days"]) < 0:
        raise InvalidParameterError("jitter_days must be positive")
    if "label" in cleaned:
        cleaned["label"] = str(cleaned["label"]).strip()
        if not cleaned["label"]:
            raise InvalidParameterError("Label must not be empty")
    return cleaned


def resolve_reference_day(
    frequency: Frequency,
    previous_frequency: Frequency,
    previous_day: Optional[int],
    edits: Mapping[str, Any],
    phase: Optional[date],
) -> Optional[int]:
    """
    Anchor day for a possibly overridden frequency.

    An explicit reference_day wins. When only the frequency changes, the
    anchor is recomputed from the phase date (None when there is none, so
    the schedule aligns on its own fallback).

    Raises:
        InvalidParameterError: If the anchor is out of range for the frequency
    """
    if "reference_day" in edits:
        day = int(edits["reference_day"])
    elif frequency != previous_frequency:
        day = anchor_day(phase, frequency) if phase else None
    else:
        day = previous_day

    bounds = REFERENCE_DAY_RANGES.get(frequency)
    if day is not None and bounds and not bounds[0] <= day <= bounds[1]:
        raise InvalidParameterError(
            f"reference_day must be between {bounds[0]} and {bounds[1]} for a {frequency.value} recurrence"
        )
    return day


def validate_candidate(
    candidate: RecurrenceCandidate,
    user_edits: Optional[Mapping[str, Any]] = None,
    recurrence_id: Optional[str] = None,
) -> ValidatedRecurrence:
    """
    Promote a pending candidate to an active recurrence.

    User edits override the detected label, amount, frequency and anchor.
    The candidate is marked validated.
    """
    if candidate.status != DetectionStatus.pending:
        raise InvalidStatusTransitionError(
            f"Cannot validate a {candidate.status.value} detection"
        )

    edits = _check_edits(user_edits or {})
    mean_amount = edits.get("mean_amount", candidate.mean_amount)
    frequency = edits.get("frequency", candidate.frequency)
    anchor = resolve_reference_day(
        frequency, candidate.frequency, candidate.reference_day, edits, candidate.last_occurrence
    )

    recurrence = ValidatedRecurrence(
        recurrence_id=recurrence_id,
        user_id=candidate.user_id,
        label=edits.get("label", candidate.label),
        kind=candidate.kind,
        mean_amount=mean_amount,
        frequency=frequency,
        reference_day=anchor,
        amount_stddev=candidate.amount_stddev,
        amount_min=candidate.amount_min,
        amount_max=candidate.amount_max,
        occurrence_probability=edits.get("occurrence_probability", 1.0),
        jitter_days=edits.get("jitter_days", 0),
        confidence=candidate.confidence,
        transaction_ids=list(candidate.transaction_ids),
        first_occurrence=candidate.first_occurrence,
        last_occurrence=candidate.last_occurrence,
        start_date=edits.get("start_date", candidate.first_occurrence),
        end_date=edits.get("end_date"),
        variability_pct=variability_pct(mean_amount, candidate.amount_stddev),
        category_id=edits.get("category_id", candidate.category_id),
        active=True,
    )
    candidate.status = DetectionStatus.validated
    return recurrence


def reject_candidate(candidate: RecurrenceCandidate) -> RecurrenceCandidate:
    if candidate.status != DetectionStatus.pending:
        raise InvalidStatusTransitionError(
            f"Cannot reject a {candidate.status.value} detection"
        )
    candidate.status = DetectionStatus.rejected
    return candidate


def is_duplicate(
    candidate: RecurrenceCandidate,
    recurrence: ValidatedRecurrence,
    amount_tolerance: float = 0.05,
    label_similarity: float = 0.70,
) -> bool:
    if not recurrence.active or recurrence.kind != candidate.kind:
        return False
    if recurrence.user_id != candidate.user_id:
        return False

    same_key = normalize_description(candidate.label) == normalize_description(recurrence.label)
    if not same_key and description_similarity(candidate.label, recurrence.label) < label_similarity:
        return False

    reference = abs(recurrence.mean_amount)
    return abs(candidate.mean_amount - reference) <= amount_tolerance * reference


def ensure_not_duplicate(
    candidate: RecurrenceCandidate,
    validated: Iterable[ValidatedRecurrence],
    amount_tolerance: float = 0.05,
    label_similarity: float = 0.70,
) -> None:
    """Raise DuplicateDetectionError when an active recurrence already covers the candidate"""
    for recurrence in validated:
        if is_duplicate(candidate, recurrence, amount_tolerance, label_similarity):
            raise DuplicateDetectionError(
                f"'{candidate.label}' duplicates recurrence '{recurrence.label}'",
                recurrence_id=recurrence.recurrence_id,
            )


def add_transaction(recurrence: ValidatedRecurrence, transaction: Transaction) -> ValidatedRecurrence:
    """Attach a transaction to a recurrence (no-op when already attached)"""
    if transaction.user_id != recurrence.user_id:
        raise InvalidTransactionDataError("Transaction belongs to another user")
    if transaction.kind != recurrence.kind:
        raise InvalidTransactionDataError(
            f"Kind mismatch: transaction is {transaction.kind.value}, recurrence is {recurrence.kind.value}"
        )

    if transaction.transaction_id not in recurrence.transaction_ids:
        recurrence.transaction_ids.append(transaction.transaction_id)
        if recurrence.last_occurrence is None or transaction.date > recurrence.last_occurrence:
            recurrence.last_occurrence = transaction.date
        if recurrence.first_occurrence is None or transaction.date < recurrence.first_occurrence:
            recurrence.first_occurrence = transaction.date
    return recurrence


def remove_transaction(recurrence: ValidatedRecurrence, transaction_id: str) -> ValidatedRecurrence:
    """Detach a transaction; a recurrence left without members is deactivated"""
    recurrence.transaction_ids = [tid for tid in recurrence.transaction_ids if tid != transaction_id]
    if not recurrence.transaction_ids:
        recurrence.active = False
    return recurrence


def suggest_candidate_transactions(
    recurrence: ValidatedRecurrence,
    transactions: Sequence[Transaction],
    mapped_ids: Set[str],
    limit: int = 20,
    tolerance: float = 0.10,
    since: Optional[date] = None,
) -> List[Transaction]:
    """
    Transactions that could belong to the recurrence.

    Same kind, not mapped to any recurrence yet, amount within tolerance of
    the mean. Most recent first, capped at limit.
    """
    excluded = set(mapped_ids) | set(recurrence.transaction_ids)
    reference = abs(recurrence.mean_amount)

    matches = [
        t
        for t in transactions
        if t.user_id == recurrence.user_id
        and t.kind == recurrence.kind
        and t.transaction_id not in excluded
        and (since is None or t.date >= since)
        and abs(t.amount - reference) <= tolerance * reference
    ]
    matches.sort(key=lambda t: (t.date, t.transaction_id), reverse=True)
    return matches[:limit]


def create_manual_recurrence(
    user_id: str,
    label: str,
    kind: TransactionKind | str,
    mean_amount: float,
    frequency: Frequency | str = Frequency.monthly,
    reference_day: Optional[int] = None,
    amount_stddev: float = 0.0,
    occurrence_probability: float = 1.0,
    jitter_days: int = 0,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[str] = None,
) -> ValidatedRecurrence:
    """Recurrence declared by the user rather than detected"""
    try:
        kind = TransactionKind(kind)
    except ValueError as e:
        raise InvalidParameterError(f"Unknown kind: {kind!r}") from e

    edits = _check_edits(
        {
            "label": label,
            "mean_amount": mean_amount,
            "frequency": frequency,
            "reference_day": reference_day,
            "occurrence_probability": occurrence_probability,
            "jitter_days": jitter_days,
        }
    )
    if "label" not in edits:
        raise InvalidParameterError("Label is required")
    frequency = edits.get("frequency", Frequency.monthly)
    anchor = resolve_reference_day(frequency, frequency, None, edits, start_date)

    stddev = abs(float(amount_stddev or 0.0))
    return ValidatedRecurrence(
        recurrence_id=None,
        user_id=str(user_id),
        label=edits["label"],
        kind=kind,
        mean_amount=edits.get("mean_amount", 0.0),
        frequency=frequency,
        reference_day=anchor,
        amount_stddev=stddev,
        occurrence_probability=edits.get("occurrence_probability", 1.0),
        jitter_days=edits.get("jitter_days", 0),
        confidence=1.0,
        start_date=start_date,
        end_date=end_date,
        variability_pct=variability_pct(edits.get("mean_amount", 0.0), stddev),
        category_id=category_id,
        active=True,
    )


def update_recurrence(recurrence: ValidatedRecurrence, updates: Mapping[str, Any]) -> ValidatedRecurrence:
    """Apply user edits to a validated recurrence, returning the updated copy"""
    edits = _check_edits(updates)
    phase = recurrence.last_occurrence or recurrence.start_date or recurrence.first_occurrence
    edits["reference_day"] = resolve_reference_day(
        edits.get("frequency", recurrence.frequency), recurrence.frequency, recurrence.reference_day, edits, phase
    )
    updated = replace(recurrence, **edits)
    updated.variability_pct = variability_pct(updated.mean_amount, updated.amount_stddev)
    return updated
