"""Recurrence detection - mines transaction history for periodic payments"""

import re
from datetime import date
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from cashflow_engine.config import Settings, settings as default_settings
from cashflow_engine.domain.models import (
    DetectionResult,
    Frequency,
    RecurrenceCandidate,
    Transaction,
)
from cashflow_engine.utils.date_utils import day_of_year, days_between
from cashflow_engine.utils.stats import clamp, coefficient_of_variation, mean, most_common, pstdev

# (frequency, mean gap in days, tolerance); first match wins
FREQUENCY_BANDS: Tuple[Tuple[Frequency, int, int], ...] = (
    (Frequency.weekly, 7, 1),
    (Frequency.biweekly, 14, 3),
    (Frequency.monthly, 30, 5),
    (Frequency.quarterly, 90, 15),
    (Frequency.yearly, 365, 30),
)

# Banking boilerplate that says nothing about the counterparty
STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "carte", "cb", "vir", "virement", "retrait", "dab", "prlv", "sepa", "inst",
        "de", "du", "la", "le", "les", "un", "une", "et", "ou", "avec", "pour", "par", "sur",
        "card", "payment", "transfer", "debit", "credit", "direct", "the", "and", "for", "from",
    }
)

_DATE_RE = re.compile(r"\d{1,2}[/\-.]\d{1,2}(?:[/\-.]\d{2,4})?")
_DIGITS_RE = re.compile(r"\d+")
_PUNCT_RE = re.compile(r"[^\w\s]|_")
_SPACES_RE = re.compile(r"\s+")


def normalize_description(description: Optional[str]) -> str:
    """Lower-case, drop dates, digits and punctuation, collapse whitespace"""
    if not description:
        return ""
    text = description.lower()
    text = _DATE_RE.sub(" ", text)
    text = _DIGITS_RE.sub(" ", text)
    text = _PUNCT_RE.sub(" ", text)
    return _SPACES_RE.sub(" ", text).strip()


def description_tokens(description: Optional[str]) -> FrozenSet[str]:
    """Significant tokens of a description (no stop-words, no tokens of 2 chars or less)"""
    return frozenset(
        token
        for token in normalize_description(description).split(" ")
        if len(token) > 2 and token not in STOP_WORDS
    )


def jaccard_similarity(left: FrozenSet[str], right: FrozenSet[str]) -> float:
    if not left and not right:
        return 0.0
    return len(left & right) / len(left | right)


def description_similarity(first: Optional[str], second: Optional[str]) -> float:
    """
    Token-set similarity of two descriptions.

    Descriptions without significant tokens only match when their normalized
    forms are identical.
    """
    left = description_tokens(first)
    right = description_tokens(second)
    if not left and not right:
        return 1.0 if normalize_description(first) == normalize_description(second) else 0.0
    return jaccard_similarity(left, right)


def amounts_similar(first: float, second: float, tolerance: float) -> bool:
    """Absolute amounts differ by at most tolerance x their average"""
    a, b = abs(first), abs(second)
    average = (a + b) / 2
    return abs(a - b) <= tolerance * average


def canonical_order(transactions: Sequence[Transaction]) -> List[Transaction]:
    """Date ascending, transaction id as tie-break"""
    return sorted(transactions, key=lambda t: (t.date, t.transaction_id))


def interval_gaps(transactions: Sequence[Transaction]) -> List[int]:
    """Day gaps between consecutive occurrences (input must be date-sorted)"""
    return [days_between(prev.date, cur.date) for prev, cur in zip(transactions, transactions[1:])]


def classify_interval(mean_gap: float) -> Frequency:
    for frequency, center, tolerance in FREQUENCY_BANDS:
        if center - tolerance <= mean_gap <= center + tolerance:
            return frequency
    return Frequency.irregular


def classify_frequency(
    gaps: Sequence[float], max_cv: float = 0.30
) -> Tuple[Frequency, float, Optional[float]]:
    """
    Classify a list of day gaps.

    Returns (frequency, mean gap, coefficient of variation). The result only
    depends on the mean and cv of the gaps. A cv above max_cv, an undefined
    cv (mean gap of zero) or a mean outside every band yields irregular.
    """
    if not gaps:
        return Frequency.irregular, 0.0, None

    mean_gap = mean(gaps)
    cv = coefficient_of_variation(gaps)
    if cv is None or cv > max_cv:
        return Frequency.irregular, mean_gap, cv
    return classify_interval(mean_gap), mean_gap, cv


def confidence_from_cv(cv: float) -> float:
    return clamp(1.0 - cv, 0.0, 1.0)


def anchor_day(on: date, frequency: Frequency) -> Optional[int]:
    """Anchor of a date for the frequency: ISO weekday, day of month or day of year"""
    if frequency in (Frequency.weekly, Frequency.biweekly):
        return on.isoweekday()
    if frequency in (Frequency.monthly, Frequency.quarterly):
        return on.day
    if frequency == Frequency.yearly:
        return day_of_year(on)
    return None


def reference_day(transactions: Sequence[Transaction], frequency: Frequency) -> Optional[int]:
    """Most frequent anchor day for the frequency (first seen wins ties)"""
    if frequency == Frequency.irregular:
        return None
    return most_common([anchor_day(t.date, frequency) for t in transactions])


class RecurrenceDetector:
    """Groups similar transactions and keeps the ones that recur on a schedule"""

    def __init__(self, config: Settings | None = None):
        self.config = config or default_settings

    def is_similar(self, first: Transaction, second: Transaction) -> bool:
        if first.kind != second.kind:
            return False
        if not amounts_similar(first.amount, second.amount, self.config.amount_tolerance):
            return False
        return description_similarity(first.description, second.description) >= self.config.description_similarity

    def group_transactions(self, transactions: Sequence[Transaction]) -> List[List[Transaction]]:
        """
        Greedy grouping in canonical order.

        Each transaction joins the first group whose representative (first
        member) it is similar to, otherwise it starts a new group.
        """
        groups: List[List[Transaction]] = []
        for txn in canonical_order(transactions):
            for group in groups:
                if self.is_similar(group[0], txn):
                    group.append(txn)
                    break
            else:
                groups.append([txn])
        return groups

    def make_label(self, group: Sequence[Transaction]) -> str:
        descriptions = [t.description.strip() for t in group if t.description and t.description.strip()]
        if descriptions:
            shortest = min(descriptions, key=len)  # min() keeps the first of equal lengths
            if len(shortest) <= self.config.label_max_length:
                return shortest
            key = normalize_description(shortest)
        else:
            key = ""
        if not key:
            return "Unknown"
        return " ".join(word.capitalize() for word in key.split(" "))[: self.config.label_max_length]

    def analyze_group(self, group: Sequence[Transaction], weak: bool = False) -> Optional[RecurrenceCandidate]:
        """Statistically validate one group; None when it is not an actionable recurrence"""
        ordered = canonical_order(group)
        gaps = interval_gaps(ordered)
        frequency, mean_gap, cv = classify_frequency(gaps, self.config.max_interval_cv)
        if frequency == Frequency.irregular:
            return None

        amounts = [t.amount for t in ordered]
        confidence = confidence_from_cv(cv)
        if weak:
            confidence *= self.config.weak_confidence_factor

        return RecurrenceCandidate(
            user_id=ordered[0].user_id,
            label=self.make_label(ordered),
            kind=ordered[0].kind,
            mean_amount=round(mean(amounts), 2),
            amount_stddev=round(pstdev(amounts), 2),
            amount_min=round(min(amounts), 2),
            amount_max=round(max(amounts), 2),
            frequency=frequency,
            reference_day=reference_day(ordered, frequency),
            confidence=confidence,
            transaction_ids=[t.transaction_id for t in ordered],
            first_occurrence=ordered[0].date,
            last_occurrence=ordered[-1].date,
            occurrence_count=len(ordered),
            interval_mean_days=round(mean_gap, 1),
            interval_stddev_days=round(pstdev(gaps), 1),
            coefficient_of_variation=cv,
            category_id=most_common(t.category_id for t in ordered if t.category_id is not None),
            weak=weak,
        )

    def detect(self, transactions: Sequence[Transaction], include_weak: bool = False) -> DetectionResult:
        minimum = max(self.config.min_transactions, 3)
        if len(transactions) < minimum:
            return DetectionResult(
                detections=[],
                message=f"Not enough transactions ({len(transactions)}, minimum {minimum} required)",
                success=False,
            )

        floor = max(self.config.weak_group_size, 2)
        detections: List[RecurrenceCandidate] = []
        for group in self.group_transactions(transactions):
            if len(group) >= self.config.min_group_size:
                candidate = self.analyze_group(group)
            elif include_weak and len(group) >= floor:
                candidate = self.analyze_group(group, weak=True)
            else:
                continue
            if candidate is not None:
                detections.append(candidate)

        detections.sort(key=lambda c: (-c.confidence, c.first_occurrence, c.label))

        if not detections:
            return DetectionResult(detections=[], message="No recurrence detected")
        return DetectionResult(detections=detections, message=f"{len(detections)} recurrence(s) detected")


def detect_recurrences(
    transactions: Sequence[Transaction],
    config: Settings | None = None,
    include_weak: bool = False,
) -> DetectionResult:
    """Main entry point: detect recurrence candidates in a user's history"""
    return RecurrenceDetector(config).detect(transactions, include_weak=include_weak)


def group_summary(groups: Sequence[Sequence[Transaction]]) -> Dict[str, int]:
    """Normalized representative description -> group size (diagnostics)"""
    summary: Dict[str, int] = {}
    for group in groups:
        key = normalize_description(group[0].description) or "unknown"
        summary[key] = summary.get(key, 0) + len(group)
    return summary
