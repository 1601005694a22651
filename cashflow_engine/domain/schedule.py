"""Expected occurrence dates of validated recurrences"""

from datetime import date, timedelta
from typing import Iterable, List, NamedTuple, Optional

import numpy as np

from cashflow_engine.domain.models import Frequency, ValidatedRecurrence
from cashflow_engine.utils.date_utils import (
    date_for_day_of_month,
    date_for_day_of_year,
    day_of_year,
    generate_date_range,
)


class ScheduledOccurrence(NamedTuple):
    date: date
    recurrence: ValidatedRecurrence


def _phase(recurrence: ValidatedRecurrence) -> Optional[date]:
    """Known occurrence the cadence is aligned on"""
    return recurrence.last_occurrence or recurrence.start_date or recurrence.first_occurrence


def _months(start: date, end: date) -> Iterable[tuple[int, int]]:
    index = start.year * 12 + start.month - 1
    last = end.year * 12 + end.month - 1
    while index <= last:
        yield index // 12, index % 12 + 1
        index += 1


def _weekly(recurrence: ValidatedRecurrence, start: date, end: date) -> List[date]:
    anchor = recurrence.reference_day or (_phase(recurrence) or start).isoweekday()
    return [day for day in generate_date_range(start, end) if day.isoweekday() == anchor]


def _biweekly(recurrence: ValidatedRecurrence, start: date, end: date) -> List[date]:
    phase = _phase(recurrence)
    if phase is None:
        anchor = recurrence.reference_day or start.isoweekday()
        phase = start + timedelta(days=(anchor - start.isoweekday()) % 7)
    offset = (start - phase).days
    first = phase + timedelta(days=14 * -(-offset // 14))
    occurrences = []
    day = first
    while day <= end:
        occurrences.append(day)
        day += timedelta(days=14)
    return occurrences


def _monthly(recurrence: ValidatedRecurrence, start: date, end: date, every: int = 1) -> List[date]:
    phase = _phase(recurrence) or start
    anchor = recurrence.reference_day or phase.day
    phase_index = phase.year * 12 + phase.month - 1
    occurrences = []
    for year, month in _months(start, end):
        if (year * 12 + month - 1 - phase_index) % every:
            continue
        day = date_for_day_of_month(year, month, anchor)
        if start <= day <= end:
            occurrences.append(day)
    return occurrences


def _yearly(recurrence: ValidatedRecurrence, start: date, end: date) -> List[date]:
    anchor = recurrence.reference_day or day_of_year(_phase(recurrence) or start)
    occurrences = []
    for year in range(start.year, end.year + 1):
        day = date_for_day_of_year(year, anchor)
        if start <= day <= end:
            occurrences.append(day)
    return occurrences


def expected_occurrences(recurrence: ValidatedRecurrence, start: date, end: date) -> List[date]:
    """
    Calendar dates in [start, end] on which the recurrence is expected.

    Honours the recurrence's own start/end dates. Irregular recurrences are
    never scheduled.
    """
    if recurrence.start_date and recurrence.start_date > start:
        start = recurrence.start_date
    if recurrence.end_date and recurrence.end_date < end:
        end = recurrence.end_date
    if start > end:
        return []

    if recurrence.frequency == Frequency.weekly:
        return _weekly(recurrence, start, end)
    if recurrence.frequency == Frequency.biweekly:
        return _biweekly(recurrence, start, end)
    if recurrence.frequency == Frequency.monthly:
        return _monthly(recurrence, start, end)
    if recurrence.frequency == Frequency.quarterly:
        return _monthly(recurrence, start, end, every=3)
    if recurrence.frequency == Frequency.yearly:
        return _yearly(recurrence, start, end)
    return []


def build_schedule(
    recurrences: Iterable[ValidatedRecurrence], start: date, end: date
) -> List[ScheduledOccurrence]:
    """
    All expected occurrences of active recurrences, sorted by date.

    Each recurrence is scheduled over [start, end] widened by its own
    jitter_days, so jitter can move occurrences into the window as well as
    out of it. Callers keep only the jittered dates that land inside.
    """
    schedule = []
    for recurrence in recurrences:
        if not recurrence.active:
            continue
        pad = timedelta(days=max(recurrence.jitter_days, 0))
        schedule.extend(
            ScheduledOccurrence(day, recurrence)
            for day in expected_occurrences(recurrence, start - pad, end + pad)
        )
    schedule.sort(key=lambda occ: occ.date)
    return schedule


def apply_jitter(schedule: Iterable[ScheduledOccurrence], rng: np.random.Generator) -> List[ScheduledOccurrence]:
    """Shift each occurrence by a uniform integer in [-jitter, +jitter] days"""
    jittered = []
    for occurrence in schedule:
        jitter = occurrence.recurrence.jitter_days
        if jitter > 0:
            shift = int(rng.integers(-jitter, jitter + 1))
            occurrence = ScheduledOccurrence(occurrence.date + timedelta(days=shift), occurrence.recurrence)
        jittered.append(occurrence)
    return jittered
