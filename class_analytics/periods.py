"""Statistics for a date sub-range of a student's records."""

from datetime import date, timedelta
from typing import List, Optional, Sequence, Tuple

from class_analytics.models import (
    BehaviorEvent,
    Grade,
    PeriodComparison,
    PeriodDefinition,
    RiskSettings,
    Student,
    StudentRecord,
)
from class_analytics.risk import calculate_student_stats


def filter_by_period(grades: Sequence[Grade], events: Sequence[BehaviorEvent],
                     start: Optional[date], end: Optional[date]
                     ) -> Tuple[List[Grade], List[BehaviorEvent]]:
    """Keep records dated within [start, end]; a missing bound is open."""
    def inside(d: date) -> bool:
        return (start is None or d >= start) and (end is None or d <= end)

    return [g for g in grades if inside(g.date)], [e for e in events if inside(e.date)]


def record_span(record: StudentRecord) -> Optional[Tuple[date, date]]:
    """Earliest and latest date across a student's grades and events."""
    dates = [g.date for g in record.grades] + [e.date for e in record.behavior_events]
    if not dates:
        return None
    return min(dates), max(dates)


def project_period(record: StudentRecord, start: Optional[date], end: Optional[date],
                   settings: RiskSettings) -> Student:
    """
    Recompute a student's statistics over a date range.

    Args:
        record: The student's full records
        start: First day included (None for no lower bound)
        end: Last day included (None for no upper bound)
        settings: Resolved risk settings

    Returns:
        Student whose records and derived fields cover only the range
    """
    grades, events = filter_by_period(record.grades, record.behavior_events, start, end)
    sliced = StudentRecord(id=record.id, name=record.name, grades=grades, behavior_events=events)
    return calculate_student_stats(sliced, settings)


def previous_window(start: date, end: date) -> Tuple[date, date]:
    """The equal-length window that ends the day before `start`."""
    length = end - start
    previous_end = start - timedelta(days=1)
    return previous_end - length, previous_end


def compare_periods(record: StudentRecord, current: PeriodDefinition,
                    previous: Optional[PeriodDefinition], settings: RiskSettings) -> PeriodComparison:
    """
    Compare a student's statistics in two periods.

    When `previous` is omitted the equal-length window right before
    `current` is used.
    """
    if previous is None:
        prev_start, prev_end = previous_window(current.start, current.end)
        previous = PeriodDefinition(name="תקופה קודמת", start=prev_start, end=prev_end)

    now = project_period(record, current.start, current.end, settings)
    before = project_period(record, previous.start, previous.end, settings)

    return PeriodComparison(
        current_period=current,
        previous_period=previous,
        current=now,
        previous=before,
        average_delta=round(now.average_score - before.average_score, 1),
        risk_score_delta=round(now.risk_score - before.risk_score, 1),
    )
