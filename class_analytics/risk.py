"""Risk scoring: weighted averages, trends, composite 1-10 score and correlations."""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from class_analytics.models import (
    BehaviorEvent,
    Correlation,
    EventCategory,
    Grade,
    RiskLevel,
    RiskSettings,
    Student,
    StudentRecord,
    Trend,
)

logger = logging.getLogger(__name__)

GRADE_TREND_WINDOW = 6
GRADE_TREND_DELTA = 3
STEEP_GRADE_DECLINE = -10

BEHAVIOR_TREND_WINDOW = 12
BEHAVIOR_TREND_DELTA = 2
BEHAVIOR_POINTS = {
    EventCategory.POSITIVE: 1,
    EventCategory.NEGATIVE: -2,
    EventCategory.NEUTRAL: 0,
}

FAILING_SCORE = 70
CORRELATION_WINDOW_DAYS = 4
HEAVY_NEGATIVE_COUNT = 15

MAX_RISK_SCORE = 10.0
MIN_RISK_SCORE = 1.0

UNKNOWN_STUDENT_NAME = "תלמיד לא ידוע"


def weighted_average(grades: Sequence[Grade]) -> float:
    """
    Weighted mean of scores.

    Falls back to the plain mean when every weight is zero, and to 0 when
    there are no grades.
    """
    if not grades:
        return 0.0
    total_weight = sum(g.weight for g in grades)
    if total_weight > 0:
        return sum(g.score * g.weight for g in grades) / total_weight
    return sum(g.score for g in grades) / len(grades)


def _split_halves(items: Sequence) -> Tuple[Sequence, Sequence]:
    mid = len(items) // 2
    return items[:mid], items[mid:]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def grade_trend(grades: Sequence[Grade]) -> Tuple[Trend, float]:
    """
    Compare the two halves of the most recent grades.

    Args:
        grades: Grades in chronological order

    Returns:
        Tuple of (trend, delta) where delta is later-half mean minus earlier-half mean
    """
    if len(grades) < 2:
        return Trend.STABLE, 0.0

    earlier, later = _split_halves(list(grades)[-GRADE_TREND_WINDOW:])
    delta = _mean([g.score for g in later]) - _mean([g.score for g in earlier])

    if delta > GRADE_TREND_DELTA:
        return Trend.IMPROVING, delta
    if delta < -GRADE_TREND_DELTA:
        return Trend.DECLINING, delta
    return Trend.STABLE, delta


def behavior_trend(events: Sequence[BehaviorEvent]) -> Tuple[Trend, int]:
    """
    Compare the two halves of the most recent behavior events.

    Args:
        events: Events in chronological order

    Returns:
        Tuple of (trend, recent_behavior_score) where the score is the
        point sum of the later half
    """
    if len(events) < 2:
        return Trend.STABLE, 0

    earlier, later = _split_halves(list(events)[-BEHAVIOR_TREND_WINDOW:])
    score_earlier = sum(BEHAVIOR_POINTS[e.category] for e in earlier)
    score_later = sum(BEHAVIOR_POINTS[e.category] for e in later)
    delta = score_later - score_earlier

    # Many recent negatives: declining unless the window actually got better.
    if score_later <= -6 and delta <= 0:
        return Trend.DECLINING, score_later
    if delta >= BEHAVIOR_TREND_DELTA:
        return Trend.IMPROVING, score_later
    if delta <= -BEHAVIOR_TREND_DELTA:
        return Trend.DECLINING, score_later
    return Trend.STABLE, score_later


def count_absences(events: Iterable[BehaviorEvent]) -> int:
    """Unexcused absences only; excused ones are classified neutral."""
    return sum(1 for e in events if e.is_negative_absence)


def compute_risk_score(
    average: float,
    g_trend: Trend,
    g_delta: float,
    recent_behavior_score: int,
    b_trend: Trend,
    negative_count: int,
    absence_count: int,
    settings: RiskSettings,
) -> float:
    """
    Composite score from 10 (safest) down to 1, built from fixed deductions.

    `settings.weights` and `settings.penalty_per_absence_above_threshold`
    are not part of this formula.
    """
    score = MAX_RISK_SCORE
    threshold = settings.min_grade_threshold

    # A student without grades has average 0 and takes the full deduction.
    if average < threshold:
        score -= 4
    elif average < threshold + 10:
        score -= 2
    elif average < threshold + 20:
        score -= 1

    if g_trend == Trend.DECLINING:
        score -= 2 if g_delta <= STEEP_GRADE_DECLINE else 1
    elif g_trend == Trend.IMPROVING:
        score += 0.5

    if recent_behavior_score <= -12:
        score -= 4
    elif recent_behavior_score <= -6:
        score -= 2
    elif recent_behavior_score < 0:
        score -= 1

    if b_trend == Trend.DECLINING:
        score -= 1
    elif b_trend == Trend.IMPROVING:
        score += 0.3

    if negative_count > HEAVY_NEGATIVE_COUNT:
        score -= 2
    elif negative_count > settings.max_negative_behaviors:
        score -= 1

    if absence_count >= settings.attendance_threshold:
        score -= 2
    elif absence_count >= max(settings.attendance_threshold - 1, 1):
        score -= 0.5

    score = max(MIN_RISK_SCORE, min(MAX_RISK_SCORE, score))
    return round(score, 1)


def get_risk_level(risk_score: float, settings: RiskSettings) -> RiskLevel:
    """
    Categorize a 1-10 risk score into a tier.

    Args:
        risk_score: Composite score (10 = lowest risk)
        settings: Supplies the high/medium cut points

    Returns:
        Risk tier
    """
    if risk_score <= settings.risk_score_high_threshold:
        return RiskLevel.HIGH
    if risk_score <= settings.risk_score_medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _format_score(score: float) -> str:
    return f"{score:g}"


def find_correlations(grades: Sequence[Grade], events: Sequence[BehaviorEvent]) -> List[Correlation]:
    """Pair each failing grade with the negative events logged within the window."""
    negatives = [e for e in events if e.category == EventCategory.NEGATIVE]
    correlations = []
    for grade in grades:
        if grade.score >= FAILING_SCORE:
            continue
        nearby = [
            e for e in negatives
            if abs((grade.date - e.date).days) <= CORRELATION_WINDOW_DAYS
        ]
        if nearby:
            correlations.append(Correlation(
                date=grade.date,
                grade=grade,
                nearby_events=nearby,
                description=(
                    f"נכשל ב{grade.subject} ({_format_score(grade.score)}) "
                    f"בסמיכות ל-{len(nearby)} אירועי משמעת."
                ),
            ))
    return correlations


def _chronological(items: Iterable) -> list:
    # sorted() is stable, so same-day records keep their ingestion order.
    return sorted(items, key=lambda item: item.date)


def calculate_student_stats(record: StudentRecord, settings: Optional[RiskSettings]) -> Student:
    """
    Derive every statistic of a student from its raw grades and events.

    Derived fields already present on `record` are ignored, so recomputing
    a computed Student gives the same result.

    Args:
        record: Student id, name, grades and behavior events
        settings: Fully resolved risk settings

    Returns:
        A new Student with sorted records and derived fields
    """
    if settings is None:
        raise ValueError("Risk settings are required to compute student statistics")

    grades = _chronological(record.grades)
    events = _chronological(record.behavior_events)

    average = weighted_average(grades)
    negative_count = sum(1 for e in events if e.category == EventCategory.NEGATIVE)
    positive_count = sum(1 for e in events if e.category == EventCategory.POSITIVE)

    g_trend, g_delta = grade_trend(grades)
    b_trend, recent_behavior_score = behavior_trend(events)

    risk_score = compute_risk_score(
        average=average,
        g_trend=g_trend,
        g_delta=g_delta,
        recent_behavior_score=recent_behavior_score,
        b_trend=b_trend,
        negative_count=negative_count,
        absence_count=count_absences(events),
        settings=settings,
    )

    return Student(
        id=record.id,
        name=record.name,
        grades=grades,
        behavior_events=events,
        average_score=round(average, 1),
        negative_count=negative_count,
        positive_count=positive_count,
        grade_trend=g_trend,
        behavior_trend=b_trend,
        risk_level=get_risk_level(risk_score, settings),
        risk_score=risk_score,
        correlations=find_correlations(grades, events),
    )


def compute_stats_from_data(grades: Sequence[Grade], events: Sequence[BehaviorEvent],
                            settings: RiskSettings) -> Student:
    """Statistics for a bare set of records with no student identity attached."""
    record = StudentRecord(id="", name="", grades=list(grades), behavior_events=list(events))
    return calculate_student_stats(record, settings)


def add_grade(student: StudentRecord, grade: Grade, settings: RiskSettings) -> Student:
    """Return the student recomputed with one more grade."""
    record = StudentRecord(
        id=student.id,
        name=student.name,
        grades=[*student.grades, grade],
        behavior_events=list(student.behavior_events),
    )
    return calculate_student_stats(record, settings)


def add_behavior_event(student: StudentRecord, event: BehaviorEvent, settings: RiskSettings) -> Student:
    """Return the student recomputed with one more behavior event."""
    record = StudentRecord(
        id=student.id,
        name=student.name,
        grades=list(student.grades),
        behavior_events=[*student.behavior_events, event],
    )
    return calculate_student_stats(record, settings)


def recalculate_students(students: Iterable[StudentRecord], settings: RiskSettings) -> List[Student]:
    """Rerun the engine over a whole class, e.g. after a settings change."""
    recalculated = [calculate_student_stats(s, settings) for s in students]
    logger.info("Recalculated statistics for %d students", len(recalculated))
    return recalculated
