"""Class-level views built on top of computed students."""

from collections import Counter
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel

from class_analytics.models import (
    BehaviorEvent,
    ClassSummary,
    EventCategory,
    RiskLevel,
    Student,
    Trend,
)

GENERAL_AVERAGE_COLUMN = "ממוצע כללי"
GENERAL_SUBJECT = "כללי"
NO_TEACHER = "ללא מורה"
UNSPECIFIED_SUBJECT = "לא צוין"
OTHER_EVENT_TYPE = "אחר"

SCHOOL_DAYS = ["ראשון", "שני", "שלישי", "רביעי", "חמישי", "שישי"]  # Sunday .. Friday
DEFAULT_MIN_LESSON = 0
DEFAULT_MAX_LESSON = 9

HEATMAP_MODES = ("all", "absences", "other")


def class_summary(students: Sequence[Student]) -> ClassSummary:
    """Counts per risk tier and class-wide totals."""
    levels = Counter(s.risk_level for s in students)
    graded = [s.average_score for s in students if s.grades]
    return ClassSummary(
        total=len(students),
        high=levels[RiskLevel.HIGH],
        medium=levels[RiskLevel.MEDIUM],
        low=levels[RiskLevel.LOW],
        class_average=round(float(np.mean(graded)), 1) if graded else 0.0,
        negative_events=sum(s.negative_count for s in students),
        positive_events=sum(s.positive_count for s in students),
        correlations=sum(len(s.correlations) for s in students),
    )


def filter_students(
    students: Sequence[Student],
    risk_level: Optional[RiskLevel] = None,
    grade_trend: Optional[Trend] = None,
    behavior_trend: Optional[Trend] = None,
    search: Optional[str] = None,
) -> List[Student]:
    """Dashboard filters; every given criterion must match."""
    needle = (search or "").strip()
    result = []
    for s in students:
        if risk_level is not None and s.risk_level != risk_level:
            continue
        if grade_trend is not None and s.grade_trend != grade_trend:
            continue
        if behavior_trend is not None and s.behavior_trend != behavior_trend:
            continue
        if needle and needle not in s.name and needle not in s.id:
            continue
        result.append(s)
    return result


def subject_matrix(students: Sequence[Student]) -> pd.DataFrame:
    """
    Student x subject table of average scores.

    The first column holds each student's weighted average; the remaining
    columns hold the plain mean per subject, NaN where the student has no
    grade in that subject.

    Args:
        students: Computed students

    Returns:
        DataFrame indexed by student id with a "name" column
    """
    rows = [
        {
            "student_id": s.id,
            "subject": (g.subject or "").strip() or GENERAL_SUBJECT,
            "score": g.score,
        }
        for s in students
        for g in s.grades
    ]
    index = pd.Index([s.id for s in students], name="student_id")
    base = pd.DataFrame({
        "name": [s.name for s in students],
        GENERAL_AVERAGE_COLUMN: [s.average_score for s in students],
    }, index=index)

    if not rows:
        return base

    grades_df = pd.DataFrame(rows)
    by_subject = grades_df.pivot_table(
        index="student_id", columns="subject", values="score", aggfunc="mean"
    ).round(1)
    by_subject = by_subject[sorted(by_subject.columns)]
    by_subject.columns.name = None
    return base.join(by_subject)


class TeacherGradeStats(BaseModel):
    teacher: str
    average_grade: float
    grade_count: int


class TeacherBehaviorStats(BaseModel):
    teacher: str
    negative_count: int
    positive_count: int
    total_events: int


def _teacher_label(teacher: str) -> str:
    return (teacher or "").strip() or NO_TEACHER


def teacher_grade_stats(students: Sequence[Student]) -> List[TeacherGradeStats]:
    """Plain grade average per teacher, highest first."""
    rows = [{"teacher": _teacher_label(g.teacher), "score": g.score} for s in students for g in s.grades]
    if not rows:
        return []
    grouped = pd.DataFrame(rows).groupby("teacher")["score"].agg(["mean", "count"])
    stats = [
        TeacherGradeStats(teacher=teacher, average_grade=round(float(row["mean"]), 1),
                          grade_count=int(row["count"]))
        for teacher, row in grouped.iterrows()
    ]
    return sorted(stats, key=lambda t: -t.average_grade)


def teacher_behavior_stats(students: Sequence[Student]) -> List[TeacherBehaviorStats]:
    """Negative and positive event counts per teacher, busiest first."""
    counts: Dict[str, Counter] = {}
    for s in students:
        for e in s.behavior_events:
            counts.setdefault(_teacher_label(e.teacher), Counter())[e.category] += 1

    stats = []
    for teacher, counter in counts.items():
        negative = counter[EventCategory.NEGATIVE]
        positive = counter[EventCategory.POSITIVE]
        if negative + positive == 0:
            continue
        stats.append(TeacherBehaviorStats(
            teacher=teacher,
            negative_count=negative,
            positive_count=positive,
            total_events=negative + positive,
        ))
    return sorted(stats, key=lambda t: -t.total_events)


class HeatmapCell(BaseModel):
    day: int
    day_name: str
    lesson_number: int
    count: int
    top_issue: str = ""
    top_subject: str = ""


class Heatmap(BaseModel):
    mode: str
    min_lesson: int
    max_lesson: int
    max_count: int
    counts: List[List[int]]
    cells: List[HeatmapCell]


def _school_day(event: BehaviorEvent) -> int:
    # date.weekday() is Monday=0; the school week starts on Sunday.
    return (event.date.weekday() + 1) % 7


def negative_events_for_mode(events: Sequence[BehaviorEvent], mode: str) -> List[BehaviorEvent]:
    if mode not in HEATMAP_MODES:
        raise ValueError(f"Unknown heatmap mode {mode!r}, expected one of {HEATMAP_MODES}")
    negatives = [e for e in events if e.category == EventCategory.NEGATIVE]
    if mode == "absences":
        return [e for e in negatives if e.is_absence]
    if mode == "other":
        return [e for e in negatives if not e.is_absence]
    return negatives


def negative_event_heatmap(students: Sequence[Student], mode: str = "all") -> Heatmap:
    """
    Negative events counted by school day and lesson number.

    Saturday events are ignored. Lesson numbers are clamped to the range
    observed in the data.

    Args:
        students: Computed students
        mode: "all", "absences" or "other" (negative events that are not absences)

    Returns:
        Day x lesson count grid plus per-cell details
    """
    events = [
        e for s in students
        for e in negative_events_for_mode(s.behavior_events, mode)
        if _school_day(e) < len(SCHOOL_DAYS)
    ]
    lessons = [e.lesson_number for e in events]
    min_lesson = min(lessons) if lessons else DEFAULT_MIN_LESSON
    max_lesson = max(lessons) if lessons else DEFAULT_MAX_LESSON

    grid = np.zeros((len(SCHOOL_DAYS), max_lesson - min_lesson + 1), dtype=int)
    issues: Dict[tuple, Counter] = {}
    subjects: Dict[tuple, Counter] = {}
    for e in events:
        day = _school_day(e)
        lesson = int(np.clip(e.lesson_number, min_lesson, max_lesson))
        grid[day, lesson - min_lesson] += 1
        issues.setdefault((day, lesson), Counter())[(e.type or "").strip() or OTHER_EVENT_TYPE] += 1
        subjects.setdefault((day, lesson), Counter())[(e.subject or "").strip() or UNSPECIFIED_SUBJECT] += 1

    cells = [
        HeatmapCell(
            day=day,
            day_name=SCHOOL_DAYS[day],
            lesson_number=lesson,
            count=int(grid[day, lesson - min_lesson]),
            top_issue=issues[(day, lesson)].most_common(1)[0][0],
            top_subject=subjects[(day, lesson)].most_common(1)[0][0],
        )
        for day, lesson in sorted(issues)
    ]

    return Heatmap(
        mode=mode,
        min_lesson=min_lesson,
        max_lesson=max_lesson,
        max_count=int(grid.max()) if grid.size else 0,
        counts=grid.tolist(),
        cells=cells,
    )


def get_display_name(real_name: str, index: int, anonymous: bool) -> str:
    """Real name, or "תלמיד N" in anonymous mode."""
    if not anonymous:
        return real_name
    return f"תלמיד {index + 1}"


def get_initials(real_name: str, anonymous: bool) -> str:
    if not anonymous:
        return real_name
    parts = real_name.split()
    if len(parts) >= 2:
        return parts[0][0] + parts[-1][0]
    return real_name[:2] if real_name else "?"
