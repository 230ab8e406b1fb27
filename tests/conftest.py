"""Shared fixtures for the class analytics tests."""

from datetime import date, timedelta

import pytest

from class_analytics.models import BehaviorEvent, EventCategory, Grade, RiskSettings
from class_analytics.parsers import ingest, read_csv_text
from class_analytics.sample_data import generate_sample_data

BASE_DATE = date(2024, 1, 1)


@pytest.fixture
def settings():
    """Default risk settings (55 / 5 / 4, tiers at 4 and 7)."""
    return RiskSettings()


@pytest.fixture
def make_grade():
    """Factory for grades; `day` is an offset from BASE_DATE."""
    def _make(score, day=0, weight=1, subject="מתמטיקה", teacher="רבקה כהן", student_id="1"):
        return Grade(
            student_id=student_id,
            student_name="Test Student",
            subject=subject,
            teacher=teacher,
            assignment="בחן",
            date=BASE_DATE + timedelta(days=day),
            score=score,
            weight=weight,
        )
    return _make


@pytest.fixture
def make_event():
    """Factory for behavior events; `day` is an offset from BASE_DATE."""
    counter = {"n": 0}

    def _make(category, day=0, event_type="אירוע", lesson_number=1, teacher="דוד לוי",
              subject="היסטוריה", student_id="1"):
        counter["n"] += 1
        return BehaviorEvent(
            id=f"evt-{counter['n']}",
            student_id=student_id,
            student_name="Test Student",
            date=BASE_DATE + timedelta(days=day),
            type=event_type,
            category=category,
            teacher=teacher,
            subject=subject,
            lesson_number=lesson_number,
        )
    return _make


@pytest.fixture
def sample_grids():
    behavior_csv, grades_csv = generate_sample_data()
    return read_csv_text(behavior_csv), read_csv_text(grades_csv)


@pytest.fixture
def sample_students(sample_grids, settings):
    behavior_grid, grades_grid = sample_grids
    return {s.name: s for s in ingest(behavior_grid, grades_grid, settings)}
