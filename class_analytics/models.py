"""Data models for the class analytics engine."""

from datetime import date
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventCategory(str, Enum):
    """Classified category of a behavior event."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


ABSENCE_KEYWORD = "חיסור"


class Grade(BaseModel):
    """One scored assessment."""
    model_config = ConfigDict(frozen=True)

    student_id: str
    student_name: str = ""
    subject: str = "כללי"
    teacher: str = ""
    assignment: str = "מטלה"
    date: date
    score: float
    weight: float = 1.0


class BehaviorEvent(BaseModel):
    """One logged disciplinary or commendation entry."""
    model_config = ConfigDict(frozen=True)

    id: str
    student_id: str
    student_name: str = ""
    date: date
    type: str = ""
    category: EventCategory = EventCategory.NEUTRAL
    teacher: str = ""
    subject: str = "כללי"
    lesson_number: int = Field(default=0, ge=0)
    justification: str = ""
    comment: str = ""

    @property
    def is_absence(self) -> bool:
        return ABSENCE_KEYWORD in (self.type or "").strip()

    @property
    def is_negative_absence(self) -> bool:
        return self.category == EventCategory.NEGATIVE and self.is_absence

    @property
    def is_other_negative(self) -> bool:
        return self.category == EventCategory.NEGATIVE and not self.is_absence


class Correlation(BaseModel):
    """A failing grade with the negative events logged around it."""
    date: date
    grade: Grade
    nearby_events: List[BehaviorEvent]
    description: str


class StudentRecord(BaseModel):
    """Raw per-student records, before statistics are derived."""
    id: str
    name: str
    grades: List[Grade] = Field(default_factory=list)
    behavior_events: List[BehaviorEvent] = Field(default_factory=list)


class Student(StudentRecord):
    """Student aggregate with derived statistics."""
    average_score: float = 0.0
    negative_count: int = 0
    positive_count: int = 0
    grade_trend: Trend = Trend.STABLE
    behavior_trend: Trend = Trend.STABLE
    risk_level: RiskLevel = RiskLevel.LOW
    risk_score: float = 10.0
    correlations: List[Correlation] = Field(default_factory=list)

    def as_record(self) -> StudentRecord:
        """Drop derived fields, keeping only what statistics are computed from."""
        return StudentRecord(
            id=self.id,
            name=self.name,
            grades=list(self.grades),
            behavior_events=list(self.behavior_events),
        )


class RiskWeights(BaseModel):
    """Relative weights per signal. Carried in settings, not used by the score formula."""
    grades: float = 0.5
    absences: float = 0.25
    negative_events: float = 0.25


class RiskSettings(BaseModel):
    """Thresholds that drive risk scoring."""
    min_grade_threshold: float = 55
    max_negative_behaviors: int = 5
    attendance_threshold: int = 4
    risk_score_high_threshold: float = 4
    risk_score_medium_threshold: float = 7
    weights: RiskWeights = Field(default_factory=RiskWeights)
    penalty_per_absence_above_threshold: Optional[float] = None


class PeriodDefinition(BaseModel):
    """Named date range used for period comparisons."""
    name: str
    start: date
    end: date


class PeriodComparison(BaseModel):
    current_period: PeriodDefinition
    previous_period: PeriodDefinition
    current: Student
    previous: Student
    average_delta: float
    risk_score_delta: float


class ClassSummary(BaseModel):
    total: int
    high: int
    medium: int
    low: int
    class_average: float
    negative_events: int
    positive_events: int
    correlations: int


class ManualGradeRequest(BaseModel):
    subject: str = "כללי"
    teacher: str = ""
    assignment: str = "מטלה"
    date: date
    score: float
    weight: float = 1.0


class ManualEventRequest(BaseModel):
    date: date
    type: str
    teacher: str = ""
    subject: str = ""
    lesson_number: int = Field(default=0, ge=0)
    justification: str = ""
    comment: str = ""


class UploadResponse(BaseModel):
    """Response from file upload endpoint."""
    success: bool
    message: str
    class_id: Optional[str] = None
    students: List[Student]
    summary: ClassSummary
    mapping_warnings: Dict[str, List[str]] = Field(default_factory=dict)
