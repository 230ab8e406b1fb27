"""Sheet decoding and record ingestion for behavior logs and gradebooks."""

import csv
import logging
import math
import re
from datetime import date, datetime
from io import BytesIO, StringIO
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

import pandas as pd
from pydantic import BaseModel, Field

from class_analytics.classifier import EventClassifier, default_classifier
from class_analytics.columns import (
    GRADES_FIRST_ASSIGNMENT_COLUMN,
    ColumnMapping,
    behavior_mapper,
    cell_text,
    grades_mapper,
)
from class_analytics.models import (
    BehaviorEvent,
    Grade,
    ManualEventRequest,
    ManualGradeRequest,
    RiskSettings,
    Student,
    StudentRecord,
)
from class_analytics.risk import UNKNOWN_STUDENT_NAME, calculate_student_stats

logger = logging.getLogger(__name__)

GENERAL_SUBJECT = "כללי"
DEFAULT_ASSIGNMENT = "מטלה"
WEIGHT_KEYWORD = "משקל"

Grid = List[List[Any]]

_DATE_STRING = re.compile(r"^\s*(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})")
_HEADER_DATE = re.compile(r"\d{2}/\d{2}/\d{4}")
_HEADER_WEIGHT = re.compile(WEIGHT_KEYWORD + r"\s*(\d+)")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class SheetFormatError(ValueError):
    """The uploaded file could not be decoded into a grid."""


class SkippableRowError(ValueError):
    """A data row cannot produce a record and is dropped."""


class MalformedScoreError(SkippableRowError):
    """A gradebook cell does not hold a numeric score."""


# --- Sheet reading ---

def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if value is pd.NaT:
        return True
    return isinstance(value, str) and not value.strip()


def read_csv_text(text: str) -> Grid:
    """Split CSV text into rows of string cells, keeping blank rows."""
    return [list(row) for row in csv.reader(StringIO(text))]


def _decode_csv_bytes(file_bytes: bytes) -> str:
    # Israeli school exports are either UTF-8 (often with BOM) or Windows-1255.
    for encoding in ("utf-8-sig", "cp1255"):
        try:
            return file_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise SheetFormatError("Could not decode CSV file as UTF-8 or Windows-1255")


def read_sheet(file_bytes: bytes, filename: str) -> Grid:
    """
    Decode an uploaded file into a rectangular grid of raw cell values.

    Args:
        file_bytes: Raw bytes of the uploaded file
        filename: Original file name, used to pick the decoder

    Returns:
        Rows of cell values from the first sheet; empty cells become ""
    """
    name = (filename or "").lower()
    if name.endswith(".csv"):
        return read_csv_text(_decode_csv_bytes(file_bytes))

    if name.endswith(".xlsx"):
        try:
            df = pd.read_excel(BytesIO(file_bytes), sheet_name=0, header=None,
                               dtype=object, engine="openpyxl")
        except Exception as e:
            raise SheetFormatError(f"Could not read Excel file {filename!r}: {e}") from e
        df = df.astype(object).where(pd.notna(df), "")
        grid = df.values.tolist()
        logger.debug("Read %d rows from %s", len(grid), filename)
        return grid

    raise SheetFormatError(f"Unsupported file type: {filename!r}. Upload a .csv or .xlsx file")


# --- Cell parsing ---

def cell_at(row: Sequence[Any], idx: int) -> Any:
    if row is None or idx < 0 or idx >= len(row):
        return None
    return row[idx]


def text_at(row: Sequence[Any], idx: int) -> str:
    value = cell_at(row, idx)
    return "" if _is_missing(value) else cell_text(value)


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a native date or a day-first delimited string (DD/MM/YYYY, DD-MM-YYYY, DD.MM.YYYY).

    Returns:
        The calendar date, or None when the value is not a recognizable date
    """
    if _is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    match = _DATE_STRING.match(value)
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def clean_student_id(value: Any) -> str:
    """Student ids read from Excel may come back as floats (123456789.0)."""
    if _is_missing(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def normalize_subject(value: Any) -> str:
    """An empty or purely numeric subject cell means the column held something else."""
    text = "" if _is_missing(value) else cell_text(value)
    if not text or re.fullmatch(r"[\d.\s]+", text):
        return GENERAL_SUBJECT
    return text


def parse_lesson_number(value: Any) -> int:
    if _is_missing(value):
        return 0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return max(int(value), 0)
    match = _LEADING_INT.match(str(value))
    return max(int(match.group(1)), 0) if match else 0


def parse_score(value: Any) -> float:
    """Parse a gradebook cell, raising MalformedScoreError for blanks and text."""
    if _is_missing(value):
        raise MalformedScoreError("blank score")
    if isinstance(value, bool):
        raise MalformedScoreError(f"not a score: {value!r}")
    if isinstance(value, (int, float)):
        score = float(value)
    else:
        try:
            score = float(str(value).strip())
        except ValueError as e:
            raise MalformedScoreError(f"not a score: {value!r}") from e
    if not math.isfinite(score):
        raise MalformedScoreError(f"non-finite score: {value!r}")
    return score


class AssignmentHeader(BaseModel):
    subject: str = GENERAL_SUBJECT
    teacher: str = ""
    assignment: str = DEFAULT_ASSIGNMENT
    date: date
    weight: float = 1.0


def parse_assignment_header(header: str, today: Optional[date] = None) -> AssignmentHeader:
    """
    Parse a gradebook assignment column header.

    Headers look like "<subject> <teacher...> [<code>] <details> <DD/MM/YYYY> משקל <N>".
    The subject is the first word, the teacher the remaining words before
    "[", and the assignment label is whatever follows the bracket once the
    date and weight tokens are removed.

    Args:
        header: Raw header text
        today: Date to use when the header carries none

    Returns:
        Parsed assignment metadata
    """
    date_match = _HEADER_DATE.search(header)
    weight_match = _HEADER_WEIGHT.search(header)

    head, _, bracketed = header.partition("[")
    words = head.split()
    subject = normalize_subject(words[0]) if words else GENERAL_SUBJECT
    teacher = " ".join(words[1:])

    assignment = ""
    if bracketed:
        inside, closed, after = bracketed.partition("]")
        details = after if closed and after.strip() else inside
        details = _HEADER_DATE.sub("", details)
        details = re.sub(WEIGHT_KEYWORD + r"\s*\d+", "", details)
        assignment = " ".join(details.split())

    header_date = parse_date(date_match.group(0)) if date_match else None
    return AssignmentHeader(
        subject=subject,
        teacher=teacher,
        assignment=assignment or DEFAULT_ASSIGNMENT,
        date=header_date or today or date.today(),
        weight=int(weight_match.group(1)) if weight_match else 1,
    )


# --- Row ingestion ---

def _behavior_event_from_row(row: Sequence[Any], row_idx: int, mapping: ColumnMapping,
                             classifier: EventClassifier) -> BehaviorEvent:
    student_id = clean_student_id(cell_at(row, mapping["student_id"]))
    if not student_id:
        raise SkippableRowError("missing student id")

    event_date = parse_date(cell_at(row, mapping["date"]))
    if event_date is None:
        raise SkippableRowError(f"unparseable date {cell_at(row, mapping['date'])!r}")

    event_type = text_at(row, mapping["event_type"])
    justification = text_at(row, mapping["justification"])

    return BehaviorEvent(
        id=f"evt-{row_idx}",
        student_id=student_id,
        student_name=text_at(row, mapping["student_name"]),
        date=event_date,
        type=event_type,
        category=classifier.classify(event_type, justification),
        teacher=text_at(row, mapping["teacher"]),
        subject=normalize_subject(cell_at(row, mapping["subject"])),
        lesson_number=parse_lesson_number(cell_at(row, mapping["lesson_number"])),
        justification=justification,
        comment=text_at(row, mapping["comment"]),
    )


def parse_behavior_grid(grid: Grid, classifier: Optional[EventClassifier] = None
                        ) -> Tuple[List[BehaviorEvent], ColumnMapping, int]:
    """
    Turn a raw behavior-log grid into events.

    Args:
        grid: Raw rows of the behavior sheet
        classifier: Event classifier (default Hebrew vocabulary if omitted)

    Returns:
        Tuple of (events, column_mapping, skipped_row_count)
    """
    classifier = classifier or default_classifier
    mapping = behavior_mapper().map(grid)
    events: List[BehaviorEvent] = []
    skipped = 0

    for row_idx in range(mapping.header_row + 1, len(grid)):
        row = grid[row_idx]
        if not row or all(_is_missing(cell) for cell in row):
            continue
        try:
            events.append(_behavior_event_from_row(row, row_idx, mapping, classifier))
        except SkippableRowError as e:
            skipped += 1
            logger.debug("Skipping behavior row %d: %s", row_idx, e)

    return events, mapping, skipped


def parse_grades_grid(grid: Grid, today: Optional[date] = None
                      ) -> Tuple[List[Grade], ColumnMapping, int]:
    """
    Turn a raw gradebook grid into grades, one per numeric assignment cell.

    Args:
        grid: Raw rows of the grades sheet
        today: Date for assignment columns whose header has no date

    Returns:
        Tuple of (grades, column_mapping, dropped_cell_count)
    """
    mapping = grades_mapper().map(grid)
    header = grid[mapping.header_row] if mapping.header_row < len(grid) else []

    assignments: Dict[int, AssignmentHeader] = {}
    for col in range(GRADES_FIRST_ASSIGNMENT_COLUMN, len(header)):
        raw = header[col]
        if isinstance(raw, str) and raw.strip():
            assignments[col] = parse_assignment_header(raw, today)

    grades: List[Grade] = []
    dropped = 0
    for row_idx in range(mapping.header_row + 1, len(grid)):
        row = grid[row_idx]
        if not row or len(row) < 2:
            continue
        student_id = clean_student_id(cell_at(row, mapping["student_id"]))
        if not student_id:
            logger.debug("Skipping grades row %d: missing student id", row_idx)
            continue
        student_name = text_at(row, mapping["student_name"])

        for col, meta in assignments.items():
            try:
                score = parse_score(cell_at(row, col))
            except MalformedScoreError as e:
                if not _is_missing(cell_at(row, col)):
                    dropped += 1
                    logger.debug("Dropping grade at row %d col %d: %s", row_idx, col, e)
                continue
            grades.append(Grade(
                student_id=student_id,
                student_name=student_name,
                score=score,
                **meta.model_dump(),
            ))

    return grades, mapping, dropped


def build_manual_event(student: StudentRecord, request: ManualEventRequest,
                       classifier: Optional[EventClassifier] = None) -> BehaviorEvent:
    """Build a hand-entered event, classified like an imported one."""
    classifier = classifier or default_classifier
    return BehaviorEvent(
        id=f"manual-{uuid4().hex[:8]}",
        student_id=student.id,
        student_name=student.name,
        date=request.date,
        type=request.type,
        category=classifier.classify(request.type, request.justification),
        teacher=request.teacher,
        subject=normalize_subject(request.subject),
        lesson_number=request.lesson_number,
        justification=request.justification,
        comment=request.comment,
    )


def build_manual_grade(student: StudentRecord, request: ManualGradeRequest) -> Grade:
    return Grade(
        student_id=student.id,
        student_name=student.name,
        subject=normalize_subject(request.subject),
        teacher=request.teacher,
        assignment=request.assignment,
        date=request.date,
        score=request.score,
        weight=request.weight,
    )


def merge_records(events: Sequence[BehaviorEvent], grades: Sequence[Grade]) -> List[StudentRecord]:
    """
    Group events and grades by student id.

    Every id seen in either source becomes one record; the display name is
    taken from the events first, then from the grades.
    """
    student_ids = list(dict.fromkeys([e.student_id for e in events] + [g.student_id for g in grades]))

    events_by_id: Dict[str, List[BehaviorEvent]] = {sid: [] for sid in student_ids}
    grades_by_id: Dict[str, List[Grade]] = {sid: [] for sid in student_ids}
    for event in events:
        events_by_id[event.student_id].append(event)
    for grade in grades:
        grades_by_id[grade.student_id].append(grade)

    records = []
    for sid in student_ids:
        s_events = sorted(events_by_id[sid], key=lambda e: e.date)
        s_grades = sorted(grades_by_id[sid], key=lambda g: g.date)
        name = next(
            (item.student_name for item in [*s_events, *s_grades] if item.student_name),
            UNKNOWN_STUDENT_NAME,
        )
        records.append(StudentRecord(id=sid, name=name, grades=s_grades, behavior_events=s_events))
    return records


class IngestionResult(BaseModel):
    students: List[Student]
    behavior_mapping: ColumnMapping
    grades_mapping: ColumnMapping
    skipped_behavior_rows: int = 0
    dropped_grade_cells: int = 0
    warnings: Dict[str, List[str]] = Field(default_factory=dict)


def ingest_with_report(behavior_grid: Grid, grades_grid: Grid, settings: RiskSettings,
                       classifier: Optional[EventClassifier] = None,
                       today: Optional[date] = None) -> IngestionResult:
    """
    Build per-student statistics from the two exported sheets.

    Args:
        behavior_grid: Raw rows of the behavior log
        grades_grid: Raw rows of the gradebook
        settings: Resolved risk settings for this class
        classifier: Event classifier (default Hebrew vocabulary if omitted)
        today: Date for assignment columns whose header has no date

    Returns:
        Students plus the column mappings and drop counts behind them
    """
    events, behavior_mapping, skipped = parse_behavior_grid(behavior_grid, classifier)
    grades, grades_mapping, dropped = parse_grades_grid(grades_grid, today)

    students = [calculate_student_stats(r, settings) for r in merge_records(events, grades)]
    logger.info(
        "Ingested %d behavior events and %d grades into %d students "
        "(%d behavior rows skipped, %d grade cells dropped)",
        len(events), len(grades), len(students), skipped, dropped,
    )

    return IngestionResult(
        students=students,
        behavior_mapping=behavior_mapping,
        grades_mapping=grades_mapping,
        skipped_behavior_rows=skipped,
        dropped_grade_cells=dropped,
        warnings={
            "behavior": [str(w) for w in behavior_mapping.warnings],
            "grades": [str(w) for w in grades_mapping.warnings],
        },
    )


def ingest(behavior_grid: Grid, grades_grid: Grid, settings: RiskSettings,
           classifier: Optional[EventClassifier] = None,
           today: Optional[date] = None) -> List[Student]:
    """Ingest both sheets and return the computed students."""
    return ingest_with_report(behavior_grid, grades_grid, settings, classifier, today).students
