"""FastAPI application for the class analytics engine."""

import csv
import logging
import traceback
from datetime import date
from io import StringIO
from typing import Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from class_analytics import config
from class_analytics.analytics import (
    HEATMAP_MODES,
    class_summary,
    filter_students,
    negative_event_heatmap,
    subject_matrix,
    teacher_behavior_stats,
    teacher_grade_stats,
)
from class_analytics.models import (
    ManualEventRequest,
    ManualGradeRequest,
    PeriodDefinition,
    RiskLevel,
    RiskSettings,
    Student,
    Trend,
    UploadResponse,
)
from class_analytics.parsers import (
    Grid,
    IngestionResult,
    build_manual_event,
    build_manual_grade,
    ingest_with_report,
    read_csv_text,
    read_sheet,
)
from class_analytics.periods import compare_periods, project_period
from class_analytics.risk import add_behavior_event, add_grade, recalculate_students
from class_analytics.sample_data import generate_sample_data

logger = logging.getLogger(__name__)

NO_STUDENTS_MESSAGE = "לא הצלחנו לעבד את הקבצים. ודאו שהועלו קובץ משמעת וקובץ ציונים תקינים."

app = FastAPI(title="Class Analytics", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s", request.url.path)
    detail = str(exc)
    if config.DEBUG:
        detail = f"{exc}\n\n{traceback.format_exc()}"
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {detail}", "type": type(exc).__name__},
    )


def jsonable_errors(exc: RequestValidationError) -> List[Dict]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]


class ClassState:
    """In-memory state of the most recently ingested class."""

    def __init__(self):
        self.global_settings: RiskSettings = config.DEFAULT_RISK_SETTINGS
        self.per_class_settings: Dict[str, RiskSettings] = {}
        self.class_id: Optional[str] = None
        self.students: List[Student] = []
        self.warnings: Dict[str, List[str]] = {}

    @property
    def settings(self) -> RiskSettings:
        return config.resolve_risk_settings(self.global_settings, self.per_class_settings, self.class_id)

    def load(self, result: IngestionResult, class_id: Optional[str]):
        self.class_id = class_id
        self.students = result.students
        self.warnings = result.warnings

    def recalculate(self):
        self.students = recalculate_students(self.students, self.settings)

    def find(self, student_id: str) -> Student:
        for student in self.students:
            if student.id == student_id:
                return student
        raise HTTPException(status_code=404, detail=f"Student {student_id} not found")

    def replace(self, student: Student):
        self.students = [student if s.id == student.id else s for s in self.students]


state = ClassState()


def _require_students():
    if not state.students:
        raise HTTPException(status_code=404, detail="No results available")


def _ingest(behavior_grid: Grid, grades_grid: Grid, class_id: Optional[str]) -> UploadResponse:
    settings = config.resolve_risk_settings(state.global_settings, state.per_class_settings, class_id)
    result = ingest_with_report(behavior_grid, grades_grid, settings)
    if not result.students:
        raise HTTPException(status_code=400, detail=NO_STUDENTS_MESSAGE)

    state.load(result, class_id)
    summary = class_summary(state.students)
    logger.info(
        "Results: %d students (%d high, %d medium, %d low)",
        summary.total, summary.high, summary.medium, summary.low,
    )
    return UploadResponse(
        success=True,
        message=f"Successfully processed {summary.total} students",
        class_id=class_id,
        students=state.students,
        summary=summary,
        mapping_warnings=result.warnings,
    )


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return {"status": "ok", "message": "Server is running"}


@app.post("/upload", response_model=UploadResponse)
async def upload_files(
    behavior_file: UploadFile = File(...),
    grades_file: UploadFile = File(...),
    class_id: Optional[str] = Form(None),
):
    """Upload the behavior log and the gradebook of one class."""
    grids = []
    for upload in (behavior_file, grades_file):
        file_bytes = await upload.read()
        if len(file_bytes) > config.MAX_UPLOAD_SIZE:
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size: {config.MAX_UPLOAD_SIZE_MB}MB",
            )
        try:
            grids.append(read_sheet(file_bytes, upload.filename or ""))
        except ValueError as e:
            logger.warning("Could not read %s: %s", upload.filename, e)
            raise HTTPException(status_code=400, detail=str(e))

    return _ingest(grids[0], grids[1], class_id)


@app.post("/sample", response_model=UploadResponse)
async def load_sample():
    """Load the built-in two-student sample class."""
    behavior_csv, grades_csv = generate_sample_data()
    return _ingest(read_csv_text(behavior_csv), read_csv_text(grades_csv), "sample")


@app.get("/results")
async def get_results(
    risk_level: Optional[RiskLevel] = None,
    grade_trend: Optional[Trend] = None,
    behavior_trend: Optional[Trend] = None,
    search: Optional[str] = None,
):
    """Students of the current class, optionally filtered."""
    _require_students()
    students = filter_students(state.students, risk_level, grade_trend, behavior_trend, search)
    return {
        "class_id": state.class_id,
        "students": [s.model_dump(mode="json") for s in students],
        "summary": class_summary(state.students).model_dump(),
        "mapping_warnings": state.warnings,
    }


@app.get("/students/{student_id}", response_model=Student)
async def get_student(student_id: str):
    return state.find(student_id)


@app.get("/students/{student_id}/period", response_model=Student)
async def get_student_period(student_id: str, start: Optional[date] = None, end: Optional[date] = None):
    """Statistics recomputed over [start, end]."""
    return project_period(state.find(student_id), start, end, state.settings)


@app.get("/students/{student_id}/compare")
async def compare_student_periods(
    student_id: str,
    start: date,
    end: date,
    previous_start: Optional[date] = None,
    previous_end: Optional[date] = None,
):
    """Current period against a previous one (default: the window right before it)."""
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    previous = None
    if previous_start and previous_end:
        previous = PeriodDefinition(name="תקופה קודמת", start=previous_start, end=previous_end)
    current = PeriodDefinition(name="תקופה נוכחית", start=start, end=end)
    comparison = compare_periods(state.find(student_id), current, previous, state.settings)
    return comparison.model_dump(mode="json")


@app.post("/students/{student_id}/grades", response_model=Student)
async def add_manual_grade(student_id: str, request: ManualGradeRequest):
    """Add a grade by hand; the student is recomputed from scratch."""
    student = state.find(student_id)
    updated = add_grade(student, build_manual_grade(student, request), state.settings)
    state.replace(updated)
    return updated


@app.post("/students/{student_id}/events", response_model=Student)
async def add_manual_event(student_id: str, request: ManualEventRequest):
    """Add a behavior event by hand, classified like an imported one."""
    student = state.find(student_id)
    updated = add_behavior_event(student, build_manual_event(student, request), state.settings)
    state.replace(updated)
    return updated


@app.get("/settings")
async def get_settings():
    return {
        "global": state.global_settings.model_dump(),
        "per_class": {k: v.model_dump() for k, v in state.per_class_settings.items()},
        "effective": state.settings.model_dump(),
    }


@app.put("/settings", response_model=RiskSettings)
async def update_global_settings(raw: Dict):
    """Replace the global settings; missing fields take the defaults."""
    state.global_settings = config.normalize_risk_settings(raw)
    state.recalculate()
    return state.global_settings


@app.put("/settings/{class_id}", response_model=RiskSettings)
async def update_class_settings(class_id: str, raw: Dict):
    """Set a per-class override; missing fields take the global values."""
    settings = config.normalize_risk_settings(raw, defaults=state.global_settings)
    state.per_class_settings[class_id] = settings
    state.recalculate()
    return settings


@app.get("/analytics/subjects")
async def get_subject_matrix():
    _require_students()
    matrix = subject_matrix(state.students)
    matrix = matrix.astype(object).where(matrix.notna(), None)
    return {"columns": list(matrix.columns), "rows": matrix.reset_index().to_dict(orient="records")}


@app.get("/analytics/teachers")
async def get_teacher_analytics():
    _require_students()
    return {
        "grades": [t.model_dump() for t in teacher_grade_stats(state.students)],
        "behavior": [t.model_dump() for t in teacher_behavior_stats(state.students)],
    }


@app.get("/analytics/heatmap")
async def get_heatmap(mode: str = Query("all")):
    _require_students()
    if mode not in HEATMAP_MODES:
        raise HTTPException(status_code=400, detail=f"mode must be one of {', '.join(HEATMAP_MODES)}")
    return negative_event_heatmap(state.students, mode).model_dump()


@app.get("/download.csv")
async def download_csv():
    """Download per-student results as CSV."""
    _require_students()

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "Student ID",
        "Student Name",
        "Average",
        "Negative Events",
        "Positive Events",
        "Grade Trend",
        "Behavior Trend",
        "Risk Score",
        "Risk Level",
        "Correlations",
    ])
    for s in sorted(state.students, key=lambda s: (s.risk_score, s.name)):
        writer.writerow([
            s.id,
            s.name,
            f"{s.average_score:.1f}",
            s.negative_count,
            s.positive_count,
            s.grade_trend.value,
            s.behavior_trend.value,
            f"{s.risk_score:.1f}",
            s.risk_level.value,
            len(s.correlations),
        ])

    output.seek(0)
    # UTF-8 BOM so that Excel shows Hebrew correctly
    return StreamingResponse(
        iter(["\ufeff" + output.getvalue()]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": "attachment; filename=class_results.csv"},
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG if config.DEBUG else logging.INFO)
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
