"""Header detection and column-position inference for raw sheet grids.

Exported sheets do not share a stable layout: columns get reordered,
renamed slightly, or shifted by an extra serial-number column. Instead of
validating a strict schema, every field is located by keyword containment
in the header row, and anything that cannot be located falls back to the
position observed in the known export layout. A fallback is reported as a
MappingWarning on the result, never raised.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class FieldRule(BaseModel):
    """How to locate one field in a header row."""
    field: str
    keywords: Tuple[str, ...]
    default_index: int
    exclude: Tuple[str, ...] = ()


class MappingWarning(BaseModel):
    field: str
    reason: str
    fallback_index: int

    def __str__(self) -> str:
        return f"{self.field}: {self.reason} (using column {self.fallback_index})"


class ColumnMapping(BaseModel):
    """Resolved field -> column index map plus the fallbacks taken to build it."""
    header_row: int
    columns: Dict[str, int]
    warnings: List[MappingWarning] = Field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return bool(self.warnings)

    def __getitem__(self, field: str) -> int:
        return self.columns[field]


# Order matters: when two fields land on the same column the later one
# falls back to its default.
BEHAVIOR_RULES: Tuple[FieldRule, ...] = (
    FieldRule(field="teacher", keywords=("שם המורה", "מורה"), default_index=1),
    FieldRule(field="date", keywords=("תאריך",), default_index=3),
    FieldRule(field="student_id", keywords=("ת.ז", "תעודת זהות", "מספר זהות"), default_index=6),
    FieldRule(field="student_name", keywords=("שם התלמיד", "שם תלמיד"), default_index=7),
    FieldRule(field="event_type", keywords=("סוג האירוע", "סוג אירוע"), default_index=10),
    FieldRule(field="justification", keywords=("הצדקה",), default_index=11),
    FieldRule(field="comment", keywords=("הערה", "הערות"), default_index=13),
    FieldRule(field="subject", keywords=("מקצוע",), default_index=2, exclude=("מס'", "מס")),
    FieldRule(
        field="lesson_number",
        keywords=("מספר שיעור", "מס' שיעור", "מס שיעור", "שיעור"),
        default_index=4,
    ),
)

GRADES_RULES: Tuple[FieldRule, ...] = (
    FieldRule(field="student_id", keywords=("ת.ז", "תעודת זהות", "מספר זהות"), default_index=1),
    FieldRule(field="student_name", keywords=("שם התלמיד", "שם תלמיד"), default_index=2),
)

BEHAVIOR_HEADER_LABEL = "שם המורה"
GRADES_HEADER_LABEL = "שם התלמיד"
DEFAULT_HEADER_ROW = 2

# First assignment column in the gradebook export.
GRADES_FIRST_ASSIGNMENT_COLUMN = 6


def cell_text(value: Any) -> str:
    """String-coerce a raw cell, treating None as empty."""
    if value is None:
        return ""
    return str(value).strip()


def find_header_row(grid: Sequence[Sequence[Any]], label: str,
                    default: int = DEFAULT_HEADER_ROW) -> int:
    """
    Locate the header row by the first row containing a distinctive label.

    Args:
        grid: Raw rows of cell values
        label: Text that only appears in the header row
        default: Row index assumed when no row contains the label

    Returns:
        Index of the header row
    """
    for idx, row in enumerate(grid):
        if any(isinstance(cell, str) and label in cell for cell in row or ()):
            return idx
    logger.info("Header label %r not found, assuming row %d", label, default)
    return default


def match_column(header: Sequence[Any], rule: FieldRule) -> Optional[int]:
    """Return the leftmost column whose header contains one of the rule's keywords."""
    for idx, raw in enumerate(header):
        text = cell_text(raw)
        if not text or text in rule.exclude:
            continue
        if any(keyword in text for keyword in rule.keywords):
            return idx
    return None


class SchemaMapper:
    """Infers column positions for a fixed set of fields from a header row."""

    def __init__(self, rules: Sequence[FieldRule], header_label: str,
                 default_header_row: int = DEFAULT_HEADER_ROW):
        self.rules = tuple(rules)
        self.header_label = header_label
        self.default_header_row = default_header_row

    def map(self, grid: Sequence[Sequence[Any]]) -> ColumnMapping:
        header_row = find_header_row(grid, self.header_label, self.default_header_row)
        header = grid[header_row] if 0 <= header_row < len(grid) else []
        return self.map_header(header, header_row)

    def map_header(self, header: Sequence[Any], header_row: int = 0) -> ColumnMapping:
        columns: Dict[str, int] = {}
        warnings: List[MappingWarning] = []
        taken: Dict[int, str] = {}

        for rule in self.rules:
            idx = match_column(header, rule)
            if idx is None:
                idx = rule.default_index
                warnings.append(MappingWarning(
                    field=rule.field,
                    reason="no matching header",
                    fallback_index=idx,
                ))
            elif idx in taken:
                owner = taken[idx]
                idx = rule.default_index
                warnings.append(MappingWarning(
                    field=rule.field,
                    reason=f"header collides with '{owner}'",
                    fallback_index=idx,
                ))
            columns[rule.field] = idx
            taken.setdefault(idx, rule.field)

        for warning in warnings:
            logger.info("Column fallback: %s", warning)

        return ColumnMapping(header_row=header_row, columns=columns, warnings=warnings)


def behavior_mapper() -> SchemaMapper:
    return SchemaMapper(BEHAVIOR_RULES, BEHAVIOR_HEADER_LABEL)


def grades_mapper() -> SchemaMapper:
    return SchemaMapper(GRADES_RULES, GRADES_HEADER_LABEL)
