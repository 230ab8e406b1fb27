"""Unit tests for header detection and column mapping."""

from class_analytics.columns import (
    BEHAVIOR_RULES,
    FieldRule,
    SchemaMapper,
    behavior_mapper,
    find_header_row,
    grades_mapper,
    match_column,
)

BEHAVIOR_HEADER = [
    "מס'", "שם המורה", "מקצוע", "תאריך", "שיעור", "נושא", "ת.ז", "שם התלמיד",
    "שכבה", "כיתה", "סוג האירוע", "הצדקה", 'הוצדק ע"י', "הערה",
]

EXPECTED_DEFAULTS = {
    "teacher": 1,
    "subject": 2,
    "date": 3,
    "lesson_number": 4,
    "student_id": 6,
    "student_name": 7,
    "event_type": 10,
    "justification": 11,
    "comment": 13,
}


def test_find_header_row():
    """Test header row detection by label."""
    grid = [["IGNORE"], ["IGNORE"], ["IGNORE"], BEHAVIOR_HEADER, ["1", "x"]]
    assert find_header_row(grid, "שם המורה") == 3
    assert find_header_row(grid, "לא קיים") == 2
    assert find_header_row([], "שם המורה", default=5) == 5


def test_standard_layout_matches_every_field():
    mapping = behavior_mapper().map_header(BEHAVIOR_HEADER)
    assert mapping.columns == EXPECTED_DEFAULTS
    assert mapping.warnings == []
    assert not mapping.used_fallback


def test_reordered_columns():
    """Columns are found wherever they are."""
    header = [
        "הערה", "סוג האירוע", "שם התלמיד", "ת.ז", "מספר שיעור", "תאריך", "מקצוע",
        "שם המורה", "הצדקה",
    ]
    mapping = behavior_mapper().map_header(header)
    assert mapping["comment"] == 0
    assert mapping["event_type"] == 1
    assert mapping["student_name"] == 2
    assert mapping["student_id"] == 3
    assert mapping["lesson_number"] == 4
    assert mapping["date"] == 5
    assert mapping["subject"] == 6
    assert mapping["teacher"] == 7
    assert mapping["justification"] == 8
    assert mapping.warnings == []


def test_missing_headers_fall_back_to_defaults():
    """Unmatched fields use their positional default and are reported."""
    mapping = behavior_mapper().map_header(["a", "b", "c"])
    assert mapping.columns == EXPECTED_DEFAULTS
    assert mapping.used_fallback
    assert {w.field for w in mapping.warnings} == set(EXPECTED_DEFAULTS)
    assert all(w.reason == "no matching header" for w in mapping.warnings)


def test_collision_falls_back_lower_priority_field():
    """When subject and lesson number land on one column, lesson number takes its default."""
    header = list(BEHAVIOR_HEADER)
    header[2] = "מקצוע / שיעור"
    header[4] = "זמן"
    mapping = behavior_mapper().map_header(header)

    assert mapping["subject"] == 2
    assert mapping["lesson_number"] == 4
    [warning] = mapping.warnings
    assert warning.field == "lesson_number"
    assert "subject" in warning.reason


def test_match_column_skips_excluded_cells():
    rule = FieldRule(field="subject", keywords=("מס",), default_index=0, exclude=("מס'",))
    assert match_column(["מס'", "מספר"], rule) == 1


def test_grades_mapper_with_header_row():
    grid = [
        ["IGNORE"] * 3,
        ["IGNORE"] * 3,
        ["מס'", "ת.ז", "שם התלמיד", "שכבה"],
        ["1", "123", "ישראל ישראלי", "ח"],
    ]
    mapping = grades_mapper().map(grid)
    assert mapping.header_row == 2
    assert mapping["student_id"] == 1
    assert mapping["student_name"] == 2


def test_custom_rules():
    mapper = SchemaMapper(
        [FieldRule(field="date", keywords=("Date",), default_index=0)],
        header_label="Date",
        default_header_row=0,
    )
    mapping = mapper.map([["Name", "Event Date"], ["x", "01/01/2024"]])
    assert mapping.header_row == 0
    assert mapping["date"] == 1


def test_rule_order_lists_subject_before_lesson_number():
    fields = [rule.field for rule in BEHAVIOR_RULES]
    assert fields.index("subject") < fields.index("lesson_number")
