"""API tests for the FastAPI application."""

import pytest
from fastapi.testclient import TestClient

from class_analytics import config, main
from class_analytics.sample_data import SAMPLE_BEHAVIOR_CSV, SAMPLE_GRADES_CSV

ISRAEL_ID = "123456789"
DANIEL_ID = "987654321"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, "state", main.ClassState())
    return TestClient(main.app)


@pytest.fixture
def loaded(client):
    response = client.post("/sample")
    assert response.status_code == 200
    return client


def _upload(client, behavior=SAMPLE_BEHAVIOR_CSV, grades=SAMPLE_GRADES_CSV,
            behavior_name="behavior.csv", grades_name="grades.csv", class_id="8-1"):
    return client.post(
        "/upload",
        files={
            "behavior_file": (behavior_name, behavior.encode("utf-8"), "text/csv"),
            "grades_file": (grades_name, grades.encode("utf-8"), "text/csv"),
        },
        data={"class_id": class_id},
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_results_before_upload(client):
    assert client.get("/results").status_code == 404
    assert client.get("/download.csv").status_code == 404


def test_sample(client):
    """Test loading the built-in sample class."""
    response = client.post("/sample")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["class_id"] == "sample"
    assert body["summary"]["total"] == 2
    assert body["summary"]["high"] == 1
    assert body["summary"]["low"] == 1
    assert body["mapping_warnings"] == {"behavior": [], "grades": []}


def test_upload_csv(client):
    response = _upload(client)
    assert response.status_code == 200
    body = response.json()
    assert body["class_id"] == "8-1"
    scores = {s["id"]: s["risk_score"] for s in body["students"]}
    assert scores == {ISRAEL_ID: 4.0, DANIEL_ID: 10.0}


def test_upload_rejects_unknown_file_type(client):
    response = _upload(client, behavior_name="behavior.pdf")
    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["detail"]


def test_upload_without_students(client):
    response = _upload(client, behavior="a,b\n", grades="c,d\n")
    assert response.status_code == 400
    assert response.json()["detail"] == main.NO_STUDENTS_MESSAGE


def test_upload_too_large(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_SIZE", 10)
    response = _upload(client)
    assert response.status_code == 413


def test_upload_missing_file(client):
    response = client.post("/upload", files={"behavior_file": ("b.csv", b"x", "text/csv")})
    assert response.status_code == 422


def test_results_filters(loaded):
    body = loaded.get("/results", params={"risk_level": "high"}).json()
    assert [s["id"] for s in body["students"]] == [ISRAEL_ID]
    assert body["summary"]["total"] == 2

    body = loaded.get("/results", params={"search": "דניאל"}).json()
    assert [s["id"] for s in body["students"]] == [DANIEL_ID]

    assert loaded.get("/results", params={"risk_level": "extreme"}).status_code == 422


def test_get_student(loaded):
    response = loaded.get(f"/students/{ISRAEL_ID}")
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "ישראל ישראלי"
    assert body["risk_level"] == "high"
    assert len(body["correlations"]) == 2

    assert loaded.get("/students/000").status_code == 404


def test_student_period(loaded):
    response = loaded.get(f"/students/{ISRAEL_ID}/period", params={"start": "2024-09-01", "end": "2024-09-06"})
    assert response.status_code == 200
    body = response.json()
    assert len(body["grades"]) == 2
    assert body["average_score"] == 68.3


def test_compare_periods(loaded):
    response = loaded.get(
        f"/students/{ISRAEL_ID}/compare", params={"start": "2024-09-08", "end": "2024-09-14"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["previous_period"]["start"] == "2024-09-01"
    assert body["previous_period"]["end"] == "2024-09-07"
    assert body["current"]["average_score"] == 60.0
    assert body["previous"]["average_score"] == 68.3
    assert body["average_delta"] == -8.3

    bad = loaded.get(f"/students/{ISRAEL_ID}/compare", params={"start": "2024-09-14", "end": "2024-09-08"})
    assert bad.status_code == 400


def test_manual_grade(loaded):
    """A manual grade is stored and the student recomputed."""
    response = loaded.post(
        f"/students/{DANIEL_ID}/grades",
        json={"subject": "מתמטיקה", "date": "2024-09-20", "score": 40},
    )
    assert response.status_code == 200
    body = response.json()
    assert len(body["grades"]) == 3
    assert body["average_score"] == 90.2

    stored = loaded.get(f"/students/{DANIEL_ID}").json()
    assert len(stored["grades"]) == 3


def test_manual_event(loaded):
    response = loaded.post(
        f"/students/{ISRAEL_ID}/events",
        json={"date": "2024-09-13", "type": "פטפוט", "lesson_number": 2},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["negative_count"] == 3
    added = [e for e in body["behavior_events"] if e["id"].startswith("manual-")]
    assert len(added) == 1
    assert added[0]["category"] == "negative"
    assert added[0]["subject"] == "כללי"


def test_manual_event_validation(loaded):
    response = loaded.post(f"/students/{ISRAEL_ID}/events", json={"date": "2024-09-13"})
    assert response.status_code == 422


def test_global_settings_recalculate(loaded):
    """Changing the grade threshold rescores the class."""
    response = loaded.put("/settings", json={"minGradeThreshold": 30})
    assert response.status_code == 200
    assert response.json()["min_grade_threshold"] == 30
    assert response.json()["max_negative_behaviors"] == 5

    israel = loaded.get(f"/students/{ISRAEL_ID}").json()
    assert israel["risk_score"] == 6.0
    assert israel["risk_level"] == "medium"


def test_class_settings_override(loaded):
    response = loaded.put("/settings/sample", json={"minGradeThreshold": 30})
    assert response.status_code == 200

    body = loaded.get("/settings").json()
    assert body["per_class"]["sample"]["min_grade_threshold"] == 30
    assert body["effective"]["min_grade_threshold"] == 30
    assert body["global"]["min_grade_threshold"] == config.DEFAULT_RISK_SETTINGS.min_grade_threshold

    israel = loaded.get(f"/students/{ISRAEL_ID}").json()
    assert israel["risk_level"] == "medium"


def test_subject_matrix_endpoint(loaded):
    body = loaded.get("/analytics/subjects").json()
    assert body["columns"][:2] == ["name", "ממוצע כללי"]
    rows = {row["student_id"]: row for row in body["rows"]}
    assert rows[ISRAEL_ID]["מתמטיקה"] == 85
    assert rows[DANIEL_ID]["מתמטיקה"] is None


def test_teachers_endpoint(loaded):
    body = loaded.get("/analytics/teachers").json()
    assert {t["teacher"] for t in body["grades"]} == {"רבקה כהן", "דוד לוי", "שרה אברהם"}
    behavior = {t["teacher"]: t for t in body["behavior"]}
    assert behavior["רבקה כהן"]["positive_count"] == 2


def test_heatmap_endpoint(loaded):
    body = loaded.get("/analytics/heatmap").json()
    assert body["counts"][4] == [1, 1]

    absences = loaded.get("/analytics/heatmap", params={"mode": "absences"}).json()
    assert [c["top_issue"] for c in absences["cells"]] == ["חיסור"]

    assert loaded.get("/analytics/heatmap", params={"mode": "weekly"}).status_code == 400


def test_download_csv(loaded):
    response = loaded.get("/download.csv")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "class_results.csv" in response.headers["content-disposition"]
    assert response.content.startswith(b"\xef\xbb\xbf")

    lines = response.content.decode("utf-8-sig").splitlines()
    assert lines[0].startswith("Student ID,Student Name")
    assert lines[1].startswith(f"{ISRAEL_ID},ישראל ישראלי,64.2")
    assert len(lines) == 3
