"""HTTP API tests."""

import base64

import fitz
import pytest
from fastapi.testclient import TestClient

from outcome_tracker.core.workers import get_orchestrator, get_vision_reader
from outcome_tracker.main import app

from tests.helpers import FakeVisionReader, make_png

API = "/api/v1"


@pytest.fixture
def client(reader, orchestrator):
    app.dependency_overrides[get_vision_reader] = lambda: reader
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _png_upload(name: str) -> tuple[str, tuple[str, bytes, str]]:
    return ("files", (name, make_png(413, 585), "image/png"))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_request_id_header(client):
    response = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"


class TestCourses:
    def test_create_and_get(self, client):
        response = client.post(
            f"{API}/courses",
            json={
                "code": "MAT201",
                "name": "Linear Algebra",
                "learning_outcomes": [
                    {"code": "ÖÇ1", "description": "Matrices", "program_outcomes": ["PÇ1", " PÇ1 ", "PÇ3"]},
                ],
                "students": [{"student_number": "20240001"}, {"student_number": "20240001"}],
            },
        )
        assert response.status_code == 201
        body = response.json()
        assert body["learning_outcomes"][0]["program_outcomes"] == ["PÇ1", "PÇ3"]
        assert len(body["students"]) == 1

        fetched = client.get(f"{API}/courses/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["code"] == "MAT201"

    def test_duplicate_code(self, client, course):
        response = client.post(f"{API}/courses", json={"code": "BLM101", "name": "Again"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "CONFLICT"

    def test_missing_course(self, client):
        response = client.get(f"{API}/courses/999999")
        assert response.status_code == 404
        assert response.json()["success"] is False


class TestExams:
    def test_create_filters_unknown_outcomes(self, client, course):
        response = client.post(
            f"{API}/exams",
            json={
                "course_id": course.id,
                "exam_type": "final",
                "exam_code": "F1",
                "learning_outcomes": ["ÖÇ2", "ÖÇ9"],
            },
        )
        assert response.status_code == 201
        body = response.json()
        assert body["learning_outcomes"] == ["ÖÇ2"]
        assert body["max_score"] == 100

    def test_create_with_only_unknown_outcomes(self, client, course):
        response = client.post(
            f"{API}/exams",
            json={"course_id": course.id, "exam_type": "midterm", "exam_code": "X", "learning_outcomes": ["ÖÇ9"]},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_duplicate_exam_code(self, client, course, exam):
        response = client.post(
            f"{API}/exams",
            json={"course_id": course.id, "exam_type": "final", "exam_code": "MT1"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "CONFLICT"

    def test_invalid_exam_type(self, client, course):
        response = client.post(
            f"{API}/exams",
            json={"course_id": course.id, "exam_type": "quiz", "exam_code": "Q1"},
        )
        assert response.status_code == 422

    def test_detail_includes_derived_program_outcomes(self, client, exam):
        response = client.get(f"{API}/exams/{exam.id}")
        assert response.status_code == 200
        derived = response.json()["derived_program_outcomes"]
        assert derived == [
            {"code": "PÇ1", "learning_outcomes": ["ÖÇ1", "ÖÇ2"]},
            {"code": "PÇ2", "learning_outcomes": ["ÖÇ2"]},
        ]

    def test_list_by_course(self, client, course, exam):
        response = client.get(f"{API}/exams/course/{course.id}")
        assert [e["exam_code"] for e in response.json()] == ["MT1"]

    def test_update_exam(self, client, exam):
        response = client.patch(f"{API}/exams/{exam.id}", json={"learning_outcomes": ["ÖÇ3"]})
        assert response.status_code == 200
        assert response.json()["learning_outcomes"] == ["ÖÇ3"]

    def test_delete_refused_with_results(self, client, exam):
        client.post(
            f"{API}/exams/results/manual",
            json={"student_number": "20230001", "exam_id": exam.id, "total_score": 50},
        )
        response = client.delete(f"{API}/exams/{exam.id}")
        assert response.status_code == 400

    def test_delete_without_results(self, client, exam):
        response = client.delete(f"{API}/exams/{exam.id}")
        assert response.status_code == 200
        assert client.get(f"{API}/exams/{exam.id}").status_code == 404

    def test_questions_and_scores(self, client, exam):
        response = client.post(
            f"{API}/exams/{exam.id}/questions",
            json=[
                {"number": 1, "max_score": 50, "learning_outcome_codes": ["ÖÇ1"]},
                {"number": 2, "max_score": 50, "learning_outcome_codes": ["ÖÇ2"]},
            ],
        )
        assert response.status_code == 200
        assert len(response.json()["questions"]) == 2

        response = client.post(
            f"{API}/exams/{exam.id}/question-scores",
            json={"scores": [{"question_number": 1, "student_number": "20230001", "score_value": 60}]},
        )
        assert response.status_code == 422

        response = client.post(
            f"{API}/exams/{exam.id}/question-scores",
            json={"scores": [{"question_number": 1, "student_number": "20230001", "score_value": 45}]},
        )
        assert response.status_code == 200

        perf = client.get(f"{API}/assessments/exam/{exam.id}/question-lo-performance").json()
        assert perf[0]["success_rate"] == 90.0


class TestResults:
    def test_manual_result(self, client, exam):
        response = client.post(
            f"{API}/exams/results/manual",
            json={"student_number": "20230001", "exam_id": exam.id, "total_score": 64},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["percentage"] == 64.0
        assert body["source"] == "manual"
        assert body["outcome_performance"] == {"ÖÇ1": 64.0, "ÖÇ2": 64.0}

        listed = client.get(f"{API}/exams/results/student/20230001").json()
        assert [r["exam_id"] for r in listed] == [exam.id]

    def test_manual_result_above_max_score(self, client, exam):
        response = client.post(
            f"{API}/exams/results/manual",
            json={"student_number": "20230001", "exam_id": exam.id, "total_score": 150},
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"] == {"total_score": 150.0, "max_score": 100.0}
        assert client.get(f"{API}/exams/{exam.id}/results").json() == []

    def test_manual_result_rejects_non_digits(self, client, exam):
        response = client.post(
            f"{API}/exams/results/manual",
            json={"student_number": "abc", "exam_id": exam.id, "total_score": 64},
        )
        assert response.status_code == 422

    def test_export(self, client, exam):
        client.post(
            f"{API}/exams/results/manual",
            json={"student_number": "20230001", "exam_id": exam.id, "total_score": 70},
        )
        response = client.get(f"{API}/exams/{exam.id}/results/export")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        assert "MT1_results.xlsx" in response.headers["content-disposition"]
        assert response.content[:2] == b"PK"


class TestSubmitScore:
    def test_file_upload(self, client, exam, reader):
        response = client.post(
            f"{API}/exams/{exam.id}/submit-score",
            files={"file": ("20230003.png", make_png(), "image/png")},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["student_number"] == "20230003"
        assert body["percentage"] == 75.0
        assert body["region_method"] == "template"
        assert body["markers_found"] is False

        results = client.get(f"{API}/exams/{exam.id}/results").json()
        assert [(r["student_number"], r["source"]) for r in results] == [("20230003", "single")]

    def test_base64_with_student_number(self, client, exam, reader):
        doc = fitz.open()
        doc.new_page(width=595, height=842)
        encoded = base64.b64encode(doc.tobytes()).decode()
        doc.close()

        response = client.post(
            f"{API}/exams/{exam.id}/submit-score",
            data={"pdf_base64": f"data:application/pdf;base64,{encoded}", "student_number": "20230004"},
        )
        assert response.status_code == 201
        assert response.json()["student_number"] == "20230004"

    def test_vision_failure_is_classified(self, client, exam):
        app.dependency_overrides[get_vision_reader] = lambda: FakeVisionReader(score=None)
        response = client.post(
            f"{API}/exams/{exam.id}/submit-score",
            files={"file": ("20230003.png", make_png(), "image/png")},
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VISION_EXTRACTION_FAILED"
        assert error["details"]["stage"] == "regioned"

    def test_nothing_uploaded(self, client, exam):
        response = client.post(f"{API}/exams/{exam.id}/submit-score", data={"student_number": "1"})
        assert response.status_code == 400

    def test_unsupported_extension(self, client, exam):
        response = client.post(
            f"{API}/exams/{exam.id}/submit-score",
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UPLOAD_FAILED"


class TestBatchScore:
    def test_batch_flow(self, client, exam, orchestrator):
        response = client.post(
            f"{API}/exams/{exam.id}/batch-score",
            files=[_png_upload("20230001.png"), _png_upload("20230002.png"), _png_upload("scan.png")],
        )
        assert response.status_code == 202
        batch_id = response.json()["batch_id"]
        assert response.json()["total_files"] == 3

        orchestrator.join(batch_id, timeout=60)

        status = client.get(f"{API}/exams/{exam.id}/batch-status", params={"batch_id": batch_id})
        assert status.status_code == 200
        body = status.json()
        assert body["is_complete"] is True
        assert (body["success_count"], body["failed_count"]) == (2, 1)
        assert len(body["statuses"]) == 3

        lo = client.get(f"{API}/assessments/course/{exam.course_id}/lo-achievement").json()
        assert {row["code"]: row["achieved_percentage"] for row in lo}["ÖÇ1"] == 75.0
        po = client.get(f"{API}/assessments/course/{exam.course_id}/po-achievement").json()
        assert {row["code"] for row in po} == {"PÇ1", "PÇ2"}
        matrix = client.get(f"{API}/assessments/course/{exam.course_id}/student-achievements").json()
        assert matrix["20230001"]["ÖÇ2"] == 75.0

        notifications = client.get(f"{API}/notifications", params={"notification_type": "batch_complete"}).json()
        assert notifications["total"] == 1
        note_id = notifications["items"][0]["id"]

        marked = client.post(f"{API}/notifications/mark-read", json={"notification_ids": [note_id]})
        assert marked.json()["message"] == "Marked 1 notifications as read"
        unread = client.get(f"{API}/notifications", params={"is_read": False}).json()
        assert unread["total"] == 0

    def test_status_of_unknown_batch(self, client, exam):
        response = client.get(f"{API}/exams/{exam.id}/batch-status", params={"batch_id": "batch_1_abcdef"})
        assert response.status_code == 404

    def test_empty_file_rejected(self, client, exam):
        response = client.post(
            f"{API}/exams/{exam.id}/batch-score",
            files=[("files", ("20230001.png", b"", "image/png"))],
        )
        assert response.status_code == 400

    def test_overlong_file_name_rejected(self, client, exam):
        response = client.post(
            f"{API}/exams/{exam.id}/batch-score",
            files=[_png_upload("2" * 300 + ".png")],
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UPLOAD_FAILED"
