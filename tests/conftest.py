"""Shared fixtures.

The database URL and work directory must be set before anything from
outcome_tracker is imported, because settings and the engine are created at
import time.
"""

import os
import tempfile
from concurrent.futures import ThreadPoolExecutor

_tmp_dir = tempfile.mkdtemp(prefix="outcome-tracker-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["WORK_DIR"] = os.path.join(_tmp_dir, "work")
os.environ["GEMINI_API_KEY"] = ""
os.environ["ENABLE_PERSPECTIVE_CORRECTION"] = "false"

import pytest  # noqa: E402

from outcome_tracker.core.database import Base, SessionLocal, engine  # noqa: E402
from outcome_tracker.models.exam import ExamType  # noqa: E402
from outcome_tracker.schemas.course import CourseCreate  # noqa: E402
from outcome_tracker.schemas.exam import ExamCreate  # noqa: E402
from outcome_tracker.services.batch import BatchOrchestrator  # noqa: E402
from outcome_tracker.services.course import CourseService  # noqa: E402
from outcome_tracker.services.exam import ExamService  # noqa: E402
from outcome_tracker.services.scoring import ScoringTask  # noqa: E402
from tests.helpers import FakeVisionReader  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def course(db):
    course = CourseService(db).create_course(
        CourseCreate(
            code="BLM101",
            name="Introduction to Programming",
            semester="2025-Fall",
            learning_outcomes=[
                {"code": "ÖÇ1", "description": "Write simple programs", "program_outcomes": ["PÇ1"]},
                {"code": "ÖÇ2", "description": "Use data structures", "program_outcomes": ["PÇ1", "PÇ2"]},
                {"code": "ÖÇ3", "description": "Document code", "program_outcomes": []},
            ],
            students=[
                {"student_number": f"2023000{i}", "full_name": f"Student {i}"} for i in range(1, 7)
            ] + [{"student_number": "20231234", "full_name": "Ayşe Yılmaz"}],
        )
    )
    db.commit()
    return course


@pytest.fixture
def exam(db, course):
    exam = ExamService(db).create_exam(
        ExamCreate(
            course_id=course.id,
            exam_type=ExamType.MIDTERM,
            exam_code="MT1",
            learning_outcomes=["ÖÇ1", "ÖÇ2"],
        )
    )
    db.commit()
    return exam


@pytest.fixture
def reader():
    return FakeVisionReader()


@pytest.fixture
def orchestrator(reader):
    file_pool = ThreadPoolExecutor(max_workers=4)
    supervisor_pool = ThreadPoolExecutor(max_workers=1)
    yield BatchOrchestrator(
        file_executor=file_pool,
        supervisor_executor=supervisor_pool,
        task_factory=lambda session: ScoringTask(session, reader),
    )
    file_pool.shutdown(wait=True)
    supervisor_pool.shutdown(wait=True)
