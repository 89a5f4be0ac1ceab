"""Exam and result schemas."""

from datetime import datetime

from pydantic import Field, field_validator

from outcome_tracker.models.exam import ExamType, ResultSource
from outcome_tracker.schemas.common import BaseSchema


# ==========================================
# Exam Schemas
# ==========================================

class ExamCreate(BaseSchema):
    """Exam creation schema. max_score is always 100 and cannot be set."""

    course_id: int
    exam_type: ExamType
    exam_code: str = Field(..., min_length=1, max_length=50)
    learning_outcomes: list[str] = []


class ExamUpdate(BaseSchema):
    """Exam update schema."""

    exam_type: ExamType | None = None
    exam_code: str | None = Field(None, min_length=1, max_length=50)
    learning_outcomes: list[str] | None = None


class ExamQuestionInput(BaseSchema):
    """Question definition with its learning outcome mapping."""

    number: int = Field(..., ge=1)
    max_score: float = Field(..., gt=0)
    learning_outcome_codes: list[str] = []


class ExamQuestionResponse(BaseSchema):
    """Question response."""

    number: int
    max_score: float
    learning_outcome_codes: list[str]


class ExamResponse(BaseSchema):
    """Exam response schema."""

    id: int
    course_id: int
    exam_type: ExamType
    exam_code: str
    max_score: int
    learning_outcomes: list[str]
    questions: list[ExamQuestionResponse] = []
    created_at: datetime
    updated_at: datetime


class DerivedProgramOutcome(BaseSchema):
    """PÇ reached by an exam through its learning outcomes."""

    code: str
    learning_outcomes: list[str]


class ExamDetailResponse(ExamResponse):
    """Exam with the program outcomes derived from its ÖÇ mapping."""

    derived_program_outcomes: list[DerivedProgramOutcome] = []


class QuestionScoreInput(BaseSchema):
    """Score of one student on one question."""

    question_number: int = Field(..., ge=1)
    student_number: str = Field(..., min_length=1, max_length=20)
    score_value: float = Field(..., ge=0)


class QuestionScoreBulk(BaseSchema):
    """Bulk question score upsert."""

    scores: list[QuestionScoreInput] = Field(..., min_length=1)


# ==========================================
# Result Schemas
# ==========================================

def _round_values(values: dict[str, float]) -> dict[str, float]:
    return {code: round(value, 2) for code, value in values.items()}


class ManualResultCreate(BaseSchema):
    """Manual overall score entry."""

    student_number: str = Field(..., min_length=1, max_length=20)
    exam_id: int
    total_score: float = Field(..., ge=0)

    @field_validator("student_number")
    @classmethod
    def digits_only(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError("student_number must contain digits only")
        return v


class StudentExamResultResponse(BaseSchema):
    """Stored student result."""

    id: int
    student_number: str
    exam_id: int
    course_id: int
    total_score: float
    max_score: float
    percentage: float
    outcome_performance: dict[str, float]
    program_outcome_performance: dict[str, float]
    source: ResultSource
    created_at: datetime
    updated_at: datetime

    @field_validator("outcome_performance", "program_outcome_performance")
    @classmethod
    def round_performance(cls, v: dict[str, float]) -> dict[str, float]:
        return _round_values(v)


class ScoreSubmissionResponse(BaseSchema):
    """Result of a synchronous single-file scoring run."""

    result_id: int
    student_number: str
    total_score: float
    max_score: float
    percentage: float
    region_method: str
    markers_found: bool
    page_path: str | None = None
    outcome_performance: dict[str, float]
    program_outcome_performance: dict[str, float]

    @field_validator("outcome_performance", "program_outcome_performance")
    @classmethod
    def round_performance(cls, v: dict[str, float]) -> dict[str, float]:
        return _round_values(v)
