"""Course schemas."""

from datetime import datetime

from pydantic import Field, field_validator

from outcome_tracker.schemas.common import BaseSchema


class LearningOutcomeInput(BaseSchema):
    """Learning outcome definition inside a course."""

    code: str = Field(..., min_length=1, max_length=50)
    description: str = ""
    program_outcomes: list[str] = []

    @field_validator("program_outcomes")
    @classmethod
    def strip_program_outcomes(cls, v: list[str]) -> list[str]:
        """Drop blanks and duplicates while keeping order."""
        seen: list[str] = []
        for code in v:
            code = code.strip()
            if code and code not in seen:
                seen.append(code)
        return seen


class CourseStudentInput(BaseSchema):
    """Enrolled student."""

    student_number: str = Field(..., min_length=1, max_length=20)
    full_name: str | None = None


class CourseCreate(BaseSchema):
    """Course creation schema."""

    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    semester: str | None = None
    description: str | None = None
    learning_outcomes: list[LearningOutcomeInput] = []
    students: list[CourseStudentInput] = []

    @field_validator("learning_outcomes")
    @classmethod
    def unique_outcome_codes(cls, v: list[LearningOutcomeInput]) -> list[LearningOutcomeInput]:
        codes = [lo.code for lo in v]
        if len(codes) != len(set(codes)):
            raise ValueError("learning outcome codes must be unique")
        return v


class LearningOutcomeResponse(BaseSchema):
    """Learning outcome response."""

    code: str
    description: str
    program_outcomes: list[str]


class CourseStudentResponse(BaseSchema):
    """Enrolled student response."""

    student_number: str
    full_name: str | None


class CourseResponse(BaseSchema):
    """Course response schema."""

    id: int
    code: str
    name: str
    semester: str | None
    description: str | None
    learning_outcomes: list[LearningOutcomeResponse]
    students: list[CourseStudentResponse]
    created_at: datetime
    updated_at: datetime
