"""Exam, question and student result models."""

import enum

from sqlalchemy import BigInteger, CheckConstraint, Enum, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outcome_tracker.core.database import Base
from outcome_tracker.models.base import IDMixin, JSONType, TimestampMixin

EXAM_MAX_SCORE = 100


class ExamType(str, enum.Enum):
    """Exam kind enumeration."""

    MIDTERM = "midterm"
    FINAL = "final"


class ResultSource(str, enum.Enum):
    """Where a stored result came from."""

    BATCH = "batch"
    SINGLE = "single"
    MANUAL = "manual"


class Exam(Base, IDMixin, TimestampMixin):
    """Course assessment instance mapped to learning outcomes."""

    __tablename__ = "exams"

    course_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    exam_type: Mapped[ExamType] = mapped_column(Enum(ExamType), nullable=False, index=True)
    exam_code: Mapped[str] = mapped_column(String(50), nullable=False)
    # Always 100; never updated after insert
    max_score: Mapped[int] = mapped_column(Integer, nullable=False, default=EXAM_MAX_SCORE)
    # ÖÇ codes this exam measures
    learning_outcomes: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    # Relationships
    course: Mapped["Course"] = relationship("Course", lazy="selectin")
    questions: Mapped[list["ExamQuestion"]] = relationship(
        "ExamQuestion",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="ExamQuestion.number",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("course_id", "exam_code", name="uq_exam_course_code"),
    )

    def __repr__(self) -> str:
        return f"<Exam(id={self.id}, code={self.exam_code}, type={self.exam_type})>"


class ExamQuestion(Base, IDMixin):
    """Question of an exam with its learning outcome mapping."""

    __tablename__ = "exam_questions"

    exam_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("exams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    max_score: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    learning_outcome_codes: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    exam: Mapped["Exam"] = relationship("Exam", back_populates="questions")

    __table_args__ = (
        UniqueConstraint("exam_id", "number", name="uq_exam_question_number"),
    )

    def __repr__(self) -> str:
        return f"<ExamQuestion(exam_id={self.exam_id}, number={self.number})>"


class QuestionScore(Base, IDMixin, TimestampMixin):
    """Score of one student on one question."""

    __tablename__ = "question_scores"

    question_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("exam_questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    score_value: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)

    __table_args__ = (
        UniqueConstraint("question_id", "student_number", name="uq_question_score_student"),
    )


class StudentExamResult(Base, IDMixin, TimestampMixin):
    """Overall result of one student in one exam."""

    __tablename__ = "student_exam_results"

    student_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    exam_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("exams.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    course_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    total_score: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    max_score: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    percentage: Mapped[float] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=False, index=True)
    # ÖÇ code -> percentage
    outcome_performance: Mapped[dict[str, float]] = mapped_column(JSONType, nullable=False, default=dict)
    # PÇ code -> percentage
    program_outcome_performance: Mapped[dict[str, float]] = mapped_column(
        JSONType, nullable=False, default=dict
    )
    source: Mapped[ResultSource] = mapped_column(
        Enum(ResultSource),
        nullable=False,
        default=ResultSource.MANUAL,
    )

    __table_args__ = (
        UniqueConstraint("student_number", "exam_id", name="uq_result_student_exam"),
        CheckConstraint("percentage >= 0 AND percentage <= 100", name="ck_result_percentage_range"),
    )

    def __repr__(self) -> str:
        return f"<StudentExamResult(student={self.student_number}, exam_id={self.exam_id})>"


# Import to avoid circular imports
from outcome_tracker.models.course import Course
