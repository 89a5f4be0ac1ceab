"""Course reference data: learning outcomes and enrolled students."""

from sqlalchemy import BigInteger, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outcome_tracker.core.database import Base
from outcome_tracker.models.base import IDMixin, JSONType, TimestampMixin


class Course(Base, IDMixin, TimestampMixin):
    """Course model."""

    __tablename__ = "courses"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    semester: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    learning_outcomes: Mapped[list["CourseLearningOutcome"]] = relationship(
        "CourseLearningOutcome",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="CourseLearningOutcome.id",
        lazy="selectin",
    )
    students: Mapped[list["CourseStudent"]] = relationship(
        "CourseStudent",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="CourseStudent.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Course(id={self.id}, code={self.code})>"


class CourseLearningOutcome(Base, IDMixin):
    """Learning outcome (ÖÇ) embedded in a course, mapped to program outcomes."""

    __tablename__ = "course_learning_outcomes"

    course_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # PÇ codes, e.g. ["PÇ1", "PÇ2"]
    program_outcomes: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    course: Mapped["Course"] = relationship("Course", back_populates="learning_outcomes")

    __table_args__ = (
        UniqueConstraint("course_id", "code", name="uq_course_learning_outcome_code"),
    )

    def __repr__(self) -> str:
        return f"<CourseLearningOutcome(course_id={self.course_id}, code={self.code})>"


class CourseStudent(Base, IDMixin):
    """Student enrolled in a course."""

    __tablename__ = "course_students"

    course_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    course: Mapped["Course"] = relationship("Course", back_populates="students")

    __table_args__ = (
        UniqueConstraint("course_id", "student_number", name="uq_course_student_number"),
    )

    def __repr__(self) -> str:
        return f"<CourseStudent(course_id={self.course_id}, number={self.student_number})>"
