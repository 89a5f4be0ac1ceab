"""Batch scoring job tracking models."""

import enum
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outcome_tracker.core.database import Base
from outcome_tracker.models.base import IDMixin

FILE_NAME_MAX_LENGTH = 255


class FileStatus(str, enum.Enum):
    """Per-file outcome enumeration."""

    SUCCESS = "success"
    FAILED = "failed"


class BatchJob(Base, IDMixin):
    """One batch-scoring submission.

    Counters are only ever changed through atomic SQL increments
    (see ``BatchJobRepository.record_file_result``).
    """

    __tablename__ = "batch_jobs"

    batch_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    exam_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("exams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    course_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
    )
    total_files: Mapped[int] = mapped_column(Integer, nullable=False)
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    statuses: Mapped[list["BatchFileStatus"]] = relationship(
        "BatchFileStatus",
        back_populates="batch_job",
        order_by="BatchFileStatus.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<BatchJob(batch_id={self.batch_id}, "
            f"processed={self.processed_count}/{self.total_files})>"
        )


class BatchFileStatus(Base, IDMixin):
    """Per-file status entry, ordered by completion."""

    __tablename__ = "batch_file_statuses"

    batch_job_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("batch_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Value of processed_count right after this file was counted
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(FILE_NAME_MAX_LENGTH), nullable=False)
    student_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[FileStatus] = mapped_column(Enum(FileStatus), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    batch_job: Mapped["BatchJob"] = relationship("BatchJob", back_populates="statuses")

    def __repr__(self) -> str:
        return f"<BatchFileStatus(batch_job_id={self.batch_job_id}, seq={self.sequence}, status={self.status})>"
