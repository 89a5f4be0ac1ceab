"""Batch scoring schemas."""

from datetime import datetime

from outcome_tracker.models.batch import FileStatus
from outcome_tracker.schemas.common import BaseSchema


class BatchAccepted(BaseSchema):
    """Returned when a batch has been queued."""

    batch_id: str
    total_files: int
    started_at: datetime


class BatchFileStatusResponse(BaseSchema):
    """One per-file status entry."""

    sequence: int
    file_name: str
    student_number: str | None
    status: FileStatus
    message: str
    error_code: str | None = None


class BatchStatusResponse(BaseSchema):
    """Snapshot of a batch job."""

    batch_id: str
    exam_id: int
    course_id: int
    total_files: int
    processed_count: int
    success_count: int
    failed_count: int
    is_complete: bool
    started_at: datetime
    completed_at: datetime | None
    statuses: list[BatchFileStatusResponse] = []
