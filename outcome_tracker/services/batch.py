"""Batch scoring: job tracking and orchestration."""

import logging
import secrets
import string
import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor, Future, wait
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from outcome_tracker.core.config import settings
from outcome_tracker.core.database import session_scope
from outcome_tracker.core.exceptions import NotFoundError, ValidationError
from outcome_tracker.models.batch import FILE_NAME_MAX_LENGTH, BatchFileStatus, BatchJob, FileStatus
from outcome_tracker.models.exam import Exam, ResultSource
from outcome_tracker.schemas.batch import BatchStatusResponse
from outcome_tracker.services.notification import notify_batch_completed, notify_batch_failures
from outcome_tracker.services.scoring import INTERNAL_ERROR, ScoringInput, ScoringOutcome, ScoringTask

logger = logging.getLogger(__name__)

_BATCH_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_batch_id() -> str:
    """Opaque token: batch_<epoch ms>_<6 random chars>."""
    suffix = "".join(secrets.choice(_BATCH_ID_ALPHABET) for _ in range(6))
    return f"batch_{int(time.time() * 1000)}_{suffix}"


@dataclass(frozen=True)
class BatchFile:
    file_name: str
    content: bytes


@dataclass(frozen=True)
class BatchCounters:
    """Counter values right after an increment."""

    processed_count: int
    success_count: int
    failed_count: int
    total_files: int


class BatchJobRepository:
    """All BatchJob counter changes go through SQL increments here."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, exam: Exam, total_files: int) -> BatchJob:
        job = BatchJob(
            batch_id=new_batch_id(),
            exam_id=exam.id,
            course_id=exam.course_id,
            total_files=total_files,
            processed_count=0,
            success_count=0,
            failed_count=0,
            is_complete=False,
        )
        self.db.add(job)
        self.db.flush()
        self.db.refresh(job)
        return job

    def get(self, batch_job_id: int) -> BatchJob | None:
        return self.db.get(BatchJob, batch_job_id, populate_existing=True)

    def get_by_batch_id(self, batch_id: str) -> BatchJob | None:
        result = self.db.execute(
            select(BatchJob)
            .where(BatchJob.batch_id == batch_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def record_file_result(self, batch_job_id: int, outcome: ScoringOutcome) -> BatchCounters:
        """Count one settled file and append its status entry in the same transaction."""
        succeeded = outcome.success
        values = {"processed_count": BatchJob.processed_count + 1}
        if succeeded:
            values["success_count"] = BatchJob.success_count + 1
        else:
            values["failed_count"] = BatchJob.failed_count + 1

        row = self.db.execute(
            update(BatchJob)
            .where(BatchJob.id == batch_job_id)
            .values(**values)
            .returning(
                BatchJob.processed_count,
                BatchJob.success_count,
                BatchJob.failed_count,
                BatchJob.total_files,
            )
            .execution_options(synchronize_session=False)
        ).one()

        self.db.add(
            BatchFileStatus(
                batch_job_id=batch_job_id,
                sequence=row.processed_count,
                file_name=outcome.file_name[:FILE_NAME_MAX_LENGTH],
                student_number=outcome.student_number,
                status=FileStatus.SUCCESS if succeeded else FileStatus.FAILED,
                message=outcome.message,
                error_code=outcome.error_code,
            )
        )
        self.db.flush()
        return BatchCounters(
            processed_count=row.processed_count,
            success_count=row.success_count,
            failed_count=row.failed_count,
            total_files=row.total_files,
        )

    def mark_complete(self, batch_job_id: int) -> bool:
        """Finalize once every file is counted. True only for the caller that flipped the flag."""
        result = self.db.execute(
            update(BatchJob)
            .where(
                BatchJob.id == batch_job_id,
                BatchJob.is_complete == False,
                BatchJob.processed_count >= BatchJob.total_files,
            )
            .values(is_complete=True, completed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        return result.rowcount == 1

    def find_unfinalized(self) -> list[BatchJob]:
        """Batches whose counters are full but were never marked complete."""
        result = self.db.execute(
            select(BatchJob).where(
                BatchJob.is_complete == False,
                BatchJob.processed_count >= BatchJob.total_files,
            )
        )
        return list(result.scalars().all())


def to_status_response(job: BatchJob) -> BatchStatusResponse:
    response = BatchStatusResponse.model_validate(job)
    response.is_complete = job.is_complete or job.processed_count >= job.total_files
    return response


class BatchOrchestrator:
    """Fans a batch out over the file pool and finalizes it from the supervisor pool."""

    def __init__(
        self,
        file_executor: Executor,
        supervisor_executor: Executor,
        task_factory: Callable[[Session], ScoringTask],
        session_factory: Callable[[], AbstractContextManager[Session]] = session_scope,
    ):
        self.file_executor = file_executor
        self.supervisor_executor = supervisor_executor
        self.task_factory = task_factory
        self.session_factory = session_factory
        self._supervisors: dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(self, exam_id: int, files: list[BatchFile]) -> BatchJob:
        """Create the batch and queue its files. Returns without waiting for any file."""
        if not files:
            raise ValidationError("No files uploaded")

        with self.session_factory() as db:
            exam = db.get(Exam, exam_id)
            if not exam:
                raise NotFoundError("Exam", str(exam_id))
            if exam.course is None:
                raise NotFoundError("Course", str(exam.course_id))
            job = BatchJobRepository(db).create(exam, len(files))
        # Committed: workers see the row from their own sessions

        logger.info(f"[BATCH {job.batch_id}] Started: {len(files)} files for exam {exam_id}")
        futures = [
            self.file_executor.submit(self._process_file, job.id, job.batch_id, exam_id, f)
            for f in files
        ]
        supervisor = self.supervisor_executor.submit(self._supervise, job.id, job.batch_id, futures)
        with self._lock:
            self._supervisors[job.batch_id] = supervisor
        supervisor.add_done_callback(lambda _: self._forget(job.batch_id))
        return job

    def get_status(self, db: Session, batch_id: str, exam_id: int | None = None) -> BatchStatusResponse:
        job = BatchJobRepository(db).get_by_batch_id(batch_id)
        if not job or (exam_id is not None and job.exam_id != exam_id):
            raise NotFoundError("Batch", batch_id)
        return to_status_response(job)

    def join(self, batch_id: str, timeout: float | None = None) -> None:
        """Block until the batch's supervisor has finished."""
        with self._lock:
            supervisor = self._supervisors.get(batch_id)
        if supervisor is not None:
            supervisor.result(timeout=timeout)

    def _forget(self, batch_id: str) -> None:
        with self._lock:
            self._supervisors.pop(batch_id, None)

    def _process_file(self, batch_job_id: int, batch_id: str, exam_id: int, upload: BatchFile) -> ScoringOutcome:
        tag = f"[BATCH {batch_id}]"
        try:
            with self.session_factory() as db:
                outcome = self.task_factory(db).run(
                    ScoringInput(
                        exam_id=exam_id,
                        file_name=upload.file_name,
                        content=upload.content,
                        source=ResultSource.BATCH,
                    )
                )
                counters = BatchJobRepository(db).record_file_result(batch_job_id, outcome)
                self._maybe_notify_failures(db, batch_job_id, outcome, counters)
        except Exception as e:
            logger.exception(f"{tag} Could not record {upload.file_name}: {e}")
            outcome = ScoringOutcome(file_name=upload.file_name).fail(INTERNAL_ERROR, str(e))
            with self.session_factory() as db:
                counters = BatchJobRepository(db).record_file_result(batch_job_id, outcome)

        if outcome.success:
            logger.info(
                f"{tag} {upload.file_name}: {outcome.student_number} -> {outcome.percentage}% "
                f"({counters.processed_count}/{counters.total_files})"
            )
        else:
            logger.warning(
                f"{tag} {upload.file_name} failed [{outcome.error_code}]: {outcome.message} "
                f"({counters.processed_count}/{counters.total_files})"
            )
        return outcome

    def _maybe_notify_failures(
        self,
        db: Session,
        batch_job_id: int,
        outcome: ScoringOutcome,
        counters: BatchCounters,
    ) -> None:
        every = settings.FAILURE_NOTIFY_EVERY
        if outcome.success or every <= 0 or counters.failed_count % every != 0:
            return
        if counters.processed_count >= counters.total_files:
            # Completion notification covers it
            return
        job = BatchJobRepository(db).get(batch_job_id)
        notify_batch_failures(db, job, counters.failed_count, counters.processed_count)

    def _supervise(self, batch_job_id: int, batch_id: str, futures: list[Future]) -> None:
        wait(futures)
        with self.session_factory() as db:
            finalize_batch(db, batch_job_id)


def finalize_batch(db: Session, batch_job_id: int) -> bool:
    """Mark a fully counted batch complete and announce it once."""
    repo = BatchJobRepository(db)
    if not repo.mark_complete(batch_job_id):
        job = repo.get(batch_job_id)
        if job and not job.is_complete:
            logger.error(
                f"[BATCH {job.batch_id}] Settled with {job.processed_count}/{job.total_files} counted"
            )
        return False

    job = repo.get(batch_job_id)
    notify_batch_completed(db, job)
    logger.info(
        f"[BATCH {job.batch_id}] Complete: {job.success_count} ok, "
        f"{job.failed_count} failed of {job.total_files}"
    )
    return True


def reconcile_stale_batches(db: Session) -> int:
    """Finalize batches whose last file was counted but which were never marked complete."""
    count = 0
    for job in BatchJobRepository(db).find_unfinalized():
        if finalize_batch(db, job.id):
            count += 1
    return count
