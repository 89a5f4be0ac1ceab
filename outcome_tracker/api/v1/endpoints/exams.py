"""Exam management and scoring endpoints."""

import base64
import binascii
from io import BytesIO
from pathlib import PurePath
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from outcome_tracker.core.config import settings
from outcome_tracker.core.database import get_db
from outcome_tracker.core.exceptions import ScoringFailed, UploadError
from outcome_tracker.core.workers import get_orchestrator, get_vision_reader
from outcome_tracker.models.batch import FILE_NAME_MAX_LENGTH
from outcome_tracker.models.exam import ResultSource
from outcome_tracker.pipeline.vision import VisionScoreReader
from outcome_tracker.schemas.batch import BatchAccepted, BatchStatusResponse
from outcome_tracker.schemas.common import MessageResponse
from outcome_tracker.schemas.exam import (
    ExamCreate,
    ExamDetailResponse,
    ExamQuestionInput,
    ExamResponse,
    ExamUpdate,
    ManualResultCreate,
    QuestionScoreBulk,
    ScoreSubmissionResponse,
    StudentExamResultResponse,
)
from outcome_tracker.services.batch import BatchFile, BatchOrchestrator
from outcome_tracker.services.exam import ExamService
from outcome_tracker.services.scoring import ResultService, ScoringInput, ScoringTask

router = APIRouter()


def _read_upload(file: UploadFile) -> bytes:
    """Validate name, extension and size of an uploaded exam document."""
    if not file.filename:
        raise UploadError("No file provided")
    if len(file.filename) > FILE_NAME_MAX_LENGTH:
        raise UploadError(f"File name longer than {FILE_NAME_MAX_LENGTH} characters")

    suffix = PurePath(file.filename).suffix.lower()
    if suffix not in settings.ALLOWED_EXTENSIONS:
        raise UploadError(
            f"Unsupported file type: {file.filename}",
            details={"allowed": settings.ALLOWED_EXTENSIONS},
        )

    content = file.file.read()
    if not content:
        raise UploadError(f"Empty file: {file.filename}")
    if len(content) > settings.max_upload_bytes:
        raise UploadError(f"File size exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit")
    return content


def _decode_base64_pdf(data: str) -> bytes:
    # Accept data URLs as sent by browsers
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        content = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise UploadError("pdf_base64 is not valid base64")
    if not content:
        raise UploadError("pdf_base64 is empty")
    if len(content) > settings.max_upload_bytes:
        raise UploadError(f"File size exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit")
    return content


# ==========================================
# Exam CRUD
# ==========================================

@router.post("", response_model=ExamResponse, status_code=status.HTTP_201_CREATED)
def create_exam(
    request: ExamCreate,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Create an exam. Exam code must be unique within the course;
    learning outcome codes are filtered against the course. max_score is always 100.
    """
    return ExamService(db).create_exam(request)


@router.get("", response_model=list[ExamResponse])
def list_exams(db: Annotated[Session, Depends(get_db)]):
    """List all exams."""
    return ExamService(db).list_exams()


@router.get("/course/{course_id}", response_model=list[ExamResponse])
def list_exams_by_course(
    course_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """List exams of a course."""
    return ExamService(db).list_exams(course_id=course_id)


@router.get("/results/student/{student_number}", response_model=list[StudentExamResultResponse])
def list_student_results(
    student_number: str,
    db: Annotated[Session, Depends(get_db)],
):
    """All exam results of a student."""
    return ResultService(db).list_for_student(student_number)


@router.post("/results/manual", response_model=StudentExamResultResponse)
def create_manual_result(
    request: ManualResultCreate,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Enter an overall score by hand. The score is distributed to the exam's
    learning outcomes exactly like a scanned result and replaces any earlier one.
    """
    return ResultService(db).record_manual(request)


@router.get("/{exam_id}", response_model=ExamDetailResponse)
def get_exam(
    exam_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """Get an exam with the program outcomes reached through its learning outcomes."""
    return ExamService(db).get_exam_detail(exam_id)


@router.patch("/{exam_id}", response_model=ExamResponse)
def update_exam(
    exam_id: int,
    request: ExamUpdate,
    db: Annotated[Session, Depends(get_db)],
):
    """Update exam type, code or learning outcomes."""
    return ExamService(db).update_exam(exam_id, request)


@router.delete("/{exam_id}", response_model=MessageResponse)
def delete_exam(
    exam_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """Delete an exam. Refused while student results exist."""
    ExamService(db).delete_exam(exam_id)
    return MessageResponse(message="Exam deleted")


@router.post("/{exam_id}/questions", response_model=ExamResponse)
def replace_questions(
    exam_id: int,
    questions: list[ExamQuestionInput],
    db: Annotated[Session, Depends(get_db)],
):
    """Replace the question list and its learning outcome mapping."""
    return ExamService(db).replace_questions(exam_id, questions)


@router.post("/{exam_id}/question-scores", response_model=MessageResponse)
def upsert_question_scores(
    exam_id: int,
    request: QuestionScoreBulk,
    db: Annotated[Session, Depends(get_db)],
):
    """Insert or replace per-question student scores."""
    count = ExamService(db).upsert_question_scores(exam_id, request)
    return MessageResponse(message=f"Saved {count} question scores")


# ==========================================
# Scoring
# ==========================================

@router.post("/{exam_id}/batch-score", response_model=BatchAccepted, status_code=status.HTTP_202_ACCEPTED)
def start_batch_score(
    exam_id: int,
    orchestrator: Annotated[BatchOrchestrator, Depends(get_orchestrator)],
    files: list[UploadFile] = File(...),
):
    """
    Queue scanned exam sheets for scoring and return immediately.
    Poll batch-status with the returned batch_id for progress.
    """
    uploads = [BatchFile(file_name=f.filename, content=_read_upload(f)) for f in files]
    job = orchestrator.submit(exam_id, uploads)
    return BatchAccepted(batch_id=job.batch_id, total_files=job.total_files, started_at=job.started_at)


@router.get("/{exam_id}/batch-status", response_model=BatchStatusResponse)
def get_batch_status(
    exam_id: int,
    db: Annotated[Session, Depends(get_db)],
    orchestrator: Annotated[BatchOrchestrator, Depends(get_orchestrator)],
    batch_id: str = Query(..., min_length=1),
):
    """Progress counters and per-file statuses of a batch."""
    return orchestrator.get_status(db, batch_id, exam_id=exam_id)


@router.post(
    "/{exam_id}/submit-score",
    response_model=ScoreSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_score(
    exam_id: int,
    db: Annotated[Session, Depends(get_db)],
    reader: Annotated[VisionScoreReader, Depends(get_vision_reader)],
    file: UploadFile | None = File(None),
    pdf_base64: str | None = Form(None),
    student_number: str | None = Form(None),
):
    """
    Score a single exam sheet synchronously.
    The student number is read from the sheet unless given.
    """
    ExamService(db).get_exam(exam_id)

    if file is not None:
        file_name = file.filename
        content = _read_upload(file)
    elif pdf_base64:
        file_name = f"{student_number or 'submission'}.pdf"
        content = _decode_base64_pdf(pdf_base64)
    else:
        raise UploadError("Provide either file or pdf_base64")

    outcome = ScoringTask(db, reader).run(
        ScoringInput(
            exam_id=exam_id,
            file_name=file_name,
            content=content,
            student_number=(student_number or "").strip() or None,
            source=ResultSource.SINGLE,
        )
    )
    if not outcome.success:
        raise ScoringFailed(
            code=outcome.error_code,
            message=outcome.message,
            details={"file_name": file_name, "stage": outcome.failed_at.value if outcome.failed_at else None},
        )

    return ScoreSubmissionResponse(
        result_id=outcome.result_id,
        student_number=outcome.student_number,
        total_score=outcome.total_score,
        max_score=outcome.max_score,
        percentage=outcome.percentage,
        region_method=outcome.region_method,
        markers_found=outcome.markers_found,
        page_path=outcome.page_path,
        outcome_performance=outcome.outcome_performance,
        program_outcome_performance=outcome.program_outcome_performance,
    )


# ==========================================
# Results
# ==========================================

@router.get("/{exam_id}/results", response_model=list[StudentExamResultResponse])
def list_exam_results(
    exam_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """Stored results of an exam."""
    return ResultService(db).list_for_exam(exam_id)


@router.get("/{exam_id}/results/export")
def export_exam_results(
    exam_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """Download exam results as an Excel workbook."""
    service = ExamService(db)
    exam = service.get_exam(exam_id)
    content = service.export_results(exam_id)
    filename = f"{exam.exam_code}_results.xlsx"

    return StreamingResponse(
        BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
