"""Per-file scoring pipeline and result persistence."""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from outcome_tracker.core.exceptions import (
    NotFoundError,
    ScoringError,
    StudentIdentificationFailure,
    ValidationError,
    VisionExtractionError,
)
from outcome_tracker.models.course import CourseLearningOutcome
from outcome_tracker.models.exam import Exam, ResultSource, StudentExamResult
from outcome_tracker.pipeline.identifier import StudentIdentifier
from outcome_tracker.pipeline.markers import MarkerDetector
from outcome_tracker.pipeline.raster import RasterConverter
from outcome_tracker.pipeline.regions import RegionExtractor
from outcome_tracker.pipeline.vision import VisionScoreReader
from outcome_tracker.schemas.exam import ManualResultCreate

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


# ==========================================
# Score -> outcome distribution
# ==========================================

def compute_percentage(total_score: float, max_score: float) -> float:
    """Score as a percentage of max_score, clamped to [0, 100]. 0 when max_score <= 0."""
    if max_score <= 0:
        return 0.0
    return min(max(total_score / max_score * 100, 0.0), 100.0)


def target_outcome_codes(exam_codes: list[str], course_los: list[CourseLearningOutcome]) -> list[str]:
    """ÖÇ codes that receive an exam's overall percentage."""
    if exam_codes:
        return list(exam_codes)
    return [lo.code for lo in course_los]


def distribute_outcomes(
    percentage: float,
    exam_codes: list[str],
    course_los: list[CourseLearningOutcome],
) -> tuple[dict[str, float], dict[str, float]]:
    """Give every targeted ÖÇ the overall percentage and average it up to each PÇ.

    Returns (outcome_performance, program_outcome_performance). Values are stored
    unrounded; responses round them to 2 decimals.
    """
    outcome_performance = {
        code: percentage for code in target_outcome_codes(exam_codes, course_los)
    }

    po_values: dict[str, list[float]] = {}
    for lo in course_los:
        if lo.code not in outcome_performance:
            continue
        for po in lo.program_outcomes or []:
            po_values.setdefault(po, []).append(outcome_performance[lo.code])

    program_outcome_performance = {
        po: sum(values) / len(values) for po, values in po_values.items()
    }
    return outcome_performance, program_outcome_performance


def derive_program_outcomes(
    exam_codes: list[str],
    course_los: list[CourseLearningOutcome],
) -> list[tuple[str, list[str]]]:
    """PÇ codes reached by an exam, each with the ÖÇ codes that reach it."""
    codes = set(exam_codes)
    derived: dict[str, list[str]] = {}
    for lo in course_los:
        if lo.code not in codes:
            continue
        for po in lo.program_outcomes or []:
            derived.setdefault(po, []).append(lo.code)
    return sorted(derived.items())


# ==========================================
# Result persistence
# ==========================================

class ResultService:
    """Upserts and reads StudentExamResult rows."""

    def __init__(self, db: Session):
        self.db = db

    def _get_exam(self, exam_id: int) -> Exam:
        exam = self.db.get(Exam, exam_id)
        if not exam:
            raise NotFoundError("Exam", str(exam_id))
        return exam

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(StudentExamResult)
        if dialect == "sqlite":
            return sqlite.insert(StudentExamResult)
        raise NotImplementedError(f"Result upsert not supported on {dialect}")

    def upsert_result(
        self,
        exam: Exam,
        student_number: str,
        total_score: float,
        source: ResultSource,
    ) -> StudentExamResult:
        """Insert or replace the single result of a student in an exam."""
        percentage = compute_percentage(total_score, exam.max_score)
        outcome_perf, program_perf = distribute_outcomes(
            percentage, exam.learning_outcomes or [], exam.course.learning_outcomes
        )
        now = datetime.now(timezone.utc)
        values = {
            "course_id": exam.course_id,
            "total_score": total_score,
            "max_score": exam.max_score,
            "percentage": round(percentage, 2),
            "outcome_performance": outcome_perf,
            "program_outcome_performance": program_perf,
            "source": source,
            "updated_at": now,
        }

        stmt = self._insert().values(
            student_number=student_number,
            exam_id=exam.id,
            created_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["student_number", "exam_id"],
            set_=values,
        )
        self.db.execute(stmt)

        result = self.db.execute(
            select(StudentExamResult)
            .where(
                StudentExamResult.student_number == student_number,
                StudentExamResult.exam_id == exam.id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one()
        logger.info(
            f"[RESULT] Saved {student_number} exam={exam.id}: "
            f"{total_score}/{exam.max_score} ({result.percentage}%) via {source.value}"
        )
        return result

    def record_manual(self, request: ManualResultCreate) -> StudentExamResult:
        exam = self._get_exam(request.exam_id)
        if request.total_score > exam.max_score:
            raise ValidationError(
                f"total_score {request.total_score} exceeds max_score {exam.max_score}",
                details={"total_score": request.total_score, "max_score": exam.max_score},
            )
        return self.upsert_result(exam, request.student_number, request.total_score, ResultSource.MANUAL)

    def list_for_exam(self, exam_id: int) -> list[StudentExamResult]:
        self._get_exam(exam_id)
        result = self.db.execute(
            select(StudentExamResult)
            .where(StudentExamResult.exam_id == exam_id)
            .order_by(StudentExamResult.student_number)
        )
        return list(result.scalars().all())

    def list_for_student(self, student_number: str) -> list[StudentExamResult]:
        result = self.db.execute(
            select(StudentExamResult)
            .where(StudentExamResult.student_number == student_number)
            .order_by(StudentExamResult.created_at.desc())
        )
        return list(result.scalars().all())


# ==========================================
# Per-file scoring task
# ==========================================

class ScoringStage(str, enum.Enum):
    """Furthest step a file reached."""

    RECEIVED = "received"
    CONVERTED = "converted"
    IDENTIFIED = "identified"
    REGIONED = "regioned"
    SCORED = "scored"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class ScoringInput:
    exam_id: int
    file_name: str
    content: bytes
    student_number: str | None = None
    source: ResultSource = ResultSource.BATCH


@dataclass
class ScoringOutcome:
    """What happened to one file."""

    file_name: str
    stage: ScoringStage = ScoringStage.RECEIVED
    student_number: str | None = None
    total_score: float | None = None
    max_score: float | None = None
    percentage: float | None = None
    result_id: int | None = None
    region_method: str | None = None
    markers_found: bool = False
    page_path: str | None = None
    error_code: str | None = None
    # Region method on success, error description on failure
    message: str = ""
    failed_at: ScoringStage | None = None
    outcome_performance: dict[str, float] = field(default_factory=dict)
    program_outcome_performance: dict[str, float] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.stage == ScoringStage.PERSISTED

    def fail(self, code: str, message: str) -> "ScoringOutcome":
        self.failed_at = self.stage
        self.stage = ScoringStage.FAILED
        self.error_code = code
        self.message = message
        return self


class ScoringTask:
    """Runs one exam document through convert -> identify -> region -> read -> persist."""

    def __init__(
        self,
        db: Session,
        reader: VisionScoreReader,
        converter: RasterConverter | None = None,
        detector: MarkerDetector | None = None,
        extractor: RegionExtractor | None = None,
        identifier: StudentIdentifier | None = None,
    ):
        self.db = db
        self.reader = reader
        self.converter = converter or RasterConverter()
        self.detector = detector or MarkerDetector()
        self.extractor = extractor or RegionExtractor()
        self.identifier = identifier or StudentIdentifier(reader)

    def run(self, data: ScoringInput) -> ScoringOutcome:
        """Never raises; failures are reported on the outcome."""
        outcome = ScoringOutcome(file_name=data.file_name)
        tag = f"[SCORE {data.file_name}]"

        try:
            exam = self.db.get(Exam, data.exam_id)
            if exam is None:
                return outcome.fail("EXAM_NOT_FOUND", f"Exam {data.exam_id} not found")

            page = self.converter.convert(data.content, data.file_name)
            outcome.stage = ScoringStage.CONVERTED
            outcome.page_path = page.path

            student_number = data.student_number or self.identifier.identify(data.file_name, page)
            if not student_number:
                raise StudentIdentificationFailure(
                    f"Student number not found for {data.file_name} "
                    "(tried file name, digit boxes, full-page OCR)"
                )
            outcome.student_number = student_number
            outcome.stage = ScoringStage.IDENTIFIED

            markers = self.detector.detect(page)
            outcome.markers_found = markers.success
            if not markers.success:
                logger.debug(f"{tag} Markers not used: {markers.reason}")
            crop = self.extractor.extract(page, markers)
            outcome.region_method = crop.method
            outcome.stage = ScoringStage.REGIONED

            total_score = self.reader.extract_number(crop.buffer)
            if total_score > exam.max_score:
                raise VisionExtractionError(
                    f"Read score {total_score} exceeds max score {exam.max_score}"
                )
            outcome.total_score = total_score
            outcome.stage = ScoringStage.SCORED
            logger.info(f"{tag} Student {student_number}: total score {total_score} ({crop.method})")
        except ScoringError as e:
            logger.warning(f"{tag} Failed at {outcome.stage.value} [{e.code}]: {e.message}")
            return outcome.fail(e.code, e.message)
        except Exception as e:
            logger.exception(f"{tag} Unexpected error at {outcome.stage.value}: {e}")
            return outcome.fail(INTERNAL_ERROR, str(e))

        try:
            result = ResultService(self.db).upsert_result(
                exam, student_number, total_score, data.source
            )
        except Exception as e:
            logger.exception(f"{tag} Could not save result: {e}")
            self.db.rollback()
            return outcome.fail(INTERNAL_ERROR, f"Could not save result: {e}")

        outcome.result_id = result.id
        outcome.max_score = result.max_score
        outcome.percentage = result.percentage
        outcome.outcome_performance = dict(result.outcome_performance or {})
        outcome.program_outcome_performance = dict(result.program_outcome_performance or {})
        outcome.stage = ScoringStage.PERSISTED
        outcome.message = crop.method
        return outcome
