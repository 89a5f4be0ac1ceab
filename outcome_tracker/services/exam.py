"""Exam service for CRUD, question mapping and result export."""

import logging
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from outcome_tracker.core.exceptions import ConflictError, NotFoundError, ValidationError
from outcome_tracker.models.course import Course
from outcome_tracker.models.exam import (
    EXAM_MAX_SCORE,
    Exam,
    ExamQuestion,
    QuestionScore,
    StudentExamResult,
)
from outcome_tracker.schemas.exam import (
    DerivedProgramOutcome,
    ExamCreate,
    ExamDetailResponse,
    ExamQuestionInput,
    ExamUpdate,
    QuestionScoreBulk,
)
from outcome_tracker.services.scoring import derive_program_outcomes

logger = logging.getLogger(__name__)


def _rounded(performance: dict[str, float] | None, code: str) -> float | None:
    value = (performance or {}).get(code)
    return None if value is None else round(value, 2)


class ExamService:
    """Exam management service."""

    def __init__(self, db: Session):
        self.db = db

    def _get_course(self, course_id: int) -> Course:
        course = self.db.get(Course, course_id)
        if not course:
            raise NotFoundError("Course", str(course_id))
        return course

    def _check_code_available(self, course_id: int, exam_code: str, exclude_id: int | None = None) -> None:
        query = select(Exam.id).where(Exam.course_id == course_id, Exam.exam_code == exam_code)
        if exclude_id is not None:
            query = query.where(Exam.id != exclude_id)
        if self.db.execute(query).first():
            raise ConflictError(
                f'Exam code "{exam_code}" already exists for this course',
                details={"exam_code": exam_code},
            )

    def _normalize_outcomes(self, course: Course, codes: list[str]) -> list[str]:
        """Keep only codes defined on the course; reject a non-empty list that keeps none."""
        known = {lo.code for lo in course.learning_outcomes}
        normalized = []
        for code in codes:
            code = code.strip()
            if code in known and code not in normalized:
                normalized.append(code)
        if codes and not normalized:
            raise ValidationError(
                "Selected learning outcome codes are not defined for this course",
                details={"learning_outcomes": codes},
            )
        return normalized

    def create_exam(self, request: ExamCreate) -> Exam:
        """Create an exam. max_score is fixed at 100."""
        course = self._get_course(request.course_id)
        exam_code = request.exam_code.strip()
        self._check_code_available(course.id, exam_code)

        if not course.learning_outcomes:
            raise ValidationError("Course has no learning outcomes defined")

        exam = Exam(
            course_id=course.id,
            exam_type=request.exam_type,
            exam_code=exam_code,
            max_score=EXAM_MAX_SCORE,
            learning_outcomes=self._normalize_outcomes(course, request.learning_outcomes),
        )
        self.db.add(exam)
        self.db.flush()
        self.db.refresh(exam)
        logger.info(f"[EXAM] Created {exam.exam_code} ({exam.exam_type.value}) for course {course.code}")
        return exam

    def get_exam(self, exam_id: int) -> Exam:
        """Get exam by ID."""
        exam = self.db.get(Exam, exam_id)
        if not exam:
            raise NotFoundError("Exam", str(exam_id))
        return exam

    def get_exam_detail(self, exam_id: int) -> ExamDetailResponse:
        exam = self.get_exam(exam_id)
        detail = ExamDetailResponse.model_validate(exam)
        detail.derived_program_outcomes = [
            DerivedProgramOutcome(code=po, learning_outcomes=los)
            for po, los in derive_program_outcomes(exam.learning_outcomes or [], exam.course.learning_outcomes)
        ]
        return detail

    def list_exams(self, course_id: int | None = None) -> list[Exam]:
        query = select(Exam)
        if course_id is not None:
            self._get_course(course_id)
            query = query.where(Exam.course_id == course_id)
        result = self.db.execute(query.order_by(Exam.created_at.desc(), Exam.id.desc()))
        return list(result.scalars().all())

    def update_exam(self, exam_id: int, request: ExamUpdate) -> Exam:
        """Update an exam. max_score is never touched."""
        exam = self.get_exam(exam_id)
        update_data = request.model_dump(exclude_unset=True)

        if update_data.get("exam_code") is not None:
            exam_code = update_data["exam_code"].strip()
            self._check_code_available(exam.course_id, exam_code, exclude_id=exam.id)
            exam.exam_code = exam_code
        if update_data.get("exam_type") is not None:
            exam.exam_type = update_data["exam_type"]
        if update_data.get("learning_outcomes") is not None:
            exam.learning_outcomes = self._normalize_outcomes(exam.course, update_data["learning_outcomes"])

        self.db.flush()
        self.db.refresh(exam)
        return exam

    def delete_exam(self, exam_id: int) -> None:
        """Delete an exam that has no stored results."""
        exam = self.get_exam(exam_id)
        result_count = self.db.execute(
            select(func.count()).select_from(StudentExamResult).where(StudentExamResult.exam_id == exam_id)
        ).scalar() or 0
        if result_count:
            raise ConflictError(
                f"Exam has {result_count} student results and cannot be deleted",
                details={"result_count": result_count},
            )
        self.db.delete(exam)
        self.db.flush()

    # ==========================================
    # Questions
    # ==========================================

    def replace_questions(self, exam_id: int, questions: list[ExamQuestionInput]) -> Exam:
        """Replace the question list of an exam."""
        exam = self.get_exam(exam_id)
        numbers = [q.number for q in questions]
        if len(numbers) != len(set(numbers)):
            raise ValidationError("Question numbers must be unique")

        known = {lo.code for lo in exam.course.learning_outcomes}
        for q in questions:
            unknown = [code for code in q.learning_outcome_codes if code not in known]
            if unknown:
                raise ValidationError(
                    f"Question {q.number} maps to unknown learning outcomes",
                    details={"unknown": unknown},
                )

        exam.questions.clear()
        self.db.flush()
        for q in questions:
            exam.questions.append(
                ExamQuestion(
                    number=q.number,
                    max_score=q.max_score,
                    learning_outcome_codes=list(q.learning_outcome_codes),
                )
            )
        self.db.flush()
        self.db.refresh(exam)
        return exam

    def upsert_question_scores(self, exam_id: int, request: QuestionScoreBulk) -> int:
        """Insert or replace per-question scores. Returns the number of rows written."""
        exam = self.get_exam(exam_id)
        by_number = {q.number: q for q in exam.questions}

        dialect = self.db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        for entry in request.scores:
            question = by_number.get(entry.question_number)
            if question is None:
                raise ValidationError(f"Question {entry.question_number} not found on exam {exam.exam_code}")
            if entry.score_value > question.max_score:
                raise ValidationError(
                    f"Score {entry.score_value} exceeds max {question.max_score} for question {question.number}"
                )
            stmt = insert(QuestionScore).values(
                question_id=question.id,
                student_number=entry.student_number,
                score_value=entry.score_value,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["question_id", "student_number"],
                set_={"score_value": entry.score_value},
            )
            self.db.execute(stmt)

        self.db.flush()
        return len(request.scores)

    # ==========================================
    # Results export
    # ==========================================

    def export_results(self, exam_id: int) -> bytes:
        """Exam results as an xlsx workbook: one row per student, one column per ÖÇ and PÇ."""
        exam = self.get_exam(exam_id)
        results = self.db.execute(
            select(StudentExamResult)
            .where(StudentExamResult.exam_id == exam_id)
            .order_by(StudentExamResult.student_number)
        ).scalars().all()

        names = {s.student_number: s.full_name for s in exam.course.students}
        lo_codes = list(exam.learning_outcomes or []) or [lo.code for lo in exam.course.learning_outcomes]
        po_codes = [po for po, _ in derive_program_outcomes(lo_codes, exam.course.learning_outcomes)]

        wb = Workbook()
        ws = wb.active
        ws.title = "Results"

        # Styles
        title_font = Font(bold=True, size=14)
        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
        thin_border = Border(
            left=Side(style='thin'),
            right=Side(style='thin'),
            top=Side(style='thin'),
            bottom=Side(style='thin')
        )
        center_align = Alignment(horizontal='center', vertical='center')

        headers = ["Student Number", "Full Name", "Total Score", "Max Score", "Percentage", "Source"]
        headers += lo_codes + po_codes

        title_cell = ws.cell(row=1, column=1, value=f"{exam.course.code} - {exam.exam_code} Results")
        title_cell.font = title_font
        title_cell.fill = PatternFill(start_color="B4C6E7", end_color="B4C6E7", fill_type="solid")
        ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(headers))

        for col_idx, header in enumerate(headers, start=1):
            cell = ws.cell(row=2, column=col_idx, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.border = thin_border
            cell.alignment = center_align

        for row_idx, result in enumerate(results, start=3):
            row = [
                result.student_number,
                names.get(result.student_number) or "",
                result.total_score,
                result.max_score,
                result.percentage,
                result.source.value,
            ]
            row += [_rounded(result.outcome_performance, code) for code in lo_codes]
            row += [_rounded(result.program_outcome_performance, code) for code in po_codes]
            for col_idx, value in enumerate(row, start=1):
                ws.cell(row=row_idx, column=col_idx, value=value).border = thin_border

        ws.column_dimensions['A'].width = 18
        ws.column_dimensions['B'].width = 28

        output = BytesIO()
        wb.save(output)
        output.seek(0)
        return output.getvalue()
