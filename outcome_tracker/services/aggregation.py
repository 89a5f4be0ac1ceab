"""Question -> ÖÇ -> PÇ achievement rollups.

The module-level functions are pure: they take loaded rows and return plain
values. AssessmentService loads the rows for a course or exam and shapes the
responses. Percentages are rounded only in the returned values.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from outcome_tracker.core.exceptions import NotFoundError
from outcome_tracker.models.course import Course, CourseLearningOutcome
from outcome_tracker.models.exam import Exam, ExamQuestion, QuestionScore, StudentExamResult
from outcome_tracker.schemas.assessment import (
    ContributingOutcome,
    LearningOutcomeAchievement,
    ProgramOutcomeAchievement,
    QuestionPerformance,
)
from outcome_tracker.services.scoring import target_outcome_codes

logger = logging.getLogger(__name__)


@dataclass
class OutcomeAchievement:
    code: str
    description: str
    related_program_outcomes: list[str]
    student_count: int
    achieved_percentage: float


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def question_performance(
    questions: list[ExamQuestion],
    scores: list[QuestionScore],
) -> list[QuestionPerformance]:
    """Average score per question, also as a share of the question's max score."""
    by_question: dict[int, list[float]] = {}
    for score in scores:
        by_question.setdefault(score.question_id, []).append(float(score.score_value))

    rows = []
    for question in questions:
        values = by_question.get(question.id, [])
        average = _mean(values)
        success_rate = average / question.max_score * 100 if question.max_score > 0 else 0.0
        rows.append(
            QuestionPerformance(
                question_number=question.number,
                max_score=question.max_score,
                learning_outcome_codes=list(question.learning_outcome_codes or []),
                student_count=len(values),
                average_score=round(average, 2),
                success_rate=round(success_rate, 2),
            )
        )
    return rows


def student_outcome_contributions(
    course_los: list[CourseLearningOutcome],
    exams: dict[int, Exam],
    results: list[StudentExamResult],
    enrolled: set[str],
) -> dict[str, dict[str, list[float]]]:
    """student_number -> ÖÇ code -> percentages contributed by each result.

    Results carrying outcome data contribute their stored per-ÖÇ values.
    Results without it apply their overall percentage to the exam's ÖÇ
    (or every course ÖÇ when the exam declares none).
    """
    lo_codes = {lo.code for lo in course_los}
    contributions: dict[str, dict[str, list[float]]] = {}

    for result in results:
        if result.student_number not in enrolled:
            continue
        exam = exams.get(result.exam_id)
        if exam is None:
            continue

        if result.outcome_performance:
            pairs = result.outcome_performance.items()
        else:
            codes = target_outcome_codes(exam.learning_outcomes or [], course_los)
            pairs = ((code, result.percentage) for code in codes)

        per_lo = contributions.setdefault(result.student_number, {})
        for code, value in pairs:
            if code in lo_codes:
                per_lo.setdefault(code, []).append(float(value or 0))
    return contributions


def learning_outcome_achievement(
    course_los: list[CourseLearningOutcome],
    contributions: dict[str, dict[str, list[float]]],
) -> list[OutcomeAchievement]:
    """Per ÖÇ: each student's contributions averaged, then averaged over distinct students."""
    rows = []
    for lo in course_los:
        student_means = [
            _mean(per_lo[lo.code]) for per_lo in contributions.values() if per_lo.get(lo.code)
        ]
        rows.append(
            OutcomeAchievement(
                code=lo.code,
                description=lo.description,
                related_program_outcomes=list(lo.program_outcomes or []),
                student_count=len(student_means),
                achieved_percentage=_mean(student_means),
            )
        )
    return rows


def program_outcome_achievement(
    lo_achievements: list[OutcomeAchievement],
) -> list[ProgramOutcomeAchievement]:
    """Unweighted mean of contributing ÖÇ achievements per PÇ."""
    contributing: dict[str, list[OutcomeAchievement]] = {}
    for lo in lo_achievements:
        if not lo.related_program_outcomes:
            logger.warning(f"[ASSESSMENT] ÖÇ {lo.code} has no PÇ mapping")
            continue
        for po in lo.related_program_outcomes:
            contributing.setdefault(po, []).append(lo)

    if lo_achievements and not contributing:
        logger.warning("[ASSESSMENT] No ÖÇ -> PÇ mapping found for course")

    return [
        ProgramOutcomeAchievement(
            code=po,
            achieved_percentage=round(_mean(lo.achieved_percentage for lo in los), 2),
            contributing_los=[
                ContributingOutcome(code=lo.code, achieved_percentage=round(lo.achieved_percentage, 2))
                for lo in los
            ],
            contributing_lo_count=len(los),
        )
        for po, los in contributing.items()
    ]


def student_achievement_matrix(
    course_los: list[CourseLearningOutcome],
    students: list[str],
    contributions: dict[str, dict[str, list[float]]],
) -> dict[str, dict[str, float]]:
    """student_number -> ÖÇ code -> percentage (0 when the student has no data)."""
    matrix = {}
    for student in students:
        per_lo = contributions.get(student, {})
        matrix[student] = {lo.code: round(_mean(per_lo.get(lo.code, [])), 2) for lo in course_los}
    return matrix


class AssessmentService:
    """Loads course and exam rows and runs the rollups."""

    def __init__(self, db: Session):
        self.db = db

    def _get_course(self, course_id: int) -> Course:
        course = self.db.get(Course, course_id)
        if not course:
            raise NotFoundError("Course", str(course_id))
        return course

    def _course_contributions(self, course: Course) -> dict[str, dict[str, list[float]]]:
        exams = {
            exam.id: exam
            for exam in self.db.execute(
                select(Exam).where(Exam.course_id == course.id)
            ).scalars().all()
        }
        results = []
        if exams:
            results = list(
                self.db.execute(
                    select(StudentExamResult).where(
                        StudentExamResult.course_id == course.id,
                        StudentExamResult.exam_id.in_(list(exams)),
                    )
                ).scalars().all()
            )
        enrolled = {s.student_number for s in course.students}
        return student_outcome_contributions(course.learning_outcomes, exams, results, enrolled)

    def get_question_lo_performance(self, exam_id: int) -> list[QuestionPerformance]:
        exam = self.db.get(Exam, exam_id)
        if not exam:
            raise NotFoundError("Exam", str(exam_id))
        question_ids = [q.id for q in exam.questions]
        scores = []
        if question_ids:
            scores = list(
                self.db.execute(
                    select(QuestionScore).where(QuestionScore.question_id.in_(question_ids))
                ).scalars().all()
            )
        return question_performance(exam.questions, scores)

    def _lo_achievements(self, course: Course) -> list[OutcomeAchievement]:
        return learning_outcome_achievement(course.learning_outcomes, self._course_contributions(course))

    def get_lo_achievement(self, course_id: int) -> list[LearningOutcomeAchievement]:
        course = self._get_course(course_id)
        return [
            LearningOutcomeAchievement(
                code=row.code,
                description=row.description,
                related_program_outcomes=row.related_program_outcomes,
                student_count=row.student_count,
                achieved_percentage=round(row.achieved_percentage, 2),
            )
            for row in self._lo_achievements(course)
        ]

    def get_po_achievement(self, course_id: int) -> list[ProgramOutcomeAchievement]:
        course = self._get_course(course_id)
        return program_outcome_achievement(self._lo_achievements(course))

    def get_student_achievements(self, course_id: int) -> dict[str, dict[str, float]]:
        course = self._get_course(course_id)
        students = [s.student_number for s in course.students]
        return student_achievement_matrix(
            course.learning_outcomes, students, self._course_contributions(course)
        )
