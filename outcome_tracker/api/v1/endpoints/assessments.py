"""Outcome achievement endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from outcome_tracker.core.database import get_db
from outcome_tracker.schemas.assessment import (
    LearningOutcomeAchievement,
    ProgramOutcomeAchievement,
    QuestionPerformance,
)
from outcome_tracker.services.aggregation import AssessmentService

router = APIRouter()


@router.get("/exam/{exam_id}/question-lo-performance", response_model=list[QuestionPerformance])
def get_question_lo_performance(
    exam_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """Average score per question with the learning outcomes it measures."""
    return AssessmentService(db).get_question_lo_performance(exam_id)


@router.get("/course/{course_id}/lo-achievement", response_model=list[LearningOutcomeAchievement])
def get_lo_achievement(
    course_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Learning outcome (ÖÇ) achievement over all enrolled students of the course.
    """
    return AssessmentService(db).get_lo_achievement(course_id)


@router.get("/course/{course_id}/po-achievement", response_model=list[ProgramOutcomeAchievement])
def get_po_achievement(
    course_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Program outcome (PÇ) achievement: unweighted mean of the ÖÇ achievements mapped to each PÇ.
    """
    return AssessmentService(db).get_po_achievement(course_id)


@router.get("/course/{course_id}/student-achievements", response_model=dict[str, dict[str, float]])
def get_student_achievements(
    course_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """Student number -> ÖÇ code -> percentage matrix."""
    return AssessmentService(db).get_student_achievements(course_id)
