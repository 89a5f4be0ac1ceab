"""Course endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from outcome_tracker.core.database import get_db
from outcome_tracker.schemas.course import CourseCreate, CourseResponse
from outcome_tracker.services.course import CourseService

router = APIRouter()


@router.post("", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
def create_course(
    request: CourseCreate,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Create a course with its learning outcomes (ÖÇ -> PÇ mapping) and enrolled students.
    """
    return CourseService(db).create_course(request)


@router.get("", response_model=list[CourseResponse])
def list_courses(db: Annotated[Session, Depends(get_db)]):
    """List all courses."""
    return CourseService(db).list_courses()


@router.get("/{course_id}", response_model=CourseResponse)
def get_course(
    course_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """Get a course by ID."""
    return CourseService(db).get_course(course_id)
