"""Course service."""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from outcome_tracker.core.exceptions import ConflictError, NotFoundError
from outcome_tracker.models.course import Course, CourseLearningOutcome, CourseStudent
from outcome_tracker.schemas.course import CourseCreate

logger = logging.getLogger(__name__)


class CourseService:
    """Course reference data: learning outcomes and enrollment."""

    def __init__(self, db: Session):
        self.db = db

    def create_course(self, request: CourseCreate) -> Course:
        """Create a course with its learning outcomes and students."""
        existing = self.db.execute(
            select(Course.id).where(Course.code == request.code)
        ).first()
        if existing:
            raise ConflictError(f'Course code "{request.code}" already exists')

        course = Course(
            code=request.code,
            name=request.name,
            semester=request.semester,
            description=request.description,
            learning_outcomes=[
                CourseLearningOutcome(
                    code=lo.code,
                    description=lo.description,
                    program_outcomes=lo.program_outcomes,
                )
                for lo in request.learning_outcomes
            ],
        )
        seen = set()
        for student in request.students:
            if student.student_number in seen:
                continue
            seen.add(student.student_number)
            course.students.append(
                CourseStudent(student_number=student.student_number, full_name=student.full_name)
            )

        self.db.add(course)
        self.db.flush()
        self.db.refresh(course)
        logger.info(
            f"[COURSE] Created {course.code}: {len(course.learning_outcomes)} ÖÇ, "
            f"{len(course.students)} students"
        )
        return course

    def get_course(self, course_id: int) -> Course:
        """Get course by ID."""
        course = self.db.get(Course, course_id)
        if not course:
            raise NotFoundError("Course", str(course_id))
        return course

    def list_courses(self) -> list[Course]:
        result = self.db.execute(select(Course).order_by(Course.code))
        return list(result.scalars().all())
