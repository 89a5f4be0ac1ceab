"""Database models package."""

from outcome_tracker.models.batch import BatchFileStatus, BatchJob, FileStatus
from outcome_tracker.models.course import Course, CourseLearningOutcome, CourseStudent
from outcome_tracker.models.exam import (
    EXAM_MAX_SCORE,
    Exam,
    ExamQuestion,
    ExamType,
    QuestionScore,
    ResultSource,
    StudentExamResult,
)
from outcome_tracker.models.notification import Notification

__all__ = [
    # Course
    "Course",
    "CourseLearningOutcome",
    "CourseStudent",
    # Exam
    "EXAM_MAX_SCORE",
    "Exam",
    "ExamQuestion",
    "ExamType",
    "QuestionScore",
    "ResultSource",
    "StudentExamResult",
    # Batch
    "BatchJob",
    "BatchFileStatus",
    "FileStatus",
    # Notification
    "Notification",
]
