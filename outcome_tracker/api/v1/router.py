"""Main API router aggregating all module routers."""

from fastapi import APIRouter

from outcome_tracker.api.v1.endpoints import (
    assessments,
    courses,
    exams,
    notifications,
)

api_router = APIRouter()

# Courses with ÖÇ -> PÇ mapping and enrollment
api_router.include_router(
    courses.router,
    prefix="/courses",
    tags=["Courses"],
)

# Exams, scoring and results
api_router.include_router(
    exams.router,
    prefix="/exams",
    tags=["Exams"],
)

# ÖÇ / PÇ achievement
api_router.include_router(
    assessments.router,
    prefix="/assessments",
    tags=["Assessments"],
)

# Notifications
api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"],
)
