"""Outcome aggregation schemas."""

from outcome_tracker.schemas.common import BaseSchema


class QuestionPerformance(BaseSchema):
    """Average performance on one question."""

    question_number: int
    max_score: float
    learning_outcome_codes: list[str]
    student_count: int
    average_score: float
    success_rate: float


class LearningOutcomeAchievement(BaseSchema):
    """Course-level ÖÇ achievement."""

    code: str
    description: str
    related_program_outcomes: list[str]
    student_count: int
    achieved_percentage: float


class ContributingOutcome(BaseSchema):
    """ÖÇ contribution to a PÇ."""

    code: str
    achieved_percentage: float


class ProgramOutcomeAchievement(BaseSchema):
    """PÇ achievement derived from ÖÇ achievements."""

    code: str
    achieved_percentage: float
    contributing_los: list[ContributingOutcome]
    contributing_lo_count: int
