"""Notification schemas."""

from datetime import datetime
from typing import Any

from pydantic import Field

from outcome_tracker.schemas.common import BaseSchema


class NotificationCreate(BaseSchema):
    """Notification creation schema (internal use)."""

    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    notification_type: str = Field(..., min_length=1, max_length=50)
    link: str | None = None
    action_data: dict[str, Any] | None = None


class NotificationResponse(BaseSchema):
    """Notification response schema."""

    id: int
    title: str
    message: str
    notification_type: str
    is_read: bool
    read_at: datetime | None
    link: str | None
    action_data: dict[str, Any] | None
    created_at: datetime


class NotificationMarkRead(BaseSchema):
    """Mark notifications as read."""

    notification_ids: list[int] = Field(..., min_length=1)
