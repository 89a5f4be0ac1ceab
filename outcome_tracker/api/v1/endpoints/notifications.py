"""Notification endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from outcome_tracker.core.database import get_db
from outcome_tracker.schemas.common import MessageResponse, PaginatedResponse
from outcome_tracker.schemas.notification import NotificationMarkRead, NotificationResponse
from outcome_tracker.services.notification import NotificationService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[NotificationResponse])
def list_notifications(
    db: Annotated[Session, Depends(get_db)],
    is_read: bool | None = None,
    notification_type: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """
    List notifications, newest first.
    """
    service = NotificationService(db)
    notifications, total = service.list_notifications(
        is_read=is_read,
        notification_type=notification_type,
        page=page,
        page_size=page_size,
    )

    return PaginatedResponse(
        items=notifications,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.post("/mark-read", response_model=MessageResponse)
def mark_notifications_read(
    request: NotificationMarkRead,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Mark specific notifications as read.
    """
    service = NotificationService(db)
    count = service.mark_as_read(request.notification_ids)
    return MessageResponse(message=f"Marked {count} notifications as read")
