"""Notification service."""

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from outcome_tracker.models.batch import BatchJob
from outcome_tracker.models.notification import Notification
from outcome_tracker.schemas.notification import NotificationCreate, NotificationResponse

BATCH_COMPLETE = "batch_complete"
BATCH_ERROR = "batch_error"


class NotificationService:
    """In-app notification service."""

    def __init__(self, db: Session):
        self.db = db

    def create_notification(self, request: NotificationCreate) -> NotificationResponse:
        """Create a new notification."""
        notification = Notification(
            title=request.title,
            message=request.message,
            notification_type=request.notification_type,
            link=request.link,
            action_data=request.action_data,
        )
        self.db.add(notification)
        self.db.flush()
        self.db.refresh(notification)

        return NotificationResponse.model_validate(notification)

    def list_notifications(
        self,
        is_read: bool | None = None,
        notification_type: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[NotificationResponse], int]:
        """List notifications, newest first."""
        query = select(Notification)
        if is_read is not None:
            query = query.where(Notification.is_read == is_read)
        if notification_type:
            query = query.where(Notification.notification_type == notification_type)

        # Count total
        count_result = self.db.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar() or 0

        # Apply pagination and ordering
        query = (
            query
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )

        result = self.db.execute(query)
        notifications = result.scalars().all()

        return [NotificationResponse.model_validate(n) for n in notifications], total

    def mark_as_read(self, notification_ids: list[int]) -> int:
        """Mark notifications as read. Returns count of updated."""
        result = self.db.execute(
            update(Notification)
            .where(
                Notification.id.in_(notification_ids),
                Notification.is_read == False,
            )
            .values(
                is_read=True,
                read_at=datetime.now(timezone.utc),
            )
        )
        self.db.flush()
        return result.rowcount


def _batch_link(job: BatchJob) -> str:
    return f"/exams/{job.exam_id}/batch-status?batch_id={job.batch_id}"


# Convenience functions for batch notifications
def notify_batch_completed(db: Session, job: BatchJob) -> None:
    """Send notification for a finished batch."""
    service = NotificationService(db)
    service.create_notification(
        NotificationCreate(
            title="Batch Scoring Completed",
            message=(
                f"Batch {job.batch_id} finished: {job.success_count} succeeded, "
                f"{job.failed_count} failed out of {job.total_files} files."
            ),
            notification_type=BATCH_COMPLETE,
            link=_batch_link(job),
            action_data={
                "batch_id": job.batch_id,
                "exam_id": job.exam_id,
                "success_count": job.success_count,
                "failed_count": job.failed_count,
                "total_files": job.total_files,
            },
        )
    )


def notify_batch_failures(
    db: Session,
    job: BatchJob,
    failed_count: int,
    processed_count: int,
) -> None:
    """Send notification when failures pile up in a running batch."""
    service = NotificationService(db)
    service.create_notification(
        NotificationCreate(
            title="Batch Scoring Errors",
            message=(
                f"Batch {job.batch_id}: {failed_count} of {processed_count} files "
                f"processed so far have failed."
            ),
            notification_type=BATCH_ERROR,
            link=_batch_link(job),
            action_data={
                "batch_id": job.batch_id,
                "exam_id": job.exam_id,
                "failed_count": failed_count,
                "processed_count": processed_count,
            },
        )
    )
