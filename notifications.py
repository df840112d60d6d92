import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from db import get_db
from deps import require_user
from errors import ApiError, internal_error
from models import NOTIFICATION_READ, NOTIFICATION_UNREAD, Notification

logger = logging.getLogger(__name__)

router = APIRouter()

NOTIFICATIONS_PAGE_SIZE = 50


class NotificationRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, user_id: str, limit: int = NOTIFICATIONS_PAGE_SIZE) -> List[Notification]:
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.date_created.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )

    def get_owned(self, notification_id: int, user_id: str) -> Notification:
        notification = self.db.get(Notification, notification_id)
        if notification is None:
            raise ApiError(404, "Notification not found")
        if notification.user_id != user_id:
            raise ApiError(403, "Access to this notification is not allowed")
        return notification

    def mark_read(self, notification_id: int, user_id: str) -> Notification:
        notification = self.get_owned(notification_id, user_id)
        notification.status = NOTIFICATION_READ
        self.db.commit()
        return notification

    def mark_all_read(self, user_id: str) -> int:
        updated = (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.status == NOTIFICATION_UNREAD)
            .update({Notification.status: NOTIFICATION_READ}, synchronize_session=False)
        )
        self.db.commit()
        return updated

    def delete(self, notification_id: int, user_id: str) -> None:
        notification = self.get_owned(notification_id, user_id)
        self.db.delete(notification)
        self.db.commit()


def get_notification_repository(db: Session = Depends(get_db)) -> NotificationRepository:
    return NotificationRepository(db=db)


@router.get("/", summary="Notifications of the current user")
def list_notifications(
    user_id: str = Depends(require_user),
    repo: NotificationRepository = Depends(get_notification_repository),
):
    try:
        notifications = repo.list_for_user(user_id)
        unread_count = sum(1 for n in notifications if n.status == NOTIFICATION_UNREAD)
        return {
            "success": True,
            "data": [n.to_dict() for n in notifications],
            "unread_count": unread_count,
            "total": len(notifications),
        }
    except Exception as e:
        logger.error(f"Error fetching notifications for user {user_id}: {e}")
        raise internal_error(e)


@router.patch("/read-all", summary="Mark every notification as read")
def mark_all_notifications_read(
    user_id: str = Depends(require_user),
    repo: NotificationRepository = Depends(get_notification_repository),
):
    try:
        updated = repo.mark_all_read(user_id)
        logger.info(f"{updated} notifications marked as read for user {user_id}")
        return {
            "success": True,
            "message": f"{updated} notification(s) marked as read",
            "data": {"updated_count": updated},
        }
    except Exception as e:
        logger.error(f"Error marking all notifications read for user {user_id}: {e}")
        raise internal_error(e)


@router.patch("/{notification_id}/read", summary="Mark a notification as read")
def mark_notification_read(
    notification_id: int,
    user_id: str = Depends(require_user),
    repo: NotificationRepository = Depends(get_notification_repository),
):
    try:
        repo.mark_read(notification_id, user_id)
        logger.info(f"Notification {notification_id} marked as read by user {user_id}")
        return {
            "success": True,
            "message": "Notification marked as read",
            "data": {"id": notification_id, "status": NOTIFICATION_READ},
        }
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error marking notification {notification_id} read: {e}")
        raise internal_error(e)


@router.delete("/{notification_id}", summary="Delete a notification")
def delete_notification(
    notification_id: int,
    user_id: str = Depends(require_user),
    repo: NotificationRepository = Depends(get_notification_repository),
):
    try:
        repo.delete(notification_id, user_id)
        logger.info(f"Notification {notification_id} deleted by user {user_id}")
        return {"success": True, "message": "Notification deleted"}
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error deleting notification {notification_id}: {e}")
        raise internal_error(e)
