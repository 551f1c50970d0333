# path: services/notification_service.py
from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, select

from models.admin_notification import AdminNotification
from models.enums import NotificationPriority, NotificationType
from services.errors import NotFound

logger = logging.getLogger(__name__)


def notify_admin(
    session: Session,
    *,
    type: NotificationType,
    message: str,
    details: dict[str, Any] | None = None,
    priority: NotificationPriority = NotificationPriority.NORMAL,
    now=None,
) -> AdminNotification:
    """Agrega la notificación a la sesión; el commit es del que llama."""
    notification = AdminNotification(
        type=type,
        message=message,
        details=details or {},
        priority=priority,
    )
    if now is not None:
        notification.created_at = now

    session.add(notification)
    logger.info("[ADMIN NOTIFY] %s (%s): %s", type.value, priority.value, message)
    return notification


def list_notifications(session: Session, *, unread_only: bool = False, limit: int = 100) -> list[AdminNotification]:
    stmt = select(AdminNotification)
    if unread_only:
        stmt = stmt.where(AdminNotification.is_read == False)  # noqa: E712
    stmt = stmt.order_by(AdminNotification.created_at.desc(), AdminNotification.id.desc()).limit(limit)
    return list(session.exec(stmt).all())


def mark_read(session: Session, notification_id: int) -> AdminNotification:
    notification = session.get(AdminNotification, notification_id)
    if not notification:
        raise NotFound(f"notification {notification_id} not found")

    notification.is_read = True
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return notification
