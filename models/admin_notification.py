# models/admin_notification.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional
from datetime import datetime

from models.enums import NotificationPriority, NotificationType
from services.clock import utcnow


class AdminNotification(SQLModel, table=True):
    __tablename__ = "admin_notifications"

    id: Optional[int] = Field(default=None, primary_key=True)

    type: NotificationType = Field(index=True)
    message: str

    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    priority: NotificationPriority = Field(default=NotificationPriority.NORMAL, index=True)
    is_read: bool = False

    created_at: datetime = Field(default_factory=utcnow, index=True)
