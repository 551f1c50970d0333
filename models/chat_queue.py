# models/chat_queue.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional
from datetime import datetime

from models.enums import UserTier
from services.clock import utcnow


class ChatQueueEntry(SQLModel, table=True):
    __tablename__ = "chat_queue"

    id: Optional[int] = Field(default=None, primary_key=True)

    # un chat aparece una sola vez en la cola
    chat_id: int = Field(foreign_key="chat.id", unique=True, index=True)

    priority_score: int = Field(default=0, index=True)
    user_tier: UserTier = UserTier.FREE
    lifetime_value: int = 0

    entered_queue_at: datetime = Field(default_factory=utcnow, index=True)
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None

    required_specializations: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    excluded_operator_ids: list[int] = Field(default_factory=list, sa_column=Column(JSON))
