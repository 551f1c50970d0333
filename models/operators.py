# models/operators.py
from sqlmodel import SQLModel, Field
from sqlalchemy import CheckConstraint, Column, JSON
from typing import Optional
from datetime import datetime


class Operator(SQLModel, table=True):
    __tablename__ = "operators"
    __table_args__ = (
        CheckConstraint("current_chat_count >= 0", name="ck_operators_chat_count_non_negative"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    name: str
    is_available: bool = False
    is_suspended: bool = False

    # = cantidad de chats asignados en estado active/idle
    current_chat_count: int = 0
    max_concurrent_chats: int = 5

    specializations: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    quality_score: float = 100.0
    idle_incidents: int = 0

    last_activity_at: Optional[datetime] = None
