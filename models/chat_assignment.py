# models/chat_assignment.py
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from models.enums import AssignmentReason
from services.clock import utcnow


class ChatAssignment(SQLModel, table=True):
    __tablename__ = "chat_assignments"

    id: Optional[int] = Field(default=None, primary_key=True)

    chat_id: int = Field(foreign_key="chat.id", index=True)
    from_operator_id: Optional[int] = Field(default=None, foreign_key="operators.id")
    to_operator_id: int = Field(foreign_key="operators.id")

    reason: AssignmentReason
    # "system" | "admin:<user_id>" | "operator:<operator_id>"
    actor: str
    # motivo libre que escribe el admin
    note: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, index=True)
