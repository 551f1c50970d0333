# models/message.py

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import CheckConstraint

from models.enums import SenderType
from services.clock import utcnow


class Message(SQLModel, table=True):
    __table_args__ = (CheckConstraint("credits_charged >= 0", name="ck_message_credits_charged"),)

    id: Optional[int] = Field(default=None, primary_key=True)

    chat_id: int = Field(foreign_key="chat.id", nullable=False, index=True)

    sender_type: SenderType = Field(nullable=False)
    content: str

    is_free_message: bool = Field(default=False, nullable=False)
    credits_charged: int = Field(default=0, nullable=False)

    # operador a cargo al momento del mensaje
    handled_by_operator_id: Optional[int] = Field(default=None, foreign_key="operators.id")

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
