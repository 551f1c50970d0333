# models/credit_refund.py
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from models.enums import RefundReason
from services.clock import utcnow


class CreditRefund(SQLModel, table=True):
    __tablename__ = "credit_refunds"

    id: Optional[int] = Field(default=None, primary_key=True)

    real_user_id: int = Field(foreign_key="real_users.id", index=True)
    amount: int
    reason: RefundReason

    # un mensaje se reembolsa una sola vez
    message_id: Optional[int] = Field(default=None, foreign_key="message.id", unique=True)
    chat_id: Optional[int] = Field(default=None, foreign_key="chat.id")

    processed_by: int
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
