# models/chat.py

from sqlmodel import SQLModel, Field
from sqlalchemy import CheckConstraint, Column, JSON
from typing import Optional
from datetime import datetime

from models.enums import ChatFlag, ChatStatus, CloseReason
from services.clock import utcnow


class Chat(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("assignment_count >= 0", name="ck_chat_assignment_count"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    real_user_id: int = Field(foreign_key="real_users.id", index=True)
    fictional_profile_id: int = Field(foreign_key="fictional_profiles.id", index=True)

    status: ChatStatus = Field(default=ChatStatus.ACTIVE, index=True)
    assigned_operator_id: Optional[int] = Field(default=None, foreign_key="operators.id", index=True)

    assignment_count: int = 0
    # ordered set, solo se agrega al final
    previous_operator_ids: list[int] = Field(default_factory=list, sa_column=Column(JSON))
    flags: list[str] = Field(default_factory=list, sa_column=Column(JSON))

    last_message_at: Optional[datetime] = None
    last_user_message_at: Optional[datetime] = None
    last_operator_activity_at: Optional[datetime] = None

    message_count: int = 0
    user_message_count: int = 0
    total_credits_spent: int = 0

    escalated_at: Optional[datetime] = None
    close_reason: Optional[CloseReason] = None
    closed_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # -------------------------
    # flags (vocabulario cerrado)
    # -------------------------
    @property
    def flag_set(self) -> set[ChatFlag]:
        return {ChatFlag(f) for f in (self.flags or [])}

    def has_flag(self, flag: ChatFlag) -> bool:
        return flag in self.flag_set

    def flags_with(self, flag: ChatFlag) -> list[str]:
        current = [ChatFlag(f).value for f in (self.flags or [])]
        if flag.value not in current:
            current.append(flag.value)
        return current

    def flags_without(self, *remove: ChatFlag) -> list[str]:
        drop = {f.value for f in remove}
        return [ChatFlag(f).value for f in (self.flags or []) if f not in drop]

    def operators_with(self, operator_id: int) -> list[int]:
        history = list(self.previous_operator_ids or [])
        if operator_id not in history:
            history.append(operator_id)
        return history
