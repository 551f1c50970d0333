# models/real_user.py
from sqlmodel import SQLModel, Field
from sqlalchemy import CheckConstraint
from typing import Optional
from datetime import datetime

from models.enums import UserTier


class RealUser(SQLModel, table=True):
    __tablename__ = "real_users"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_real_users_credits_non_negative"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    username: str
    credits: int = 0
    user_tier: UserTier = UserTier.FREE

    # lifetime value (en moneda, no créditos)
    total_spent: int = 0
    total_messages_sent: int = 0

    last_active_at: Optional[datetime] = None
