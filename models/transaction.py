# models/transaction.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional
from datetime import datetime

from models.enums import TransactionStatus
from services.clock import utcnow


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: Optional[int] = Field(default=None, primary_key=True)

    real_user_id: int = Field(foreign_key="real_users.id", index=True)

    # clave de idempotencia: un pago externo => un solo crédito
    provider_reference: str = Field(unique=True, index=True)
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, index=True)

    credits_amount: int
    # monto en unidades menores (kobo / centavos)
    amount: int = 0

    webhook_received_count: int = 0
    last_webhook_at: Optional[datetime] = None

    needs_manual_review: bool = False
    review_reason: Optional[str] = None

    provider_response: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    reconciled_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
