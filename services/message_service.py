# path: services/message_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlmodel import Session

from models.enums import LIVE_STATUSES, ChatStatus, SenderType
from models.fictional_profile import FictionalProfile
from models.message import Message
from models.real_user import RealUser
from services import credit_meter
from services.errors import ChatNotWritable, EngineError, NotFound
from services.lifecycle_service import lock_chat, record_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    message: Message
    credits_charged: int
    remaining_credits: int | None


def send_message(
    session: Session,
    *,
    chat_id: int,
    sender_type: SenderType | str,
    content: str,
    sender_real_user_id: int | None = None,
    sender_operator_id: int | None = None,
    now: datetime,
) -> SendResult:
    """
    Débito + mensaje + relojes del chat en una sola transacción.
    Si algo falla no queda ni el débito ni el mensaje.
    """
    sender_type = SenderType(sender_type)

    try:
        chat = lock_chat(session, chat_id)
        if ChatStatus(chat.status) not in LIVE_STATUSES:
            raise ChatNotWritable(f"chat {chat_id} is {ChatStatus(chat.status).value}")

        charged = 0
        remaining = None

        if sender_type == SenderType.REAL:
            if sender_real_user_id != chat.real_user_id:
                raise NotFound(f"chat {chat_id} not found")

            user = session.get(RealUser, chat.real_user_id)
            profile = session.get(FictionalProfile, chat.fictional_profile_id)
            if not user or not profile:
                raise NotFound(f"chat {chat_id}: user or profile missing")

            # índice 1-based del mensaje del usuario dentro del chat
            message_index = chat.user_message_count + 1
            charged = credit_meter.cost(message_index, user.user_tier, profile.is_featured, now)
            remaining = credit_meter.debit(session, user.id, charged)

            session.execute(
                update(RealUser)
                .where(RealUser.id == user.id)
                .values(total_messages_sent=RealUser.total_messages_sent + 1, last_active_at=now)
                .execution_options(synchronize_session="fetch")
            )
        else:
            if sender_operator_id is None or chat.assigned_operator_id != sender_operator_id:
                raise ChatNotWritable(f"chat {chat_id} is not assigned to operator {sender_operator_id}")

        message = Message(
            chat_id=chat.id,
            sender_type=sender_type,
            content=content,
            is_free_message=charged == 0 and sender_type == SenderType.REAL,
            credits_charged=charged,
            handled_by_operator_id=chat.assigned_operator_id,
            created_at=now,
        )
        session.add(message)

        record_message(session, chat, sender_type, credits_charged=charged, now=now)

        session.commit()
    except EngineError:
        session.rollback()
        raise

    session.refresh(message)
    logger.info(
        "[MESSAGE] chat %s: mensaje %s (%s, %s créditos)",
        chat_id,
        message.id,
        sender_type.value,
        charged,
    )
    return SendResult(message=message, credits_charged=charged, remaining_credits=remaining)
