# path: services/lifecycle_service.py
"""
Máquina de estados del chat: active -> idle -> escalated -> closed.

Toda transición es un UPDATE condicional (WHERE status = <esperado>): si el
chat cambió entre la lectura y la escritura, la transición no se aplica y se
devuelve False en lugar de pisar el estado nuevo.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, update
from sqlmodel import Session, select

from models.chat import Chat
from models.chat_queue import ChatQueueEntry
from models.enums import (
    LIVE_STATUSES,
    ChatFlag,
    ChatStatus,
    CloseReason,
    NotificationPriority,
    NotificationType,
    SenderType,
)
from services.counters import decrement_operator_chats
from services.errors import ChatNotWritable, InvalidTransition, NotFound
from services.notification_service import notify_admin

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[ChatStatus, frozenset[ChatStatus]] = {
    ChatStatus.ACTIVE: frozenset({ChatStatus.IDLE, ChatStatus.ESCALATED, ChatStatus.CLOSED}),
    ChatStatus.IDLE: frozenset({ChatStatus.ACTIVE, ChatStatus.ESCALATED, ChatStatus.CLOSED}),
    ChatStatus.ESCALATED: frozenset({ChatStatus.ACTIVE, ChatStatus.CLOSED}),
    ChatStatus.CLOSED: frozenset(),
}

ESCALATION_PRIORITY = {
    ChatFlag.MAX_REASSIGNMENTS_REACHED: NotificationPriority.HIGH,
    ChatFlag.OPERATOR_IDLE: NotificationPriority.HIGH,
    ChatFlag.QUEUE_TIMEOUT: NotificationPriority.CRITICAL,
}


def can_transition(current: ChatStatus, target: ChatStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[ChatStatus(current)]


def lock_chat(session: Session, chat_id: int) -> Chat:
    chat = session.exec(select(Chat).where(Chat.id == chat_id).with_for_update()).first()
    if not chat:
        raise NotFound(f"chat {chat_id} not found")
    return chat


def transition(
    session: Session,
    chat: Chat,
    target: ChatStatus,
    *,
    now: datetime,
    expected: ChatStatus | None = None,
    values: dict[str, Any] | None = None,
    extra_where: tuple = (),
) -> bool:
    """
    Mueve el chat a `target` si sigue en `expected` (por defecto el estado leído)
    y con el mismo operador asignado. Aplica los efectos sobre contadores y cola.
    No commitea.
    """
    current = ChatStatus(expected or chat.status)
    if not can_transition(current, target):
        raise InvalidTransition(chat.id, current.value, target.value)

    operator_id = chat.assigned_operator_id
    operator_cond = (
        Chat.assigned_operator_id.is_(None) if operator_id is None else Chat.assigned_operator_id == operator_id
    )

    stmt = (
        update(Chat)
        .where(Chat.id == chat.id, Chat.status == current, operator_cond, *extra_where)
        .values(status=target, updated_at=now, **(values or {}))
        .execution_options(synchronize_session="fetch")
    )
    if session.execute(stmt).rowcount != 1:
        logger.info("[LIFECYCLE] chat %s cambió de estado, no se aplica %s -> %s", chat.id, current.value, target.value)
        return False

    # el operador deja de "tener" el chat
    if operator_id is not None and current in LIVE_STATUSES and target not in LIVE_STATUSES:
        decrement_operator_chats(session, operator_id)

    if target in (ChatStatus.ESCALATED, ChatStatus.CLOSED):
        session.execute(
            delete(ChatQueueEntry)
            .where(ChatQueueEntry.chat_id == chat.id)
            .execution_options(synchronize_session="fetch")
        )

    logger.info("[LIFECYCLE] chat %s: %s -> %s", chat.id, current.value, target.value)
    return True


def escalate(
    session: Session,
    chat: Chat,
    flag: ChatFlag,
    *,
    now: datetime,
    expected: ChatStatus | None = None,
    details: dict[str, Any] | None = None,
) -> bool:
    applied = transition(
        session,
        chat,
        ChatStatus.ESCALATED,
        now=now,
        expected=expected,
        values={"flags": chat.flags_with(flag), "escalated_at": now},
    )
    if not applied:
        return False

    notify_admin(
        session,
        type=NotificationType.CHAT_ESCALATION,
        message=f"Chat {chat.id} escalated: {flag.value}",
        details={
            "chat_id": chat.id,
            "real_user_id": chat.real_user_id,
            "operator_id": chat.assigned_operator_id,
            "assignment_count": chat.assignment_count,
            "reason": flag.value,
            **(details or {}),
        },
        priority=ESCALATION_PRIORITY[flag],
        now=now,
    )
    return True


def close_chat(
    session: Session,
    chat: Chat,
    reason: CloseReason,
    *,
    now: datetime,
    expected: ChatStatus | None = None,
    extra_where: tuple = (),
) -> bool:
    return transition(
        session,
        chat,
        ChatStatus.CLOSED,
        now=now,
        expected=expected,
        values={"close_reason": reason, "closed_at": now},
        extra_where=extra_where,
    )


def admin_close(session: Session, chat_id: int, *, admin_id: int, now: datetime) -> Chat:
    chat = lock_chat(session, chat_id)
    if chat.status == ChatStatus.CLOSED:
        raise InvalidTransition(chat.id, chat.status.value, ChatStatus.CLOSED.value)

    if not close_chat(session, chat, CloseReason.ADMIN_CLOSED, now=now):
        session.rollback()
        raise ChatNotWritable(f"chat {chat_id} changed state, retry")

    session.commit()
    session.refresh(chat)
    logger.info("[LIFECYCLE] chat %s cerrado por admin %s", chat.id, admin_id)
    return chat


def mark_idle(session: Session, chat_id: int, *, operator_id: int, now: datetime) -> Chat:
    chat = lock_chat(session, chat_id)
    if chat.assigned_operator_id != operator_id:
        raise ChatNotWritable(f"chat {chat_id} is not assigned to operator {operator_id}")

    if not transition(session, chat, ChatStatus.IDLE, now=now, values={"last_operator_activity_at": now}):
        session.rollback()
        raise ChatNotWritable(f"chat {chat_id} changed state, retry")

    session.commit()
    session.refresh(chat)
    return chat


def record_message(
    session: Session,
    chat: Chat,
    sender_type: SenderType,
    *,
    credits_charged: int,
    now: datetime,
) -> None:
    """
    Resetea los relojes de actividad. Un chat idle vuelve a active con cualquier
    mensaje nuevo (usuario u operador).
    """
    current = ChatStatus(chat.status)
    if current not in LIVE_STATUSES:
        raise ChatNotWritable(f"chat {chat.id} is {current.value}")

    values: dict[str, Any] = {
        "last_message_at": now,
        "message_count": Chat.message_count + 1,
        "updated_at": now,
    }
    if sender_type == SenderType.REAL:
        values["last_user_message_at"] = now
        values["user_message_count"] = Chat.user_message_count + 1
        values["total_credits_spent"] = Chat.total_credits_spent + credits_charged
    else:
        values["last_operator_activity_at"] = now

    if current == ChatStatus.IDLE:
        values["status"] = ChatStatus.ACTIVE

    stmt = (
        update(Chat)
        .where(Chat.id == chat.id, Chat.status == current)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if session.execute(stmt).rowcount != 1:
        raise ChatNotWritable(f"chat {chat.id} changed state, retry")

    if current == ChatStatus.IDLE:
        logger.info("[LIFECYCLE] chat %s: idle -> active (mensaje nuevo)", chat.id)
