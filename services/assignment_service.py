# path: services/assignment_service.py
"""
Handoffs de chats entre operadores.

Un handoff es una sola transacción:
  - +1 al operador nuevo (con control de capacidad)
  - -1 al operador anterior si el chat estaba active/idle
  - UPDATE condicional del chat (status + assignment_count leídos)
  - registro de auditoría en chat_assignments
Si cualquier paso falla, el que llama hace rollback y no queda nada a medias.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import delete, update
from sqlmodel import Session, select

import config
from models.chat import Chat
from models.chat_assignment import ChatAssignment
from models.chat_queue import ChatQueueEntry
from models.enums import (
    LIVE_STATUSES,
    AssignmentReason,
    ChatFlag,
    ChatStatus,
    NotificationPriority,
    NotificationType,
)
from models.operators import Operator
from services import queue_manager
from services.counters import decrement_operator_chats, increment_operator_chats
from services.errors import (
    AssignmentConflict,
    ChatNotWritable,
    InvalidTransition,
    MaxReassignmentsReached,
    NotFound,
    OperatorUnavailable,
)
from services.lifecycle_service import escalate, lock_chat
from services.notification_service import notify_admin

logger = logging.getLogger(__name__)


SYSTEM_ACTOR = "system"


def admin_actor(user_id: int) -> str:
    return f"admin:{user_id}"


def operator_actor(operator_id: int) -> str:
    return f"operator:{operator_id}"


# ---------------------------
# Handoff
# ---------------------------

def _handoff(
    session: Session,
    chat: Chat,
    operator: Operator,
    *,
    reason: AssignmentReason,
    actor: str,
    now: datetime,
    count_increment: int = 1,
    flags: list[str] | None = None,
    note: str | None = None,
) -> ChatAssignment:
    from_operator_id = chat.assigned_operator_id
    current = ChatStatus(chat.status)
    snapshot_count = chat.assignment_count

    increment_operator_chats(session, operator.id)
    if from_operator_id is not None and current in LIVE_STATUSES:
        decrement_operator_chats(session, from_operator_id)

    values = {
        "status": ChatStatus.ACTIVE,
        "assigned_operator_id": operator.id,
        "assignment_count": Chat.assignment_count + count_increment,
        "previous_operator_ids": chat.operators_with(operator.id),
        "last_operator_activity_at": now,
        "updated_at": now,
    }
    if flags is not None:
        values["flags"] = flags

    result = session.execute(
        update(Chat)
        .where(
            Chat.id == chat.id,
            Chat.status == current,
            Chat.assignment_count == snapshot_count,
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise AssignmentConflict(f"chat {chat.id} changed while assigning")

    record = ChatAssignment(
        chat_id=chat.id,
        from_operator_id=from_operator_id,
        to_operator_id=operator.id,
        reason=reason,
        actor=actor,
        note=note,
        created_at=now,
    )
    session.add(record)
    session.flush()

    logger.info(
        "[ASSIGN] chat %s: operador %s -> %s (%s, count=%s)",
        chat.id,
        from_operator_id,
        operator.id,
        reason.value,
        snapshot_count + count_increment,
    )
    return record


def _refuse_if_exhausted(session: Session, chat: Chat, *, now: datetime) -> None:
    """Llegó al máximo: se escala (queda en la sesión) y se corta el handoff."""
    if chat.assignment_count < config.MAX_REASSIGNMENTS:
        return

    if chat.status in LIVE_STATUSES:
        escalate(
            session,
            chat,
            ChatFlag.MAX_REASSIGNMENTS_REACHED,
            now=now,
            details={"source": "handoff"},
        )
    raise MaxReassignmentsReached(chat.id, chat.assignment_count)


def assign(
    session: Session,
    chat: Chat,
    operator: Operator,
    *,
    reason: AssignmentReason,
    actor: str = SYSTEM_ACTOR,
    now: datetime,
) -> ChatAssignment:
    """
    Asigna el chat al operador. No commitea.
    Con assignment_count >= MAX_REASSIGNMENTS escala y levanta MaxReassignmentsReached;
    el que llama debe commitear igual para que el escalado quede persistido.
    """
    if chat.status not in LIVE_STATUSES:
        raise InvalidTransition(chat.id, ChatStatus(chat.status).value, ChatStatus.ACTIVE.value)

    _refuse_if_exhausted(session, chat, now=now)
    return _handoff(session, chat, operator, reason=reason, actor=actor, now=now)


def recent_operator_ids(session: Session, chat: Chat) -> list[int]:
    """Operador actual + los últimos REASSIGN_EXCLUSION_WINDOW que tuvo el chat."""
    history = session.exec(
        select(ChatAssignment.to_operator_id)
        .where(ChatAssignment.chat_id == chat.id)
        .order_by(ChatAssignment.created_at.desc(), ChatAssignment.id.desc())
        .limit(config.REASSIGN_EXCLUSION_WINDOW)
    ).all()

    recent = list(history)
    if chat.assigned_operator_id is not None:
        recent.append(chat.assigned_operator_id)
    return recent


def reassign(
    session: Session,
    chat_id: int,
    to_operator_id: int,
    *,
    reason_text: str | None = None,
    actor: str,
    now: datetime,
) -> ChatAssignment:
    """
    Reasignación manual (admin). Commitea.

    - chat escalado: override del admin, no suma assignment_count.
    - chat active/idle: handoff normal; al llegar al máximo se escala.
    """
    chat = lock_chat(session, chat_id)
    status = ChatStatus(chat.status)
    if status == ChatStatus.CLOSED:
        raise InvalidTransition(chat.id, status.value, ChatStatus.ACTIVE.value)

    operator = session.exec(
        select(Operator).where(Operator.id == to_operator_id).with_for_update()
    ).first()
    if not operator:
        raise NotFound(f"operator {to_operator_id} not found")
    if operator.is_suspended or not operator.is_available:
        raise OperatorUnavailable(f"operator {to_operator_id} is not available")
    if operator.current_chat_count >= operator.max_concurrent_chats:
        raise OperatorUnavailable(f"operator {to_operator_id} is at capacity")

    if to_operator_id in recent_operator_ids(session, chat):
        raise OperatorUnavailable(f"operator {to_operator_id} handled chat {chat_id} recently")

    try:
        if status == ChatStatus.ESCALATED:
            record = _handoff(
                session,
                chat,
                operator,
                reason=AssignmentReason.ESCALATION_RESOLVED,
                actor=actor,
                now=now,
                count_increment=0,
                # max_reassignments_reached queda como marca para que el sweep no re-escale
                flags=chat.flags_without(ChatFlag.OPERATOR_IDLE, ChatFlag.QUEUE_TIMEOUT),
                note=reason_text,
            )
        else:
            _refuse_if_exhausted(session, chat, now=now)
            record = _handoff(
                session,
                chat,
                operator,
                reason=AssignmentReason.ADMIN_REASSIGN,
                actor=actor,
                now=now,
                note=reason_text,
            )
    except MaxReassignmentsReached:
        session.commit()
        raise
    except AssignmentConflict:
        session.rollback()
        raise

    # si estaba en cola, deja de estarlo
    session.execute(
        delete(ChatQueueEntry)
        .where(ChatQueueEntry.chat_id == chat.id)
        .execution_options(synchronize_session="fetch")
    )

    notify_admin(
        session,
        type=NotificationType.CHAT_REASSIGNMENT,
        message=f"Chat {chat.id} reassigned to operator {to_operator_id}",
        details={
            "chat_id": chat.id,
            "from_operator_id": record.from_operator_id,
            "to_operator_id": to_operator_id,
            "reason": record.reason.value,
            "note": reason_text,
            "actor": actor,
        },
        priority=NotificationPriority.NORMAL,
        now=now,
    )

    session.commit()
    session.refresh(record)
    return record


def release(session: Session, chat_id: int, *, operator_id: int, now: datetime) -> Chat:
    """
    El operador devuelve el chat a la cola (excluido de volver a recibirlo).
    Si el chat ya llegó al máximo de asignaciones, se escala. Commitea.
    """
    chat = lock_chat(session, chat_id)
    if chat.assigned_operator_id != operator_id:
        raise ChatNotWritable(f"chat {chat_id} is not assigned to operator {operator_id}")

    status = ChatStatus(chat.status)
    if status not in LIVE_STATUSES:
        raise InvalidTransition(chat.id, status.value, ChatStatus.ACTIVE.value)

    if chat.assignment_count >= config.MAX_REASSIGNMENTS:
        escalate(session, chat, ChatFlag.MAX_REASSIGNMENTS_REACHED, now=now, details={"source": "release"})
        session.commit()
        session.refresh(chat)
        return chat

    result = session.execute(
        update(Chat)
        .where(Chat.id == chat.id, Chat.status == status, Chat.assigned_operator_id == operator_id)
        .values(
            status=ChatStatus.ACTIVE,
            assigned_operator_id=None,
            previous_operator_ids=chat.operators_with(operator_id),
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        session.rollback()
        raise ChatNotWritable(f"chat {chat_id} changed state, retry")

    decrement_operator_chats(session, operator_id)
    session.refresh(chat)
    queue_manager.enqueue(session, chat, now=now)

    session.commit()
    session.refresh(chat)
    logger.info("[ASSIGN] chat %s liberado por operador %s, vuelve a la cola", chat.id, operator_id)
    return chat


# ---------------------------
# Cola -> operador
# ---------------------------

def _assign_claimed(
    session: Session,
    entry: ChatQueueEntry,
    operator: Operator,
    *,
    reason: AssignmentReason,
    actor: str,
    now: datetime,
) -> ChatAssignment:
    chat = lock_chat(session, entry.chat_id)
    return assign(session, chat, operator, reason=reason, actor=actor, now=now)


def accept_chat(session: Session, operator_id: int, *, now: datetime) -> ChatAssignment | None:
    """
    El operador toma el chat de mayor prioridad para el que es elegible.
    None si no hay nada para él. Si pierde la carrera reintenta hasta ASSIGNMENT_RETRY_LIMIT.
    """
    operator = session.get(Operator, operator_id)
    if not operator:
        raise NotFound(f"operator {operator_id} not found")
    if operator.is_suspended or not operator.is_available:
        raise OperatorUnavailable(f"operator {operator_id} is not available")

    for attempt in range(1, config.ASSIGNMENT_RETRY_LIMIT + 1):
        try:
            match = queue_manager.dequeue_best_match(session, now=now, operator_id=operator_id)
            if match is None:
                # puede haber escalados pendientes de persistir
                session.commit()
                return None

            entry, matched = match
            record = _assign_claimed(
                session,
                entry,
                matched,
                reason=AssignmentReason.OPERATOR_ACCEPT,
                actor=operator_actor(operator_id),
                now=now,
            )
            session.commit()
            session.refresh(record)
            return record

        except MaxReassignmentsReached:
            # quedó escalado; se persiste y se busca otro
            session.commit()
            continue
        except AssignmentConflict:
            session.rollback()
            logger.info("[ASSIGN] operador %s perdió la carrera (intento %s)", operator_id, attempt)
            continue

    raise AssignmentConflict(f"operator {operator_id}: queue kept changing, retry later")


@dataclass
class DispatchReport:
    assigned: list[int] = field(default_factory=list)
    unmatched: list[int] = field(default_factory=list)
    escalated: list[int] = field(default_factory=list)
    conflicts: list[int] = field(default_factory=list)


def _dispatch_entry(session: Session, entry_id: int, *, now: datetime, report: DispatchReport) -> None:
    entry = session.get(ChatQueueEntry, entry_id)
    if entry is None:
        return
    chat_id = entry.chat_id

    if queue_manager.escalate_if_exhausted(session, entry, now=now):
        session.commit()
        report.escalated.append(chat_id)
        return

    candidates = queue_manager.eligible_operators(session, entry)
    if not candidates:
        queue_manager.record_failed_attempt(session, entry, now=now)
        session.commit()
        report.unmatched.append(chat_id)
        return

    for operator in candidates:
        try:
            queue_manager.claim_entry(session, entry)
            _assign_claimed(
                session,
                entry,
                operator,
                reason=AssignmentReason.QUEUE_MATCH,
                actor=SYSTEM_ACTOR,
                now=now,
            )
            session.commit()
            report.assigned.append(chat_id)
            return
        except MaxReassignmentsReached:
            session.commit()
            report.escalated.append(chat_id)
            return
        except AssignmentConflict:
            session.rollback()
            entry = session.get(ChatQueueEntry, entry_id)
            if entry is None:
                # otro lo tomó
                report.conflicts.append(chat_id)
                return

    # nadie con capacidad real al momento del claim
    queue_manager.record_failed_attempt(session, entry, now=now)
    session.commit()
    report.unmatched.append(chat_id)


def dispatch_queue(session: Session, *, now: datetime) -> DispatchReport:
    """
    Recorre toda la cola por prioridad: cada entrada se asigna o suma un attempt.
    Commit por entrada: un fallo no tira abajo el resto.
    """
    report = DispatchReport()
    entry_ids = [e.id for e in queue_manager.ordered_queue(session, now=now)]

    for entry_id in entry_ids:
        try:
            _dispatch_entry(session, entry_id, now=now, report=report)
        except Exception:
            session.rollback()
            logger.error("[DISPATCH] fallo procesando entrada %s", entry_id, exc_info=True)
            report.conflicts.append(entry_id)

    logger.info(
        "[DISPATCH] asignados=%s sin operador=%s escalados=%s conflictos=%s",
        len(report.assigned),
        len(report.unmatched),
        len(report.escalated),
        len(report.conflicts),
    )
    return report


def dispatch_one(session: Session, chat_id: int, *, now: datetime) -> bool:
    """Intenta asignar ya la entrada de un chat recién encolado. True si quedó asignado."""
    entry = session.exec(select(ChatQueueEntry).where(ChatQueueEntry.chat_id == chat_id)).first()
    if entry is None:
        return False

    report = DispatchReport()
    _dispatch_entry(session, entry.id, now=now, report=report)
    return chat_id in report.assigned


def assignment_history(session: Session, chat_id: int) -> list[ChatAssignment]:
    if not session.get(Chat, chat_id):
        raise NotFound(f"chat {chat_id} not found")

    return list(
        session.exec(
            select(ChatAssignment)
            .where(ChatAssignment.chat_id == chat_id)
            .order_by(ChatAssignment.created_at, ChatAssignment.id)
        ).all()
    )
