# path: services/queue_manager.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, update
from sqlmodel import Session, select

import config
from models.chat import Chat
from models.chat_queue import ChatQueueEntry
from models.enums import LIVE_STATUSES, ChatFlag, UserTier
from models.fictional_profile import FictionalProfile
from models.operators import Operator
from models.real_user import RealUser
from services.errors import AssignmentConflict, NotFound
from services.lifecycle_service import escalate

logger = logging.getLogger(__name__)


# ---------------------------
# Prioridad
# ---------------------------

TIER_SCORES = {
    UserTier.PLATINUM: 40,
    UserTier.GOLD: 30,
    UserTier.SILVER: 20,
    UserTier.BRONZE: 10,
    UserTier.FREE: 0,
}

MAX_WAIT_SCORE = 40

LIFETIME_VALUE_SCORES = [
    (10000, 20),
    (5000, 15),
    (1000, 10),
    (500, 5),
]


def priority_score(tier: UserTier | str, waited: timedelta, lifetime_value: int) -> int:
    tier_score = TIER_SCORES.get(UserTier(tier), 0)
    # 1 punto por minuto esperado, tope 40
    wait_score = min(max(int(waited.total_seconds()) // 60, 0), MAX_WAIT_SCORE)
    value_score = next((pts for floor, pts in LIFETIME_VALUE_SCORES if (lifetime_value or 0) >= floor), 0)
    return tier_score + wait_score + value_score


def _sort_key(entry: ChatQueueEntry, now: datetime):
    score = priority_score(entry.user_tier, now - entry.entered_queue_at, entry.lifetime_value)
    # mayor score primero; a igual score, FIFO
    return (-score, entry.entered_queue_at, entry.id)


def ordered_queue(session: Session, *, now: datetime) -> list[ChatQueueEntry]:
    entries = session.exec(select(ChatQueueEntry)).all()
    return sorted(entries, key=lambda e: _sort_key(e, now))


# ---------------------------
# Enqueue
# ---------------------------

def enqueue(session: Session, chat: Chat, *, now: datetime) -> ChatQueueEntry:
    existing = session.exec(
        select(ChatQueueEntry).where(ChatQueueEntry.chat_id == chat.id)
    ).first()
    if existing:
        return existing

    if chat.assigned_operator_id is not None and chat.status in LIVE_STATUSES:
        raise AssignmentConflict(f"chat {chat.id} already has operator {chat.assigned_operator_id}")

    user = session.get(RealUser, chat.real_user_id)
    profile = session.get(FictionalProfile, chat.fictional_profile_id)
    if not user or not profile:
        raise NotFound(f"chat {chat.id}: user or profile missing")

    entry = ChatQueueEntry(
        chat_id=chat.id,
        priority_score=priority_score(user.user_tier, timedelta(0), user.total_spent),
        user_tier=user.user_tier,
        lifetime_value=user.total_spent,
        entered_queue_at=now,
        required_specializations=list(profile.required_specializations or []),
        # operadores que ya llevaron el chat
        excluded_operator_ids=list(chat.previous_operator_ids or []),
    )
    session.add(entry)
    session.flush()

    logger.info("[QUEUE] chat %s encolado (score=%s, tier=%s)", chat.id, entry.priority_score, entry.user_tier)
    return entry


# ---------------------------
# Operadores elegibles
# ---------------------------

def operator_match_score(operator: Operator) -> int:
    score = 50

    if operator.current_chat_count == 0:
        score += 20
    elif operator.current_chat_count <= 2:
        score += 15
    elif operator.current_chat_count <= 4:
        score += 10
    else:
        score += 5

    if operator.quality_score >= 90:
        score += 10
    elif operator.quality_score >= 80:
        score += 7
    elif operator.quality_score >= 70:
        score += 5

    return score


def is_eligible(operator: Operator, entry: ChatQueueEntry) -> bool:
    return (
        operator.is_available
        and not operator.is_suspended
        and operator.current_chat_count < operator.max_concurrent_chats
        and set(entry.required_specializations or []) <= set(operator.specializations or [])
        and operator.id not in set(entry.excluded_operator_ids or [])
    )


def eligible_operators(
    session: Session,
    entry: ChatQueueEntry,
    *,
    operator_id: int | None = None,
) -> list[Operator]:
    stmt = (
        select(Operator)
        .where(Operator.is_available == True)  # noqa: E712
        .where(Operator.is_suspended == False)  # noqa: E712
        .where(Operator.current_chat_count < Operator.max_concurrent_chats)
    )
    if operator_id is not None:
        stmt = stmt.where(Operator.id == operator_id)

    candidates = [op for op in session.exec(stmt).all() if is_eligible(op, entry)]
    candidates.sort(key=lambda op: (-operator_match_score(op), op.current_chat_count, -op.quality_score, op.id))
    return candidates


# ---------------------------
# Claim / attempts
# ---------------------------

def claim_entry(session: Session, entry: ChatQueueEntry) -> ChatQueueEntry:
    """
    Saca la entrada de la cola con un DELETE condicional. Si otro la sacó antes,
    AssignmentConflict (el que llama hace rollback y prueba con la siguiente).
    """
    entry_id = entry.id
    session.expunge(entry)

    result = session.execute(
        delete(ChatQueueEntry)
        .where(ChatQueueEntry.id == entry_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AssignmentConflict(f"queue entry {entry_id} already claimed")
    return entry


def record_failed_attempt(session: Session, entry: ChatQueueEntry, *, now: datetime) -> None:
    session.execute(
        update(ChatQueueEntry)
        .where(ChatQueueEntry.id == entry.id)
        .values(attempts=ChatQueueEntry.attempts + 1, last_attempt_at=now)
        .execution_options(synchronize_session="fetch")
    )
    logger.info("[QUEUE] chat %s sin operador disponible (attempt %s)", entry.chat_id, entry.attempts)


def escalate_if_exhausted(session: Session, entry: ChatQueueEntry, *, now: datetime) -> bool:
    """Un chat que ya llegó al máximo de asignaciones no se vuelve a matchear."""
    chat = session.get(Chat, entry.chat_id)
    if chat is None or chat.assignment_count < config.MAX_REASSIGNMENTS:
        return False

    return escalate(
        session,
        chat,
        ChatFlag.MAX_REASSIGNMENTS_REACHED,
        now=now,
        details={"source": "queue"},
    )


def dequeue_best_match(
    session: Session,
    *,
    now: datetime,
    operator_id: int | None = None,
) -> tuple[ChatQueueEntry, Operator] | None:
    """
    Recorre la cola por prioridad y reclama la primera entrada con operador elegible.

    - operator_id=None: modo dispatcher, cada entrada sin match suma un attempt.
    - operator_id=X: el operador X busca la mejor entrada para él; no toca attempts ajenos.

    La entrada se borra en la transacción abierta; el que llama crea la
    asignación y commitea (o hace rollback y todo vuelve atrás).
    """
    for entry in ordered_queue(session, now=now):
        if escalate_if_exhausted(session, entry, now=now):
            continue

        candidates = eligible_operators(session, entry, operator_id=operator_id)
        if not candidates:
            if operator_id is None:
                record_failed_attempt(session, entry, now=now)
            continue

        claimed = claim_entry(session, entry)
        logger.info("[QUEUE] chat %s -> operador %s", claimed.chat_id, candidates[0].id)
        return claimed, candidates[0]

    return None
