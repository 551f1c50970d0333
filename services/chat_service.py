# path: services/chat_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlmodel import Session, select

from models.chat import Chat
from models.enums import ChatStatus
from models.fictional_profile import FictionalProfile
from models.real_user import RealUser
from services import assignment_service, queue_manager
from services.errors import NotFound, OperatorUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartChatResult:
    chat: Chat
    created: bool
    assigned: bool


def _find_open_chat(session: Session, *, real_user_id: int, fictional_profile_id: int) -> Chat | None:
    return session.exec(
        select(Chat)
        .where(Chat.real_user_id == real_user_id)
        .where(Chat.fictional_profile_id == fictional_profile_id)
        .where(Chat.status != ChatStatus.CLOSED)
        .order_by(Chat.created_at.desc(), Chat.id.desc())
    ).first()


def start_chat(
    session: Session,
    *,
    real_user_id: int,
    fictional_profile_id: int,
    now: datetime,
) -> StartChatResult:
    """
    Abre (o reusa) el chat usuario <-> perfil y lo pone en cola.
    Un usuario tiene a lo sumo un chat no cerrado por perfil: se serializa con el lock del usuario.
    """
    user = session.exec(
        select(RealUser).where(RealUser.id == real_user_id).with_for_update()
    ).first()
    if not user:
        raise NotFound(f"real user {real_user_id} not found")

    profile = session.get(FictionalProfile, fictional_profile_id)
    if not profile:
        raise NotFound(f"profile {fictional_profile_id} not found")
    if not profile.is_active:
        raise OperatorUnavailable(f"profile {fictional_profile_id} is not active")

    existing = _find_open_chat(session, real_user_id=real_user_id, fictional_profile_id=fictional_profile_id)
    if existing:
        session.rollback()
        return StartChatResult(chat=existing, created=False, assigned=existing.assigned_operator_id is not None)

    chat = Chat(
        real_user_id=real_user_id,
        fictional_profile_id=fictional_profile_id,
        status=ChatStatus.ACTIVE,
        created_at=now,
        updated_at=now,
    )
    session.add(chat)
    session.flush()

    queue_manager.enqueue(session, chat, now=now)
    session.commit()
    session.refresh(chat)
    logger.info("[CHAT] chat %s creado (user=%s, perfil=%s)", chat.id, real_user_id, fictional_profile_id)

    # primer intento inmediato; si no hay operador queda en cola para el dispatcher
    assigned = assignment_service.dispatch_one(session, chat.id, now=now)
    session.refresh(chat)
    return StartChatResult(chat=chat, created=True, assigned=assigned)
