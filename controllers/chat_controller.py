# path: controllers/chat_controller.py
from __future__ import annotations

from typing import Union

from sqlmodel import Session

from controllers.http_errors import domain_errors
from models.enums import SenderType
from models.operators import Operator
from models.real_user import RealUser
from services.chat_service import start_chat
from services.clock import Clock
from services.errors import NotFound
from services.message_service import send_message


def iniciar_chat(*, fictional_profile_id: int, real_user: RealUser, session: Session, clock: Clock):
    with domain_errors():
        result = start_chat(
            session,
            real_user_id=real_user.id,
            fictional_profile_id=fictional_profile_id,
            now=clock.now(),
        )

    return {
        "chat": result.chat,
        "created": result.created,
        "assigned": result.assigned,
    }


def enviar_mensaje(
    *,
    chat_id: int,
    sender_type: SenderType,
    content: str,
    sender: Union[RealUser, Operator],
    session: Session,
    clock: Clock,
):
    with domain_errors():
        # un usuario real no escribe como perfil ficticio ni al revés
        if sender_type == SenderType.REAL and isinstance(sender, RealUser):
            ids = {"sender_real_user_id": sender.id}
        elif sender_type == SenderType.FICTIONAL and isinstance(sender, Operator):
            ids = {"sender_operator_id": sender.id}
        else:
            raise NotFound(f"chat {chat_id} not found")

        result = send_message(
            session,
            chat_id=chat_id,
            sender_type=sender_type,
            content=content,
            now=clock.now(),
            **ids,
        )

    return {
        "message": result.message,
        "credits_charged": result.credits_charged,
        "remaining_credits": result.remaining_credits,
    }
