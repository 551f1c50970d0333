from typing import Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from controllers.chat_controller import enviar_mensaje
from database import get_session
from models.enums import SenderType
from models.operators import Operator
from models.real_user import RealUser
from services.clock import Clock, get_clock
from services.permissions import current_sender

router = APIRouter(tags=["Mensajes"])

MAX_MESSAGE_LENGTH = 1000


class SendMessageRequest(BaseModel):
    chat_id: int
    sender_type: SenderType
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


@router.post("/messages/send")
def enviar(
    data: SendMessageRequest,
    sender: Union[RealUser, Operator] = Depends(current_sender),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return enviar_mensaje(
        chat_id=data.chat_id,
        sender_type=data.sender_type,
        content=data.content,
        sender=sender,
        session=session,
        clock=clock,
    )
