from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from controllers.operator_controller import aceptar_chat, cambiar_disponibilidad, liberar_chat, marcar_idle
from database import get_session
from models.operators import Operator
from services.clock import Clock, get_clock
from services.permissions import current_operator

router = APIRouter(prefix="/operator", tags=["Operator"])


class AvailabilityRequest(BaseModel):
    available: bool


@router.put("/availability")
def disponibilidad(
    data: AvailabilityRequest,
    operator: Operator = Depends(current_operator),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return cambiar_disponibilidad(available=data.available, operator=operator, session=session, clock=clock)


@router.post("/accept-chat")
def aceptar(
    operator: Operator = Depends(current_operator),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return aceptar_chat(operator=operator, session=session, clock=clock)


@router.post("/chats/{chat_id}/release")
def liberar(
    chat_id: int,
    operator: Operator = Depends(current_operator),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return liberar_chat(chat_id=chat_id, operator=operator, session=session, clock=clock)


@router.post("/chats/{chat_id}/idle")
def idle(
    chat_id: int,
    operator: Operator = Depends(current_operator),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return marcar_idle(chat_id=chat_id, operator=operator, session=session, clock=clock)
