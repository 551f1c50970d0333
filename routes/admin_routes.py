from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from controllers.admin_controller import (
    cerrar_chat,
    historial_reasignaciones,
    listar_notificaciones,
    marcar_notificacion_leida,
    reasignar_chat,
    reconciliar_pago,
    reembolsar,
)
from database import get_session
from models.enums import RefundReason
from models.users import User
from services.clock import Clock, get_clock
from services.payment_gateway import PaystackGateway, get_payment_gateway
from services.permissions import ROLE_ADMIN, require_roles

router = APIRouter(prefix="/admin", tags=["Admin"])


class ReassignRequest(BaseModel):
    to_operator_id: int
    reason: Optional[str] = None


class RefundRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: RefundReason
    message_id: Optional[int] = None
    chat_id: Optional[int] = None
    notes: Optional[str] = None


@router.post("/chats/{chat_id}/reassign")
def reasignar(
    chat_id: int,
    data: ReassignRequest,
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return reasignar_chat(
        chat_id=chat_id,
        to_operator_id=data.to_operator_id,
        reason=data.reason,
        current_user=current_user,
        session=session,
        clock=clock,
    )


@router.post("/chats/{chat_id}/close")
def cerrar(
    chat_id: int,
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return cerrar_chat(chat_id=chat_id, current_user=current_user, session=session, clock=clock)


@router.get("/chats/{chat_id}/reassignment-history")
def historial(
    chat_id: int,
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    session: Session = Depends(get_session),
):
    return historial_reasignaciones(chat_id=chat_id, session=session)


@router.post("/users/{real_user_id}/refund")
def reembolso(
    real_user_id: int,
    data: RefundRequest,
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return reembolsar(
        real_user_id=real_user_id,
        amount=data.amount,
        reason=data.reason,
        message_id=data.message_id,
        chat_id=data.chat_id,
        notes=data.notes,
        current_user=current_user,
        session=session,
        clock=clock,
    )


@router.post("/payments/{transaction_id}/reconcile")
def reconciliar(
    transaction_id: int,
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    session: Session = Depends(get_session),
    gateway: PaystackGateway = Depends(get_payment_gateway),
    clock: Clock = Depends(get_clock),
):
    return reconciliar_pago(
        transaction_id=transaction_id,
        current_user=current_user,
        session=session,
        gateway=gateway,
        clock=clock,
    )


@router.get("/notifications")
def notificaciones(
    unread_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    session: Session = Depends(get_session),
):
    return listar_notificaciones(unread_only=unread_only, limit=limit, session=session)


@router.post("/notifications/{notification_id}/read")
def notificacion_leida(
    notification_id: int,
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    session: Session = Depends(get_session),
):
    return marcar_notificacion_leida(notification_id=notification_id, session=session)
