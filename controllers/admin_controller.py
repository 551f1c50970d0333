# path: controllers/admin_controller.py
from __future__ import annotations

from sqlmodel import Session

from controllers.http_errors import domain_errors
from models.enums import RefundReason
from models.users import User
from services import assignment_service, credit_meter, lifecycle_service, notification_service, payment_reconciler
from services.clock import Clock
from services.payment_gateway import PaystackGateway


def reasignar_chat(
    *,
    chat_id: int,
    to_operator_id: int,
    reason: str | None,
    current_user: User,
    session: Session,
    clock: Clock,
):
    with domain_errors():
        return assignment_service.reassign(
            session,
            chat_id,
            to_operator_id,
            reason_text=reason,
            actor=assignment_service.admin_actor(current_user.id),
            now=clock.now(),
        )


def cerrar_chat(*, chat_id: int, current_user: User, session: Session, clock: Clock):
    with domain_errors():
        return lifecycle_service.admin_close(session, chat_id, admin_id=current_user.id, now=clock.now())


def historial_reasignaciones(*, chat_id: int, session: Session):
    with domain_errors():
        history = assignment_service.assignment_history(session, chat_id)
    return {"chat_id": chat_id, "total": len(history), "history": history}


def reembolsar(
    *,
    real_user_id: int,
    amount: int,
    reason: RefundReason,
    message_id: int | None,
    chat_id: int | None,
    notes: str | None,
    current_user: User,
    session: Session,
    clock: Clock,
):
    with domain_errors():
        return credit_meter.refund(
            session,
            user_id=real_user_id,
            amount=amount,
            reason=reason,
            processed_by=current_user.id,
            message_id=message_id,
            chat_id=chat_id,
            notes=notes,
            now=clock.now(),
        )


def reconciliar_pago(
    *,
    transaction_id: int,
    current_user: User,
    session: Session,
    gateway: PaystackGateway,
    clock: Clock,
):
    with domain_errors(gateway_status=502):
        result = payment_reconciler.reconcile(
            session,
            transaction_id=transaction_id,
            actor_id=current_user.id,
            gateway=gateway,
            now=clock.now(),
        )
    return {"outcome": result.outcome.value, "transaction": result.transaction}


def listar_notificaciones(*, unread_only: bool, limit: int, session: Session):
    return notification_service.list_notifications(session, unread_only=unread_only, limit=limit)


def marcar_notificacion_leida(*, notification_id: int, session: Session):
    with domain_errors():
        return notification_service.mark_read(session, notification_id)
