# path: controllers/operator_controller.py
from __future__ import annotations

from sqlmodel import Session

from controllers.http_errors import domain_errors
from models.operators import Operator
from services import assignment_service, lifecycle_service, operator_service
from services.clock import Clock


def cambiar_disponibilidad(*, available: bool, operator: Operator, session: Session, clock: Clock):
    with domain_errors():
        result = operator_service.set_availability(session, operator.id, available, now=clock.now())

    return {
        "operator_id": result.operator.id,
        "is_available": result.operator.is_available,
        "assignment": result.assignment,
    }


def aceptar_chat(*, operator: Operator, session: Session, clock: Clock):
    with domain_errors():
        assignment = assignment_service.accept_chat(session, operator.id, now=clock.now())

    if assignment is None:
        return {"assigned": False}
    return {"assigned": True, "chat_id": assignment.chat_id, "assignment": assignment}


def liberar_chat(*, chat_id: int, operator: Operator, session: Session, clock: Clock):
    with domain_errors():
        return assignment_service.release(session, chat_id, operator_id=operator.id, now=clock.now())


def marcar_idle(*, chat_id: int, operator: Operator, session: Session, clock: Clock):
    with domain_errors():
        return lifecycle_service.mark_idle(session, chat_id, operator_id=operator.id, now=clock.now())
