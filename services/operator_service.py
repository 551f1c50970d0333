# path: services/operator_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlmodel import Session

from models.chat_assignment import ChatAssignment
from models.operators import Operator
from services import assignment_service
from services.errors import AssignmentConflict, NotFound, OperatorBusy, OperatorUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityResult:
    operator: Operator
    assignment: ChatAssignment | None = None


def set_availability(session: Session, operator_id: int, available: bool, *, now: datetime) -> AvailabilityResult:
    """
    - offline: solo si no tiene chats active/idle (WHERE current_chat_count = 0)
    - online: queda disponible y toma enseguida el mejor chat de la cola
    """
    operator = session.get(Operator, operator_id)
    if not operator:
        raise NotFound(f"operator {operator_id} not found")

    if not available:
        result = session.execute(
            update(Operator)
            .where(Operator.id == operator_id, Operator.current_chat_count == 0)
            .values(is_available=False, last_activity_at=now)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            session.rollback()
            session.refresh(operator)
            raise OperatorBusy(operator_id, operator.current_chat_count)

        session.commit()
        session.refresh(operator)
        logger.info("[OPERATOR] operador %s offline", operator_id)
        return AvailabilityResult(operator=operator)

    if operator.is_suspended:
        raise OperatorUnavailable(f"operator {operator_id} is suspended")

    operator.is_available = True
    operator.last_activity_at = now
    session.add(operator)
    session.commit()
    logger.info("[OPERATOR] operador %s online", operator_id)

    try:
        assignment = assignment_service.accept_chat(session, operator_id, now=now)
    except AssignmentConflict:
        # queda online; el dispatcher lo vuelve a intentar
        logger.info("[OPERATOR] operador %s online sin chat (cola en disputa)", operator_id)
        assignment = None
    session.refresh(operator)
    return AvailabilityResult(operator=operator, assignment=assignment)
