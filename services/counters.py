# path: services/counters.py
"""
Incrementos / decrementos atómicos a nivel storage.

Cada operación es un UPDATE condicional sobre una sola fila: la condición del
WHERE es la precondición y rowcount == 1 es la postcondición. Nunca se hace
leer-en-python-y-escribir para estos contadores.
"""
from __future__ import annotations

from sqlalchemy import update
from sqlmodel import Session

from models.operators import Operator
from models.real_user import RealUser
from services.errors import AssignmentConflict, CounterPreconditionFailed


def _apply(session: Session, stmt) -> int:
    result = session.execute(stmt.execution_options(synchronize_session="fetch"))
    return result.rowcount


def increment_operator_chats(session: Session, operator_id: int, *, enforce_capacity: bool = True) -> None:
    stmt = update(Operator).where(Operator.id == operator_id)
    if enforce_capacity:
        stmt = stmt.where(Operator.current_chat_count < Operator.max_concurrent_chats)
    stmt = stmt.values(current_chat_count=Operator.current_chat_count + 1)

    if _apply(session, stmt) != 1:
        raise AssignmentConflict(f"operator {operator_id} has no free capacity")


def decrement_operator_chats(session: Session, operator_id: int) -> None:
    stmt = (
        update(Operator)
        .where(Operator.id == operator_id)
        .where(Operator.current_chat_count > 0)
        .values(current_chat_count=Operator.current_chat_count - 1)
    )
    if _apply(session, stmt) != 1:
        raise CounterPreconditionFailed(f"operator {operator_id}: current_chat_count already 0")


def increment_idle_incidents(session: Session, operator_id: int) -> None:
    stmt = (
        update(Operator)
        .where(Operator.id == operator_id)
        .values(idle_incidents=Operator.idle_incidents + 1)
    )
    if _apply(session, stmt) != 1:
        raise CounterPreconditionFailed(f"operator {operator_id} not found")


def debit_credits(session: Session, user_id: int, amount: int) -> bool:
    """False si el saldo no alcanza (no se toca nada)."""
    if amount <= 0:
        raise ValueError("debit amount must be positive")

    stmt = (
        update(RealUser)
        .where(RealUser.id == user_id)
        .where(RealUser.credits >= amount)
        .values(credits=RealUser.credits - amount)
    )
    return _apply(session, stmt) == 1


def add_credits(session: Session, user_id: int, amount: int) -> None:
    if amount <= 0:
        raise ValueError("credit amount must be positive")

    stmt = (
        update(RealUser)
        .where(RealUser.id == user_id)
        .values(credits=RealUser.credits + amount)
    )
    if _apply(session, stmt) != 1:
        raise CounterPreconditionFailed(f"real user {user_id} not found")
