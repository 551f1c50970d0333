# path: services/credit_meter.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_CEILING, Decimal

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import config
from models.credit_refund import CreditRefund
from models.enums import NotificationPriority, NotificationType, RefundReason, UserTier
from models.message import Message
from models.real_user import RealUser
from services.counters import add_credits, debit_credits
from services.errors import InsufficientCreditsError, InvalidRefund, NotFound, RefundAlreadyApplied
from services.notification_service import notify_admin

logger = logging.getLogger(__name__)


TIER_DISCOUNTS: dict[UserTier, Decimal] = {
    UserTier.PLATINUM: Decimal("0.7"),
    UserTier.GOLD: Decimal("0.8"),
    UserTier.SILVER: Decimal("0.9"),
    UserTier.BRONZE: Decimal("0.95"),
    UserTier.FREE: Decimal("1.0"),
}


# ---------------------------
# Pricing
# ---------------------------

def _in_window(hour: int, window: tuple[int, int]) -> bool:
    start, end = window
    if start <= end:
        return start <= hour < end
    # ventana que cruza medianoche (ej 20-2)
    return hour >= start or hour < end


def time_multiplier(at: datetime) -> Decimal:
    local_hour = (at + timedelta(hours=config.PRICING_UTC_OFFSET_HOURS)).hour

    if _in_window(local_hour, config.PEAK_HOURS):
        return config.PEAK_MULTIPLIER
    if _in_window(local_hour, config.OFF_PEAK_HOURS):
        return config.OFF_PEAK_MULTIPLIER
    return Decimal("1")


def featured_multiplier(is_featured_profile: bool) -> Decimal:
    return config.FEATURED_MULTIPLIER if is_featured_profile else Decimal("1")


def tier_discount(tier: UserTier | str) -> Decimal:
    return TIER_DISCOUNTS.get(UserTier(tier), Decimal("1.0"))


def cost(message_index: int, tier: UserTier | str, is_featured_profile: bool, at: datetime) -> int:
    """
    Créditos que cuesta el mensaje número `message_index` (1-based) del usuario en el chat.
    Los primeros FREE_MESSAGES_COUNT son gratis; un mensaje pago cuesta al menos 1.
    """
    if message_index <= config.FREE_MESSAGES_COUNT:
        return 0

    raw = (
        config.BASE_MESSAGE_COST
        * time_multiplier(at)
        * featured_multiplier(is_featured_profile)
        * tier_discount(tier)
    )
    return max(int(raw.to_integral_value(rounding=ROUND_CEILING)), 1)


# ---------------------------
# Saldo
# ---------------------------

def _lock_user(session: Session, user_id: int) -> RealUser:
    user = session.exec(
        select(RealUser).where(RealUser.id == user_id).with_for_update()
    ).first()
    if not user:
        raise NotFound(f"real user {user_id} not found")
    return user


def debit(session: Session, user_id: int, amount: int) -> int:
    """
    Descuenta `amount` bajo lock de la fila del usuario. Devuelve el saldo restante.
    No commitea: el cargo se registra en el mensaje dentro de la misma transacción.
    """
    user = _lock_user(session, user_id)
    if amount == 0:
        return user.credits

    if user.credits < amount:
        raise InsufficientCreditsError(required=amount, available=user.credits)

    if not debit_credits(session, user_id, amount):
        # otro débito ganó entre el lock y el update (sin FOR UPDATE real, ej sqlite)
        session.refresh(user)
        raise InsufficientCreditsError(required=amount, available=user.credits)

    session.refresh(user)
    if user.credits < 0:
        raise AssertionError(f"real user {user_id} balance went negative")
    return user.credits


def refund(
    session: Session,
    *,
    user_id: int,
    amount: int,
    reason: RefundReason | str,
    processed_by: int,
    message_id: int | None = None,
    chat_id: int | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> CreditRefund:
    if amount <= 0:
        raise InvalidRefund("Refund amount must be greater than 0")

    try:
        reason = RefundReason(reason)
    except ValueError:
        raise InvalidRefund(f"Invalid refund reason: {reason}")

    _lock_user(session, user_id)

    if message_id is not None:
        message = session.get(Message, message_id)
        if not message:
            raise NotFound(f"message {message_id} not found")
        if amount > message.credits_charged:
            raise InvalidRefund(
                f"refund {amount} exceeds the {message.credits_charged} credits charged for message {message_id}"
            )
        already = session.exec(
            select(CreditRefund).where(CreditRefund.message_id == message_id)
        ).first()
        if already:
            raise RefundAlreadyApplied(f"message {message_id} already refunded (refund {already.id})")
        chat_id = chat_id or message.chat_id

    add_credits(session, user_id, amount)

    record = CreditRefund(
        real_user_id=user_id,
        amount=amount,
        reason=reason,
        message_id=message_id,
        chat_id=chat_id,
        processed_by=processed_by,
        notes=notes,
    )
    if now is not None:
        record.created_at = now
    session.add(record)

    notify_admin(
        session,
        type=NotificationType.CREDIT_REFUND,
        message=f"Refund of {amount} credits to user {user_id} ({reason.value})",
        details={"user_id": user_id, "amount": amount, "reason": reason.value, "processed_by": processed_by},
        priority=NotificationPriority.LOW,
        now=now,
    )

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise RefundAlreadyApplied(f"message {message_id} already refunded")

    session.refresh(record)
    logger.info("[CREDITS] refund #%s: +%s a user %s (%s)", record.id, amount, user_id, reason.value)
    return record
