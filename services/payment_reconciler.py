# path: services/payment_reconciler.py
"""
Pagos Paystack -> créditos.

provider_reference es la clave de idempotencia: N entregas del mismo webhook
terminan en un solo estado final y en un solo crédito.
"""
from __future__ import annotations

import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import config
from models.enums import NotificationPriority, NotificationType, TransactionStatus
from models.real_user import RealUser
from models.transaction import Transaction
from services.counters import add_credits
from services.errors import (
    CounterPreconditionFailed,
    InvalidWebhookPayload,
    ManualReviewRequired,
    NotFound,
    PaymentGatewayError,
    WebhookVerificationError,
)
from services.notification_service import notify_admin
from services.payment_gateway import GatewayVerification, PaystackGateway, verify_signature

logger = logging.getLogger(__name__)


HANDLED_EVENTS = {"charge.success", "charge.failed"}
VERIFICATION_FAILURE_WINDOW = timedelta(minutes=10)

# timestamps de firmas inválidas recientes (por proceso)
_verification_failures: deque[datetime] = deque()


class WebhookOutcome(str, Enum):
    CREDITED = "credited"
    FAILED = "failed"
    PENDING = "pending"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    MANUAL_REVIEW = "manual_review"


class ReconciliationOutcome(str, Enum):
    CREDITED = "credited"
    FAILED = "failed"
    STILL_PENDING = "still_pending"
    ALREADY_SUCCESSFUL = "already_successful"
    MANUAL_REVIEW = "manual_review"


@dataclass(frozen=True)
class WebhookAck:
    outcome: WebhookOutcome
    reference: str | None = None
    transaction_id: int | None = None


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    transaction: Transaction


# ---------------------------
# Iniciar pago
# ---------------------------

def initiate_payment(
    session: Session,
    *,
    real_user_id: int,
    credits: int,
    amount: int,
    now: datetime,
) -> Transaction:
    """Crea la transacción pending; el front paga en Paystack con esta referencia."""
    if credits <= 0 or amount <= 0:
        raise InvalidWebhookPayload("credits and amount must be positive")
    if not session.get(RealUser, real_user_id):
        raise NotFound(f"real user {real_user_id} not found")

    tx = Transaction(
        real_user_id=real_user_id,
        provider_reference=f"ref_{uuid.uuid4().hex}",
        status=TransactionStatus.PENDING,
        credits_amount=credits,
        amount=amount,
        created_at=now,
    )
    session.add(tx)
    session.commit()
    session.refresh(tx)
    logger.info("[PAYMENT] transacción %s iniciada (%s, user=%s)", tx.id, tx.provider_reference, real_user_id)
    return tx


# ---------------------------
# Helpers
# ---------------------------

def _lock_by_reference(session: Session, reference: str) -> Transaction | None:
    return session.exec(
        select(Transaction).where(Transaction.provider_reference == reference).with_for_update()
    ).first()


def _lock_by_id(session: Session, transaction_id: int) -> Transaction:
    tx = session.exec(select(Transaction).where(Transaction.id == transaction_id).with_for_update()).first()
    if not tx:
        raise NotFound(f"transaction {transaction_id} not found")
    return tx


def _count_delivery(session: Session, tx: Transaction, *, now: datetime) -> None:
    session.execute(
        update(Transaction)
        .where(Transaction.id == tx.id)
        .values(webhook_received_count=Transaction.webhook_received_count + 1, last_webhook_at=now)
        .execution_options(synchronize_session="fetch")
    )


def _set_status(
    session: Session,
    tx: Transaction,
    *,
    expected: TransactionStatus,
    target: TransactionStatus,
    now: datetime,
    extra: dict | None = None,
) -> bool:
    result = session.execute(
        update(Transaction)
        .where(Transaction.id == tx.id, Transaction.status == expected)
        .values(status=target, completed_at=now, **(extra or {}))
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def _settle(
    session: Session,
    tx: Transaction,
    verification: GatewayVerification,
    *,
    now: datetime,
    allow_failed_to_success: bool = False,
    extra: dict | None = None,
) -> TransactionStatus | None:
    """
    Lleva la transacción al estado que informa el gateway. No commitea.
    Devuelve el estado nuevo, o None si no hubo cambio.
    """
    current = TransactionStatus(tx.status)
    values = {"provider_response": verification.raw, **(extra or {})}

    if verification.status == TransactionStatus.SUCCESS:
        if current == TransactionStatus.SUCCESS:
            return None
        if current == TransactionStatus.FAILED and not allow_failed_to_success:
            raise ManualReviewRequired(tx.id, "gateway reports success for a transaction marked failed")
        if tx.amount and verification.amount != tx.amount:
            raise ManualReviewRequired(
                tx.id, f"amount mismatch: gateway {verification.amount}, ledger {tx.amount}"
            )

        if not _set_status(session, tx, expected=current, target=TransactionStatus.SUCCESS, now=now, extra=values):
            return None

        try:
            add_credits(session, tx.real_user_id, tx.credits_amount)
        except CounterPreconditionFailed as e:
            raise ManualReviewRequired(tx.id, f"failed to add credits: {e}") from e

        # lifetime value en unidades mayores
        session.execute(
            update(RealUser)
            .where(RealUser.id == tx.real_user_id)
            .values(total_spent=RealUser.total_spent + verification.amount // 100)
            .execution_options(synchronize_session="fetch")
        )
        logger.info("[PAYMENT] transacción %s: +%s créditos a user %s", tx.id, tx.credits_amount, tx.real_user_id)
        return TransactionStatus.SUCCESS

    if verification.status == TransactionStatus.FAILED:
        if current != TransactionStatus.PENDING:
            return None
        if not _set_status(session, tx, expected=current, target=TransactionStatus.FAILED, now=now, extra=values):
            return None
        logger.info("[PAYMENT] transacción %s falló en gateway (%s)", tx.id, verification.gateway_status)
        return TransactionStatus.FAILED

    return None


def _flag_manual_review(session: Session, tx_id: int, reason: str, *, now: datetime, source: str) -> None:
    session.execute(
        update(Transaction)
        .where(Transaction.id == tx_id)
        .values(needs_manual_review=True, review_reason=reason)
        .execution_options(synchronize_session="fetch")
    )
    notify_admin(
        session,
        type=NotificationType.PAYMENT_MANUAL_REVIEW,
        message=f"Transaction {tx_id} needs manual review: {reason}",
        details={"transaction_id": tx_id, "reason": reason, "source": source},
        priority=NotificationPriority.HIGH,
        now=now,
    )
    session.commit()
    logger.warning("[PAYMENT] transacción %s a revisión manual: %s", tx_id, reason)


def _record_verification_failure(session: Session, *, now: datetime) -> None:
    _verification_failures.append(now)
    while _verification_failures and now - _verification_failures[0] > VERIFICATION_FAILURE_WINDOW:
        _verification_failures.popleft()

    if len(_verification_failures) < config.WEBHOOK_FAILURE_ALERT_THRESHOLD:
        return

    notify_admin(
        session,
        type=NotificationType.WEBHOOK_VERIFICATION_FAILED,
        message=f"{len(_verification_failures)} webhook signature failures in the last 10 minutes",
        details={"failures": len(_verification_failures), "window_minutes": 10},
        priority=NotificationPriority.HIGH,
        now=now,
    )
    session.commit()
    _verification_failures.clear()


def reset_verification_failures() -> None:
    _verification_failures.clear()


def _parse_payload(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        raise InvalidWebhookPayload("webhook body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise InvalidWebhookPayload("webhook body must be an object")
    return payload


def _create_from_gateway(session: Session, verification: GatewayVerification, *, now: datetime) -> Transaction:
    if verification.real_user_id is None or not verification.credits:
        raise InvalidWebhookPayload(f"gateway metadata for {verification.reference} has no userId/credits")
    if not session.get(RealUser, verification.real_user_id):
        raise InvalidWebhookPayload(f"unknown user {verification.real_user_id} for {verification.reference}")

    tx = Transaction(
        real_user_id=verification.real_user_id,
        provider_reference=verification.reference,
        status=TransactionStatus.PENDING,
        credits_amount=verification.credits,
        amount=verification.amount,
        webhook_received_count=1,
        last_webhook_at=now,
        created_at=now,
    )
    session.add(tx)
    session.flush()
    return tx


# ---------------------------
# Webhook
# ---------------------------

def handle_webhook(
    session: Session,
    *,
    raw_body: bytes,
    signature: str | None,
    gateway: PaystackGateway,
    now: datetime,
    secret: str | None = None,
) -> WebhookAck:
    secret = config.PAYSTACK_SECRET_KEY if secret is None else secret

    # antes de tocar cualquier estado
    if not verify_signature(raw_body, signature, secret):
        logger.warning("[WEBHOOK] firma inválida")
        _record_verification_failure(session, now=now)
        raise WebhookVerificationError("invalid webhook signature")

    payload = _parse_payload(raw_body)
    event = payload.get("event")
    if event not in HANDLED_EVENTS:
        logger.info("[WEBHOOK] evento ignorado: %s", event)
        return WebhookAck(outcome=WebhookOutcome.IGNORED)

    data = payload.get("data") or {}
    reference = data.get("reference") if isinstance(data, dict) else None
    if not reference:
        raise InvalidWebhookPayload("webhook payload has no reference")

    tx = _lock_by_reference(session, reference)
    if tx and tx.status == TransactionStatus.SUCCESS:
        _count_delivery(session, tx, now=now)
        session.commit()
        logger.info("[WEBHOOK] %s duplicado, ya acreditado", reference)
        return WebhookAck(outcome=WebhookOutcome.DUPLICATE, reference=reference, transaction_id=tx.id)

    try:
        verification = gateway.verify_transaction(reference)
    except PaymentGatewayError:
        # nada commiteado: Paystack reintenta la entrega
        session.rollback()
        raise

    if verification.reference != reference:
        tx_id = tx.id if tx else None
        session.rollback()
        reason = f"gateway answered {verification.reference!r} for reference {reference!r}"
        if tx_id is None:
            raise InvalidWebhookPayload(reason)
        _flag_manual_review(session, tx_id, reason, now=now, source="webhook")
        return WebhookAck(outcome=WebhookOutcome.MANUAL_REVIEW, reference=reference, transaction_id=tx_id)

    # 1) registrar la entrega (y crear la transacción si no existía)
    if tx is None:
        try:
            tx = _create_from_gateway(session, verification, now=now)
        except IntegrityError:
            # otra entrega la creó en paralelo
            session.rollback()
            tx = _lock_by_reference(session, reference)
            if tx is None:
                raise
            _count_delivery(session, tx, now=now)
    else:
        _count_delivery(session, tx, now=now)
    session.commit()

    # 2) liquidar
    tx = _lock_by_reference(session, reference)
    tx_id = tx.id
    try:
        new_status = _settle(session, tx, verification, now=now)
        session.commit()
    except ManualReviewRequired as e:
        session.rollback()
        _flag_manual_review(session, tx_id, e.reason, now=now, source="webhook")
        return WebhookAck(outcome=WebhookOutcome.MANUAL_REVIEW, reference=reference, transaction_id=tx_id)

    if new_status == TransactionStatus.SUCCESS:
        outcome = WebhookOutcome.CREDITED
    elif new_status == TransactionStatus.FAILED or TransactionStatus(tx.status) == TransactionStatus.FAILED:
        outcome = WebhookOutcome.FAILED
    elif TransactionStatus(tx.status) == TransactionStatus.SUCCESS:
        outcome = WebhookOutcome.DUPLICATE
    else:
        outcome = WebhookOutcome.PENDING

    logger.info("[WEBHOOK] %s (%s): %s", reference, event, outcome.value)
    return WebhookAck(outcome=outcome, reference=reference, transaction_id=tx_id)


# ---------------------------
# Reconciliación manual
# ---------------------------

def reconcile(
    session: Session,
    *,
    transaction_id: int,
    actor_id: int,
    gateway: PaystackGateway,
    now: datetime,
) -> ReconciliationResult:
    """
    Re-consulta el gateway para una transacción trabada. Un admin puede
    acreditar una transacción marcada failed si el gateway dice success.
    """
    tx = _lock_by_id(session, transaction_id)
    if tx.status == TransactionStatus.SUCCESS:
        session.rollback()
        return ReconciliationResult(outcome=ReconciliationOutcome.ALREADY_SUCCESSFUL, transaction=tx)

    try:
        verification = gateway.verify_transaction(tx.provider_reference)
    except PaymentGatewayError:
        session.rollback()
        raise

    try:
        if verification.reference != tx.provider_reference:
            raise ManualReviewRequired(
                tx.id, f"gateway answered {verification.reference!r} for reference {tx.provider_reference!r}"
            )
        new_status = _settle(
            session,
            tx,
            verification,
            now=now,
            allow_failed_to_success=True,
            extra={"reconciled_by": actor_id, "needs_manual_review": False, "review_reason": None},
        )
        if new_status is None:
            session.execute(
                update(Transaction)
                .where(Transaction.id == tx.id)
                .values(reconciled_by=actor_id, provider_response=verification.raw)
                .execution_options(synchronize_session="fetch")
            )
    except ManualReviewRequired as e:
        session.rollback()
        _flag_manual_review(session, transaction_id, e.reason, now=now, source="reconcile")
        session.refresh(tx)
        return ReconciliationResult(outcome=ReconciliationOutcome.MANUAL_REVIEW, transaction=tx)

    if new_status == TransactionStatus.SUCCESS:
        outcome = ReconciliationOutcome.CREDITED
    elif new_status == TransactionStatus.FAILED or TransactionStatus(tx.status) == TransactionStatus.FAILED:
        outcome = ReconciliationOutcome.FAILED
    else:
        outcome = ReconciliationOutcome.STILL_PENDING

    notify_admin(
        session,
        type=NotificationType.PAYMENT_RECONCILED,
        message=f"Transaction {tx.id} reconciled by admin {actor_id}: {outcome.value}",
        details={
            "transaction_id": tx.id,
            "reference": tx.provider_reference,
            "outcome": outcome.value,
            "gateway_status": verification.gateway_status,
            "actor_id": actor_id,
        },
        priority=NotificationPriority.NORMAL,
        now=now,
    )
    session.commit()
    session.refresh(tx)
    logger.info("[RECONCILE] transacción %s: %s (admin %s)", tx.id, outcome.value, actor_id)
    return ReconciliationResult(outcome=outcome, transaction=tx)
