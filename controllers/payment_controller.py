# path: controllers/payment_controller.py
from __future__ import annotations

from sqlmodel import Session

from controllers.http_errors import domain_errors
from models.real_user import RealUser
from services import payment_reconciler
from services.clock import Clock
from services.payment_gateway import PaystackGateway


def iniciar_pago(*, credits: int, amount: int, real_user: RealUser, session: Session, clock: Clock):
    with domain_errors():
        tx = payment_reconciler.initiate_payment(
            session,
            real_user_id=real_user.id,
            credits=credits,
            amount=amount,
            now=clock.now(),
        )
    return {"transaction_id": tx.id, "reference": tx.provider_reference, "status": tx.status}


def procesar_webhook(
    *,
    raw_body: bytes,
    signature: str | None,
    session: Session,
    gateway: PaystackGateway,
    clock: Clock,
):
    with domain_errors(gateway_status=503):
        ack = payment_reconciler.handle_webhook(
            session,
            raw_body=raw_body,
            signature=signature,
            gateway=gateway,
            now=clock.now(),
        )
    return {
        "received": True,
        "outcome": ack.outcome.value,
        "reference": ack.reference,
        "transaction_id": ack.transaction_id,
    }
