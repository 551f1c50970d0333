# path: services/payment_gateway.py
"""
Cliente Paystack: firma de webhooks y verificación de transacciones.
Nunca se confía en el payload del webhook; el estado real se consulta al gateway.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any

import httpx

import config
from models.enums import TransactionStatus
from services.errors import PaymentGatewayError

logger = logging.getLogger(__name__)


FAILED_GATEWAY_STATUSES = {"failed", "abandoned", "reversed"}


@dataclass(frozen=True)
class GatewayVerification:
    reference: str
    status: TransactionStatus
    amount: int
    gateway_status: str
    real_user_id: int | None = None
    credits: int | None = None
    raw: dict[str, Any] | None = None


def sign_payload(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = sign_payload(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def _map_status(gateway_status: str) -> TransactionStatus:
    if gateway_status == "success":
        return TransactionStatus.SUCCESS
    if gateway_status in FAILED_GATEWAY_STATUSES:
        return TransactionStatus.FAILED
    # ongoing / pending / processing / queued
    return TransactionStatus.PENDING


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class PaystackGateway:
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def verify_transaction(self, reference: str) -> GatewayVerification:
        url = f"{self.base_url}/transaction/verify/{reference}"
        headers = {"Authorization": f"Bearer {self.secret_key}"}

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.error("[PAYSTACK] sin respuesta verificando %s: %s", reference, e)
            raise PaymentGatewayError(f"gateway unreachable: {e}") from e

        if response.status_code != 200:
            logger.error("[PAYSTACK] HTTP %s verificando %s", response.status_code, reference)
            raise PaymentGatewayError(f"gateway returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise PaymentGatewayError("gateway returned invalid JSON") from e

        data = body.get("data") or {}
        if not body.get("status") or not isinstance(data, dict):
            raise PaymentGatewayError(f"gateway could not verify {reference}: {body.get('message')}")

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}

        gateway_status = str(data.get("status") or "").lower()
        return GatewayVerification(
            reference=data.get("reference") or reference,
            status=_map_status(gateway_status),
            amount=_int_or_none(data.get("amount")) or 0,
            gateway_status=gateway_status,
            real_user_id=_int_or_none(metadata.get("userId")),
            credits=_int_or_none(metadata.get("credits")),
            raw=data,
        )


def get_payment_gateway() -> PaystackGateway:
    return PaystackGateway(
        secret_key=config.PAYSTACK_SECRET_KEY,
        base_url=config.PAYSTACK_BASE_URL,
        timeout=config.PAYSTACK_TIMEOUT_SECONDS,
    )
