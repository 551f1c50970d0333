# path: controllers/http_errors.py
from __future__ import annotations

from contextlib import contextmanager

from fastapi import HTTPException

from services.errors import (
    AssignmentConflict,
    ChatNotWritable,
    CounterPreconditionFailed,
    EngineError,
    InsufficientCreditsError,
    InvalidRefund,
    InvalidTransition,
    InvalidWebhookPayload,
    MaxReassignmentsReached,
    NotFound,
    OperatorBusy,
    OperatorUnavailable,
    PaymentGatewayError,
    RefundAlreadyApplied,
    WebhookVerificationError,
)

STATUS_BY_ERROR = [
    (NotFound, 404),
    (WebhookVerificationError, 401),
    (
        (
            AssignmentConflict,
            MaxReassignmentsReached,
            InvalidTransition,
            ChatNotWritable,
            OperatorBusy,
            RefundAlreadyApplied,
            CounterPreconditionFailed,
        ),
        409,
    ),
    ((OperatorUnavailable, InvalidRefund, InvalidWebhookPayload), 400),
]


def to_http(exc: EngineError, *, gateway_status: int = 503) -> HTTPException:
    if isinstance(exc, InsufficientCreditsError):
        return HTTPException(
            status_code=402,
            detail={
                "error": "insufficient_credits",
                "required": exc.required,
                "available": exc.available,
            },
        )

    if isinstance(exc, PaymentGatewayError):
        return HTTPException(status_code=gateway_status, detail=str(exc))

    for types, status in STATUS_BY_ERROR:
        if isinstance(exc, types):
            return HTTPException(status_code=status, detail=str(exc))

    return HTTPException(status_code=400, detail=str(exc))


@contextmanager
def domain_errors(*, gateway_status: int = 503):
    """Traduce los errores de dominio a HTTPException dentro del bloque."""
    try:
        yield
    except EngineError as e:
        raise to_http(e, gateway_status=gateway_status) from e
