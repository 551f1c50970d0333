# path: services/errors.py
from __future__ import annotations


class EngineError(Exception):
    """Base de los errores de dominio. Los controllers los traducen a HTTP."""


class NotFound(EngineError):
    pass


class InsufficientCreditsError(EngineError):
    def __init__(self, required: int, available: int):
        super().__init__(f"insufficient credits: need {required}, have {available}")
        self.required = required
        self.available = available


class AssignmentConflict(EngineError):
    """Se perdió la carrera por una entrada de la cola o por la capacidad del operador."""


class MaxReassignmentsReached(EngineError):
    def __init__(self, chat_id: int, assignment_count: int):
        super().__init__(f"chat {chat_id} reached {assignment_count} assignments, escalated")
        self.chat_id = chat_id
        self.assignment_count = assignment_count


class InvalidTransition(EngineError):
    def __init__(self, chat_id: int, current: str, target: str):
        super().__init__(f"chat {chat_id}: {current} -> {target} not allowed")
        self.chat_id = chat_id
        self.current = current
        self.target = target


class ChatNotWritable(EngineError):
    pass


class OperatorBusy(EngineError):
    def __init__(self, operator_id: int, live_chats: int):
        super().__init__(f"operator {operator_id} has {live_chats} live chat(s)")
        self.operator_id = operator_id
        self.live_chats = live_chats


class OperatorUnavailable(EngineError):
    pass


class WebhookVerificationError(EngineError):
    pass


class ManualReviewRequired(EngineError):
    def __init__(self, transaction_id: int, reason: str):
        super().__init__(f"transaction {transaction_id} needs manual review: {reason}")
        self.transaction_id = transaction_id
        self.reason = reason


class PaymentGatewayError(EngineError):
    pass


class InvalidRefund(EngineError):
    pass


class RefundAlreadyApplied(EngineError):
    pass


class CounterPreconditionFailed(EngineError):
    """Un incremento/decremento atómico no encontró la fila en el estado esperado."""


class InvalidWebhookPayload(EngineError):
    pass
