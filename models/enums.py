# path: models/enums.py
from __future__ import annotations

from enum import Enum


class ChatStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    ESCALATED = "escalated"
    CLOSED = "closed"


# estados que "ocupan" al operador (current_chat_count)
LIVE_STATUSES = (ChatStatus.ACTIVE, ChatStatus.IDLE)


class ChatFlag(str, Enum):
    MAX_REASSIGNMENTS_REACHED = "max_reassignments_reached"
    OPERATOR_IDLE = "operator_idle"
    QUEUE_TIMEOUT = "queue_timeout"


class CloseReason(str, Enum):
    INACTIVITY_TIMEOUT = "inactivity_timeout"
    ESCALATION_TIMEOUT = "escalation_timeout"
    ADMIN_CLOSED = "admin_closed"


class SenderType(str, Enum):
    REAL = "real"
    FICTIONAL = "fictional"


class UserTier(str, Enum):
    FREE = "free"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class AssignmentReason(str, Enum):
    QUEUE_MATCH = "queue_match"
    OPERATOR_ACCEPT = "operator_accept"
    ADMIN_REASSIGN = "admin_reassign"
    ESCALATION_RESOLVED = "escalation_resolved"
    OPERATOR_RELEASE = "operator_release"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RefundReason(str, Enum):
    ACCIDENTAL_SEND = "accidental_send"
    INAPPROPRIATE_CONTENT = "inappropriate_content"
    SYSTEM_ERROR = "system_error"
    ADMIN_DISCRETION = "admin_discretion"
    ACCOUNT_DELETION = "account_deletion"


class NotificationType(str, Enum):
    CHAT_ESCALATION = "chat_escalation"
    CHAT_REASSIGNMENT = "chat_reassignment"
    CREDIT_REFUND = "credit_refund"
    SWEEP_SUMMARY = "sweep_summary"
    PAYMENT_MANUAL_REVIEW = "payment_manual_review"
    PAYMENT_RECONCILED = "payment_reconciled"
    WEBHOOK_VERIFICATION_FAILED = "webhook_verification_failed"
    SYSTEM_ERROR = "system_error"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"
