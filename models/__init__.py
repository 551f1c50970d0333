# models/__init__.py

from .enums import (
    AssignmentReason,
    ChatFlag,
    ChatStatus,
    CloseReason,
    NotificationPriority,
    NotificationType,
    RefundReason,
    SenderType,
    TransactionStatus,
    UserTier,
)

from .users import User
from .real_user import RealUser
from .fictional_profile import FictionalProfile
from .operators import Operator

from .chat import Chat
from .chat_queue import ChatQueueEntry
from .chat_assignment import ChatAssignment
from .message import Message

from .transaction import Transaction
from .credit_refund import CreditRefund

from .admin_notification import AdminNotification
