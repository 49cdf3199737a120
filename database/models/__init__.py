from .user import User, Role
from .wallet import Wallet
from .submission import (
    Submission,
    SubmissionImage,
    SubmissionStatus,
    TaskType,
    TrailEntry,
    ReviewStage,
    Decision,
    TERMINAL_STATUSES,
    AI_STAGE_STATUSES,
    SETTLED_STATUSES,
)
from .transaction import Transaction, TransactionType, TransactionStatus
from .task_config import TaskConfig, ExchangeRate
from .notification import Notification, NotificationKind

__all__ = [
    "User",
    "Role",
    "Wallet",
    "Submission",
    "SubmissionImage",
    "SubmissionStatus",
    "TaskType",
    "TrailEntry",
    "ReviewStage",
    "Decision",
    "TERMINAL_STATUSES",
    "AI_STAGE_STATUSES",
    "SETTLED_STATUSES",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
    "TaskConfig",
    "ExchangeRate",
    "Notification",
    "NotificationKind",
]
