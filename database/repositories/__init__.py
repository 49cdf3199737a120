from .user_repo import UserRepository
from .wallet_repo import WalletRepository
from .submission_repo import SubmissionRepository
from .transaction_repo import TransactionRepository
from .task_config_repo import TaskConfigRepository
from .check_repo import ContinuousCheckRepository
from .notification_repo import NotificationRepository
from .comment_limit_repo import CommentLimitRepository

__all__ = [
    "UserRepository",
    "WalletRepository",
    "SubmissionRepository",
    "TransactionRepository",
    "TaskConfigRepository",
    "ContinuousCheckRepository",
    "NotificationRepository",
    "CommentLimitRepository",
]
