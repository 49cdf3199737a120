"""Domain errors raised by the review and ledger services."""

from typing import Optional


class ReviewLedgerError(Exception):
    """Base class for all service errors surfaced to callers."""

    code = "error"
    http_status = 400

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotFound(ReviewLedgerError):
    code = "not_found"
    http_status = 404


class PermissionDenied(ReviewLedgerError):
    code = "permission_denied"
    http_status = 403


class InvalidSubmission(ReviewLedgerError):
    code = "invalid_submission"


class InvalidStateTransition(ReviewLedgerError):
    code = "invalid_state_transition"
    http_status = 409

    def __init__(self, submission_id: Optional[int], current: str, target: str, message: Optional[str] = None):
        self.submission_id = submission_id
        self.current = current
        self.target = target
        super().__init__(
            message or f"Submission {submission_id} cannot move from {current} to {target}"
        )


class InvalidAmount(ReviewLedgerError):
    code = "invalid_amount"

    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Amount must be a positive integer number of points, got {amount!r}")


class InsufficientPoints(ReviewLedgerError):
    code = "insufficient_points"
    http_status = 409

    def __init__(self, user_id: int, requested: int, balance: int):
        self.user_id = user_id
        self.requested = requested
        self.balance = balance
        super().__init__(
            f"User {user_id} requested {requested} points but balance is {balance}"
        )


class DuplicateSubmission(ReviewLedgerError):
    code = "duplicate_submission"
    http_status = 409

    def __init__(self, content_hash: str, existing_submission_id: int):
        self.content_hash = content_hash
        self.existing_submission_id = existing_submission_id
        super().__init__(
            f"Content {content_hash} was already submitted as #{existing_submission_id}"
        )


class ReferralCycleDetected(ReviewLedgerError):
    code = "referral_cycle"
    http_status = 409

    def __init__(self, user_id: int, referrer_id: int):
        self.user_id = user_id
        self.referrer_id = referrer_id
        super().__init__(
            f"Assigning referrer {referrer_id} to user {user_id} would create a cycle"
        )


class ReferrerAlreadyAssigned(ReviewLedgerError):
    code = "referrer_already_assigned"
    http_status = 409


class MentorAlreadyAssigned(ReviewLedgerError):
    code = "mentor_already_assigned"
    http_status = 409


class CommentLimitExceeded(ReviewLedgerError):
    """Comment refused by the per-note, per-author anti-abuse limit."""

    code = "comment_limit_exceeded"
    http_status = 403


class ClassifierUnavailable(ReviewLedgerError):
    """External classifier failed or timed out. Handled as a consumed attempt."""

    code = "classifier_unavailable"
    http_status = 503


class InvalidRequest(ReviewLedgerError):
    """Malformed HTTP request body or parameter."""

    code = "invalid_request"
