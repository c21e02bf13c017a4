# mlm_core/errors.py
"""
Error kinds raised by the MLM core services.

InvalidParent and InsufficientBalance are expected, user-facing conditions.
DuplicateEvent is a no-op success for idempotent callers.
InvariantViolation signals a data-consistency bug and is never retried.
Contention is transient and safe to retry with backoff.
"""
from decimal import Decimal
from typing import Any, Optional


class MLMError(Exception):
    """Base class for MLM core errors."""
    pass


class MemberNotFound(MLMError):
    """Referenced member does not exist."""

    def __init__(self, memberId: Any):
        self.memberId = memberId
        super().__init__(f"Member {memberId} not found")


class InvalidParent(MLMError):
    """Parent is missing or its upline chain is broken or cyclic."""

    def __init__(self, parentId: Any, reason: str = "parent not found"):
        self.parentId = parentId
        self.reason = reason
        super().__init__(f"Invalid parent {parentId}: {reason}")


class DuplicateEvent(MLMError):
    """Idempotency key has already been applied."""

    def __init__(self, eventKey: str):
        self.eventKey = eventKey
        super().__init__(f"Event '{eventKey}' has already been applied")


class InvariantViolation(MLMError):
    """An update would break a data-consistency invariant."""

    def __init__(self, message: str, memberId: Optional[int] = None):
        self.memberId = memberId
        super().__init__(message)


class InsufficientBalance(MLMError):
    """Debit exceeds the member's available points."""

    def __init__(self, memberId: int, requested: Decimal, available: Decimal):
        self.memberId = memberId
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient balance for member {memberId}: "
            f"requested={requested}, available={available}"
        )


class Contention(MLMError):
    """A lock could not be acquired within the bounded wait."""

    def __init__(self, key: Any, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Could not acquire lock {key} within {timeout}s")
