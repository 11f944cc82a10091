"""Error taxonomy shared by the grading core, the store and the services."""

from __future__ import annotations


class LMSError(Exception):
    """Base class for every error raised by lms_core."""


class NotFound(LMSError, LookupError):
    """A referenced course, lesson, assessment, enrollment or user does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class DenialError(LMSError):
    """User-facing refusal. Not a fault; `reason` is safe to show the learner."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class AttemptLimitExceeded(DenialError):
    def __init__(self, assessment_kind: str, attempts_allowed: int):
        self.assessment_kind = assessment_kind
        self.attempts_allowed = attempts_allowed
        super().__init__(f"You have used all your attempts for this {assessment_kind}")


class PrerequisiteNotMet(DenialError):
    pass


class InsufficientBalance(DenialError):
    def __init__(self, current_balance: float, amount: float):
        self.current_balance = current_balance
        self.amount = amount
        super().__init__("Insufficient balance")


class InvalidInput(LMSError, ValueError):
    """Malformed input, typically an assessment definition rejected at authoring time."""


class TransactionConflict(LMSError):
    """The store gave up retrying a transaction after repeated concurrent writes."""


class TransactionOrderError(LMSError, RuntimeError):
    """A transaction attempted a read after it had already staged a write."""


class PermissionDenied(DenialError):
    """The acting user may not see or change the requested record."""
