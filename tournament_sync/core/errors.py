"""
Error taxonomy for the sync engine.

Every error carries a ``retryable`` flag that the job queue's retry policy
reads to decide between backoff and immediate failure:

- ConfigurationError: caller bug (missing season, bad credentials), never retried
- NotFoundError: external resource absent, the enclosing sub-step is skipped
- TransientError: network/API/store failure, retried with exponential backoff
- PartialFailure: one item among many failed, counted and logged
- MalformedPatternError: invalid team matcher regex, handled inside the resolver
"""
from typing import Optional


class SyncError(Exception):
    """Base class for all sync engine errors."""

    retryable: bool = False


class ConfigurationError(SyncError):
    """Raised when the engine is invoked with an invalid configuration."""

    retryable = False


class NotFoundError(SyncError):
    """An external or internal resource does not exist."""

    retryable = False

    def __init__(self, resource: str, code: Optional[str] = None, message: Optional[str] = None):
        self.resource = resource
        self.code = code
        super().__init__(message or f"{resource} not found" + (f": {code}" if code else ""))


class TransientError(SyncError):
    """Temporary failure talking to the external API or the store."""

    retryable = True


class PartialFailure(SyncError):
    """One item of a batch failed; siblings continue."""

    retryable = False

    def __init__(self, step: str, item: str, cause: Exception):
        self.step = step
        self.item = item
        self.cause = cause
        super().__init__(f"{step} failed for {item}: {cause}")


class MalformedPatternError(SyncError):
    """A team matcher pattern could not be compiled or lacks the clubName group."""

    retryable = False

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        super().__init__(f"Invalid team matcher '{pattern}': {reason}")


def is_retryable(exc: BaseException) -> bool:
    """Unknown exceptions are retried, known ones follow their flag."""
    if isinstance(exc, SyncError):
        return exc.retryable
    return True
