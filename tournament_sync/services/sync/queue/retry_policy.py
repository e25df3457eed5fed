"""Retry and backoff policy for failed job attempts."""
from dataclasses import dataclass
from datetime import timedelta

from tournament_sync.core.config import settings
from tournament_sync.core.errors import is_retryable


@dataclass(frozen=True)
class RetryPolicy:
    """
    When and how long to wait before a failed job runs again.

    Non-retryable SyncErrors (configuration, not found) fail at once;
    anything else is retried until ``max_attempts`` runs have been made.
    """
    max_attempts: int = 3
    backoff: str = "exponential"  # exponential, fixed
    delay_ms: int = 2000

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(max_attempts=settings.QUEUE_MAX_ATTEMPTS, delay_ms=settings.QUEUE_BACKOFF_DELAY_MS)

    def delay_for(self, attempt: int) -> timedelta:
        """Wait after the given (1-based) attempt failed."""
        if self.backoff == "fixed":
            return timedelta(milliseconds=self.delay_ms)
        return timedelta(milliseconds=self.delay_ms * 2 ** (max(attempt, 1) - 1))

    def should_retry(self, exc: BaseException, attempts: int) -> bool:
        return is_retryable(exc) and attempts < self.max_attempts
