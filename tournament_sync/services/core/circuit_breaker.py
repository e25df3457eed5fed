"""
Circuit breaker for tournament API calls.

Uses pybreaker. Async calls go through ``CircuitBreaker.call_async``,
which needs tornado installed alongside pybreaker.

Circuit Breaker States:
- CLOSED: Requests pass through normally
- OPEN: Requests fail immediately with CircuitBreakerError (after fail_max failures)
- HALF_OPEN: One request allowed to test if the API has recovered
"""
from typing import Any, Awaitable, Callable, Dict

from pybreaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerListener

from tournament_sync.core.logging import get_logger
from tournament_sync.core.metrics import update_breaker_state

logger = get_logger(__name__)

DEFAULT_FAIL_MAX = 5  # Number of failures before opening circuit
DEFAULT_RESET_TIMEOUT = 60  # Seconds before attempting to close circuit

__all__ = [
    "CircuitBreakerError",
    "tournament_api_breaker",
    "call_protected",
    "get_all_breaker_states",
    "reset_breaker",
]


class _StateLogger(CircuitBreakerListener):
    """Logs transitions and mirrors them to the breaker gauge."""

    def state_change(self, cb, old_state, new_state):
        old_name = old_state.name if old_state else "none"
        logger.warning(f"Circuit breaker '{cb.name}' {old_name} -> {new_state.name}")
        update_breaker_state(cb.name, new_state.name)


tournament_api_breaker = CircuitBreaker(
    fail_max=DEFAULT_FAIL_MAX,
    reset_timeout=DEFAULT_RESET_TIMEOUT,
    name="tournament_api",
    listeners=[_StateLogger()],
)


async def call_protected(breaker: CircuitBreaker, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
    """
    Await ``func`` under the breaker.

    Raises:
        CircuitBreakerError: the circuit is open
        Exception: whatever ``func`` raised
    """
    return await breaker.call_async(func, *args, **kwargs)


def get_all_breaker_states() -> Dict[str, str]:
    """Current state of every breaker, keyed by name."""
    return {tournament_api_breaker.name: tournament_api_breaker.current_state}


def reset_breaker(breaker: CircuitBreaker) -> None:
    """
    Manually reset a circuit breaker to closed state.

    Only reset if you know the service has recovered.
    """
    breaker.close()
    logger.warning(f"Circuit breaker '{breaker.name}' manually reset to CLOSED state")
