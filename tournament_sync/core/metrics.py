"""
Prometheus metrics for the sync engine.

Metrics exposed:
- Sync job outcomes and durations per job type
- Queue depth per queue and status
- Team resolution outcomes per strategy and confidence tier
- Tournament API request outcomes
- Circuit breaker state
"""
from typing import Dict

from prometheus_client import Counter, Gauge, Histogram

# Job metrics
sync_jobs_total = Counter(
    "sync_jobs_total",
    "Total sync jobs finished",
    ["job_type", "outcome"]  # completed, retried, failed
)

sync_job_duration_seconds = Histogram(
    "sync_job_duration_seconds",
    "Sync job run time in seconds",
    ["job_type"]
)

sync_queue_depth = Gauge(
    "sync_queue_depth",
    "Jobs per queue and status",
    ["queue", "status"]
)

# Resolution metrics
team_resolutions_total = Counter(
    "team_resolutions_total",
    "Team resolutions by winning strategy and confidence tier",
    ["strategy", "confidence"]
)

# External API metrics
tournament_api_requests_total = Counter(
    "tournament_api_requests_total",
    "Tournament API requests by outcome",
    ["outcome"]  # success, not_found, transient, cache_hit
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["service"]
)

_BREAKER_STATE_VALUES = {"closed": 0, "open": 1, "half-open": 2, "half_open": 2}


def record_job_outcome(job_type: str, outcome: str, duration_seconds: float) -> None:
    """Record a finished job run."""
    sync_jobs_total.labels(job_type=job_type, outcome=outcome).inc()
    sync_job_duration_seconds.labels(job_type=job_type).observe(duration_seconds)


def record_resolution(strategy: str, confidence: str) -> None:
    """Record a resolver outcome."""
    team_resolutions_total.labels(strategy=strategy, confidence=confidence).inc()


def record_api_request(outcome: str) -> None:
    """Record a tournament API call outcome."""
    tournament_api_requests_total.labels(outcome=outcome).inc()


def update_queue_depths(counts: Dict[str, Dict[str, int]]) -> None:
    """
    Update queue depth gauges.

    Args:
        counts: {queue_name: {status: count}} as returned by JobQueue.get_counts()
    """
    for queue, statuses in counts.items():
        for status, count in statuses.items():
            sync_queue_depth.labels(queue=queue, status=status).set(count)


def update_breaker_state(service: str, state: str) -> None:
    """Publish a breaker state string as a gauge value."""
    circuit_breaker_state.labels(service=service).set(_BREAKER_STATE_VALUES.get(state, 0))
