"""Sync API routes: a thin trigger and inspection surface over the job queue.

Provides endpoints for:
- Enqueueing sync jobs
- Sync health monitoring
- Job inspection and manual retries
- The team-matching review queue
- Scheduler status

Jobs are never executed in the request; the worker process picks them up.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tournament_sync.core.database import get_db
from tournament_sync.core.errors import ConfigurationError, NotFoundError
from tournament_sync.core.logging import get_logger
from tournament_sync.services.sync.orchestrator import SyncOrchestrator
from tournament_sync.services.sync.queue.job_queue import JOB_STATUSES
from tournament_sync.services.sync.queue.job_types import UnknownJobTypeError

logger = get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


class EnqueueRequest(BaseModel):
    type: str = Field(..., description="Job type, e.g. tournament-discovery")
    payload: Dict[str, Any] = Field(default_factory=dict)


class ApproveReviewRequest(BaseModel):
    team_id: str
    resolved_by: str = "admin"


class RejectReviewRequest(BaseModel):
    reason: Optional[str] = None
    resolved_by: str = "admin"


class CreateTeamRequest(BaseModel):
    name: str
    season: int
    team_number: Optional[int] = None
    type: Optional[str] = None
    club_id: Optional[str] = None
    resolved_by: str = "admin"


def get_orchestrator(db: Session = Depends(get_db)) -> SyncOrchestrator:
    """Dependency to get sync orchestrator instance."""
    return SyncOrchestrator(db)


def to_http_error(e: Exception) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(e, UnknownJobTypeError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Sync request failed: {e}")
    return HTTPException(status_code=500, detail=str(e))


# ============================================================================
# JOBS
# ============================================================================

@router.post("/jobs", status_code=202)
async def enqueue_job(
    request: EnqueueRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """
    Enqueue a sync job.

    The payload is validated against the job type before anything is
    stored. Unknown types are rejected with 422, invalid payloads with 400.
    """
    try:
        job_id = orchestrator.enqueue(request.type, request.payload)
    except Exception as e:
        raise to_http_error(e)
    return {'job_id': job_id, 'type': request.type, 'status': 'waiting'}


@router.get("/status")
async def get_sync_status(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """
    Get overall sync health status dashboard.

    Returns:
    - Health status (healthy, degraded, unhealthy)
    - Last sync times and counts per job type
    - Queue depths per queue and status
    - Circuit breaker states
    - Unmatched team and pending review counts
    """
    return orchestrator.get_status()


@router.get("/jobs")
async def get_recent_jobs(
    limit: int = Query(20, ge=1, le=200),
    status: Optional[str] = Query(None, description="waiting, active, completed or failed"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    if status is not None and status not in JOB_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown job status: {status}")
    jobs = orchestrator.get_recent_jobs(limit=limit, status=status)
    return {'count': len(jobs), 'jobs': jobs}


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Job details including progress, result, failed reason and child jobs."""
    try:
        return orchestrator.get_job(job_id)
    except Exception as e:
        raise to_http_error(e)


@router.post("/jobs/{job_id}/retry")
async def retry_job(
    job_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Put a failed job back on its queue with a fresh attempt budget."""
    try:
        return orchestrator.retry_job(job_id)
    except Exception as e:
        raise to_http_error(e)


# ============================================================================
# TEAM MATCHING REVIEWS
# ============================================================================

@router.get("/reviews")
async def get_pending_reviews(
    tournament_code: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    reviews = orchestrator.get_pending_reviews(tournament_code=tournament_code, limit=limit)
    return {'count': len(reviews), 'reviews': reviews}


@router.get("/reviews/stats")
async def get_review_stats(
    tournament_code: Optional[str] = Query(None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    return orchestrator.get_review_stats(tournament_code=tournament_code)


@router.post("/reviews/{review_id}/approve")
async def approve_review(
    review_id: str,
    request: ApproveReviewRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Link the reviewed external team to an existing team."""
    try:
        return orchestrator.approve_review(review_id, request.team_id, request.resolved_by)
    except Exception as e:
        raise to_http_error(e)


@router.post("/reviews/{review_id}/reject")
async def reject_review(
    review_id: str,
    request: RejectReviewRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    try:
        return orchestrator.reject_review(review_id, request.reason, request.resolved_by)
    except Exception as e:
        raise to_http_error(e)


@router.post("/reviews/{review_id}/create-team")
async def create_team_from_review(
    review_id: str,
    request: CreateTeamRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Create a new team for the reviewed external team and link it."""
    try:
        return orchestrator.create_team_from_review(
            review_id,
            name=request.name,
            team_number=request.team_number,
            type=request.type,
            season=request.season,
            club_id=request.club_id,
            resolved_by=request.resolved_by,
        )
    except Exception as e:
        raise to_http_error(e)


# ============================================================================
# SCHEDULER
# ============================================================================

@router.get("/scheduler/status")
async def get_scheduler_status(request: Request) -> Dict:
    """
    Get the current status of the automation scheduler.

    The scheduler is only present when the API process runs one
    (API_RUN_SCHEDULER).

    Returns:
        Scheduler status including running state and job list
    """
    scheduler = getattr(request.app.state, 'scheduler', None)

    if scheduler is None:
        return {
            'running': False,
            'message': 'Scheduler not initialized'
        }

    jobs = scheduler.scheduler.get_jobs() if scheduler.scheduler else []

    job_list = []
    for job in jobs:
        next_run = getattr(job, 'next_run_time', None)
        job_list.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return {
        'running': scheduler.running,
        'jobs': job_list,
        'total_jobs': len(jobs)
    }
