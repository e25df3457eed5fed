"""
Durable job queue on the sync_jobs table.

Status flow:
    waiting -> active -> completed
                      -> waiting (retry, available_at pushed out by backoff)
                      -> failed  (non-retryable or attempts exhausted)

Claiming is FIFO by (available_at, created_at). On PostgreSQL the claim
query uses FOR UPDATE SKIP LOCKED so several workers can share the table;
SQLite serializes writers on its own.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tournament_sync.core.config import settings
from tournament_sync.core.errors import ConfigurationError, NotFoundError
from tournament_sync.core.logging import get_logger, LoggerLike
from tournament_sync.models import SyncJob
from tournament_sync.services.sync.queue.job_types import QUEUE_FOR_JOB, parse_job_type, validate_payload
from tournament_sync.services.sync.queue.retry_policy import RetryPolicy

JOB_STATUSES = ("waiting", "active", "completed", "failed")


def job_to_dict(job: SyncJob) -> Dict[str, Any]:
    """Serialize a job for the API and logs."""
    def iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    return {
        'id': job.id,
        'type': job.type,
        'queue': job.queue,
        'data': job.data,
        'parent_id': job.parent_id,
        'status': job.status,
        'progress': job.progress,
        'attempts': job.attempts,
        'max_attempts': job.max_attempts,
        'result': job.result,
        'failed_reason': job.failed_reason,
        'available_at': iso(job.available_at),
        'created_at': iso(job.created_at),
        'started_at': iso(job.started_at),
        'finished_at': iso(job.finished_at),
    }


class JobQueue:
    """
    Enqueue, claim and settle sync jobs.

    Every state change is committed straight away so a crashed worker
    leaves an accurate trail behind.
    """

    def __init__(
        self,
        db: Session,
        policy: Optional[RetryPolicy] = None,
        lock_seconds: Optional[int] = None,
        logger: Optional[LoggerLike] = None
    ):
        """
        Args:
            db: SQLAlchemy database session
            policy: Retry policy (defaults to the configured one)
            lock_seconds: How long a claimed job may run before it counts as stalled
            logger: Logger to write to
        """
        self.db = db
        self.policy = policy or RetryPolicy.from_settings()
        self.lock_seconds = lock_seconds if lock_seconds is not None else settings.QUEUE_JOB_TIMEOUT_SECONDS
        self.logger = logger or get_logger(__name__)

    # ========================================================================
    # Producing
    # ========================================================================

    def enqueue(self, job_type: str, payload: Optional[dict] = None, parent_id: Optional[str] = None) -> str:
        """
        Validate the payload and store a waiting job.

        Returns:
            The new job id

        Raises:
            ConfigurationError: unknown job type or invalid payload
        """
        kind = parse_job_type(job_type)
        data = validate_payload(kind, payload).model_dump(mode="json", exclude_none=True)

        now = datetime.utcnow()
        job = SyncJob(
            type=kind.value,
            queue=QUEUE_FOR_JOB[kind],
            data=data,
            parent_id=parent_id,
            status='waiting',
            max_attempts=self.policy.max_attempts,
            available_at=now,
            created_at=now,
        )
        self.db.add(job)
        self.db.commit()

        self.logger.info(f"Enqueued {kind.value} job {job.id}" + (f" (parent {parent_id})" if parent_id else ""))
        return job.id

    # ========================================================================
    # Consuming
    # ========================================================================

    def claim_next(self, now: Optional[datetime] = None, queues: Optional[Iterable[str]] = None) -> Optional[SyncJob]:
        """Claim the oldest ready job, marking it active. None when nothing is ready."""
        now = now or datetime.utcnow()
        query = self.db.query(SyncJob).filter(
            SyncJob.status == 'waiting',
            SyncJob.available_at <= now,
        )
        if queues:
            query = query.filter(SyncJob.queue.in_(list(queues)))
        query = query.order_by(SyncJob.available_at, SyncJob.created_at)

        if self.db.get_bind().dialect.name == 'postgresql':
            query = query.with_for_update(skip_locked=True)

        job = query.first()
        if job is None:
            return None

        self.mark_active(job, now)
        return job

    def mark_active(self, job: SyncJob, now: Optional[datetime] = None) -> SyncJob:
        now = now or datetime.utcnow()
        job.status = 'active'
        job.attempts = (job.attempts or 0) + 1
        job.started_at = now
        job.locked_until = now + timedelta(seconds=self.lock_seconds)
        self.db.commit()
        return job

    def complete(self, job: SyncJob, result: Optional[Dict[str, Any]] = None) -> None:
        job.status = 'completed'
        job.progress = 100
        job.result = result
        job.failed_reason = None
        job.locked_until = None
        job.finished_at = datetime.utcnow()
        self.db.commit()

    def fail(self, job: SyncJob, exc: BaseException, policy: Optional[RetryPolicy] = None) -> bool:
        """
        Record a failed attempt.

        Returns:
            True when the job went back to waiting for another attempt
        """
        policy = policy or self.policy
        now = datetime.utcnow()
        job.failed_reason = str(exc) or exc.__class__.__name__
        job.locked_until = None

        retry = policy.should_retry(exc, job.attempts) and job.attempts < job.max_attempts
        if retry:
            job.status = 'waiting'
            job.available_at = now + policy.delay_for(job.attempts)
        else:
            job.status = 'failed'
            job.finished_at = now
        self.db.commit()
        return retry

    def update_progress(self, job_id: str, progress: int) -> None:
        job = self.get_job(job_id)
        if job is None:
            return
        job.progress = max(0, min(100, int(progress)))
        self.db.commit()

    def recover_stalled(self, now: Optional[datetime] = None) -> int:
        """
        Release active jobs whose lock expired (crashed or killed worker).

        Jobs with attempts left go back to waiting; the rest fail.

        Returns:
            Number of jobs recovered
        """
        now = now or datetime.utcnow()
        stalled = self.db.query(SyncJob).filter(
            SyncJob.status == 'active',
            SyncJob.locked_until < now,
        ).all()

        for job in stalled:
            job.locked_until = None
            if job.attempts >= job.max_attempts:
                job.status = 'failed'
                job.failed_reason = 'Job stalled more than allowable limit'
                job.finished_at = now
            else:
                job.status = 'waiting'
                job.available_at = now
            self.logger.warning(f"Recovered stalled job {job.id} ({job.type}) -> {job.status}")

        if stalled:
            self.db.commit()
        return len(stalled)

    def retry(self, job_id: str) -> SyncJob:
        """
        Manually re-run a failed job with a fresh attempt budget.

        Raises:
            NotFoundError: no such job
            ConfigurationError: the job is not failed
        """
        job = self.get_job(job_id)
        if job is None:
            raise NotFoundError('job', job_id)
        if job.status != 'failed':
            raise ConfigurationError(f"Job {job_id} is {job.status}; only failed jobs can be retried")

        job.status = 'waiting'
        job.attempts = 0
        job.failed_reason = None
        job.finished_at = None
        job.available_at = datetime.utcnow()
        self.db.commit()
        self.logger.info(f"Job {job_id} queued for retry")
        return job

    # ========================================================================
    # Queries
    # ========================================================================

    def get_job(self, job_id: str) -> Optional[SyncJob]:
        return self.db.query(SyncJob).filter(SyncJob.id == job_id).first()

    def get_counts(self) -> Dict[str, Dict[str, int]]:
        """Queue depths as {queue: {status: count}}, zero-filled."""
        counts = {
            queue: {status: 0 for status in JOB_STATUSES}
            for queue in sorted(set(QUEUE_FOR_JOB.values()))
        }
        rows = self.db.query(SyncJob.queue, SyncJob.status, func.count(SyncJob.id)).group_by(
            SyncJob.queue, SyncJob.status
        ).all()
        for queue, status, count in rows:
            counts.setdefault(queue, {s: 0 for s in JOB_STATUSES})[status] = count
        return counts

    def get_recent_jobs(self, limit: int = 20, status: Optional[str] = None) -> List[SyncJob]:
        query = self.db.query(SyncJob)
        if status:
            query = query.filter(SyncJob.status == status)
        return query.order_by(SyncJob.created_at.desc()).limit(limit).all()

    def get_children(self, job_id: str) -> List[SyncJob]:
        return self.db.query(SyncJob).filter(SyncJob.parent_id == job_id).order_by(SyncJob.created_at).all()
