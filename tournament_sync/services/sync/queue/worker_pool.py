"""
Worker pool consuming the durable job queue.

Jobs are submitted explicitly and each submission returns an asyncio
Future that resolves to the job result or raises the job's exception.
Retries are not a decorator concern here: a failed attempt is handed to
the queue, whose RetryPolicy decides between backoff and failure.

Per job the pool:
- opens a fresh session (closed afterwards)
- sets the correlation id to the job id
- binds a logger carrying job_id and job_type
- enforces the job timeout (a timeout is a TransientError)
- records the outcome in Prometheus

The timeout is enforced by asyncio, so it can only cancel a job at an
await point. Processors make synchronous SQLAlchemy calls on the event
loop; a database call that hangs is not interrupted by the timeout, and
the job is failed at its next await. A job stuck past its lock is put
back by recover_stalled once locked_until has passed.
"""
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from tournament_sync.core.config import settings
from tournament_sync.core.database import SessionLocal
from tournament_sync.core.errors import ConfigurationError, NotFoundError, TransientError
from tournament_sync.core.logging import (
    bind_job_logger, clear_correlation_id, get_logger, set_correlation_id, LoggerLike
)
from tournament_sync.core.metrics import record_job_outcome, update_queue_depths
from tournament_sync.services.sync.processors.base import JobContext
from tournament_sync.services.sync.processors.registry import ProcessorRegistry
from tournament_sync.services.sync.queue.job_queue import JobQueue
from tournament_sync.services.sync.queue.job_types import validate_payload
from tournament_sync.services.sync.queue.retry_policy import RetryPolicy
from tournament_sync.services.tournament_api.client import TournamentApiClient, build_api_client

JOB_LOGGER_NAME = "tournament_sync.jobs"


class WorkerPool:
    """Bounded-concurrency executor for sync jobs."""

    def __init__(
        self,
        registry: ProcessorRegistry,
        api: Optional[TournamentApiClient] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        concurrency: Optional[int] = None,
        job_timeout: Optional[float] = None,
        policy: Optional[RetryPolicy] = None,
        logger: Optional[LoggerLike] = None
    ):
        """
        Args:
            registry: Processor per job type
            api: Tournament API client shared by all jobs (built from settings when omitted)
            session_factory: Callable returning a new Session per job
            concurrency: Maximum jobs running at once
            job_timeout: Seconds a job may run before it is failed as transient
            policy: Retry policy for failed attempts
            logger: Logger for pool-level messages
        """
        self.registry = registry
        self.session_factory = session_factory or SessionLocal
        self.concurrency = concurrency or settings.QUEUE_CONCURRENCY
        self.job_timeout = job_timeout or settings.QUEUE_JOB_TIMEOUT_SECONDS
        self.policy = policy or RetryPolicy.from_settings()
        self.logger = logger or get_logger(__name__)

        self._api = api
        self._owns_api = api is None
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._in_flight: Set[asyncio.Future] = set()
        self._closed = False

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _get_api(self) -> TournamentApiClient:
        if self._api is None:
            self._api = build_api_client()
        return self._api

    def _queue(self, db: Session) -> JobQueue:
        return JobQueue(db, policy=self.policy, lock_seconds=int(self.job_timeout), logger=self.logger)

    # ========================================================================
    # Submission
    # ========================================================================

    def submit(self, job_id: str) -> asyncio.Future:
        """
        Schedule a job for execution.

        Returns:
            Future resolving to the job result dict, or raising the job's error

        Raises:
            ConfigurationError: the pool has been shut down
        """
        if self._closed:
            raise ConfigurationError("Worker pool is shut down")

        future = asyncio.ensure_future(self._run(job_id))
        self._in_flight.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: asyncio.Future) -> None:
        self._in_flight.discard(future)
        # Outcomes are persisted on the job row; retrieve the exception so
        # fire-and-forget submissions do not warn on garbage collection.
        if not future.cancelled():
            future.exception()

    async def drain(self) -> List[asyncio.Future]:
        """Claim ready jobs up to the free capacity and submit them."""
        if self._closed:
            return []

        futures: List[asyncio.Future] = []
        db = self.session_factory()
        try:
            queue = self._queue(db)
            while self.in_flight < self.concurrency:
                job = queue.claim_next()
                if job is None:
                    break
                futures.append(self.submit(job.id))
            update_queue_depths(queue.get_counts())
        finally:
            db.close()

        if futures:
            self.logger.debug(f"Drained {len(futures)} job(s), {self.in_flight} in flight")
        return futures

    def recover_stalled(self) -> int:
        db = self.session_factory()
        try:
            return self._queue(db).recover_stalled()
        finally:
            db.close()

    async def shutdown(self) -> None:
        """Stop accepting jobs and wait for the in-flight ones."""
        self._closed = True
        if self._in_flight:
            self.logger.info(f"Waiting for {self.in_flight} in-flight job(s)")
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        if self._owns_api and self._api is not None:
            await self._api.close()

    # ========================================================================
    # Execution
    # ========================================================================

    async def _run(self, job_id: str) -> Dict[str, Any]:
        async with self._semaphore:
            db = self.session_factory()
            token = set_correlation_id(job_id)
            try:
                return await self._execute(db, job_id)
            finally:
                clear_correlation_id(token)
                db.close()

    async def _execute(self, db: Session, job_id: str) -> Dict[str, Any]:
        queue = self._queue(db)
        job = queue.get_job(job_id)
        if job is None:
            raise NotFoundError('job', job_id)
        if job.status == 'waiting':
            queue.mark_active(job)
        elif job.status != 'active':
            raise ConfigurationError(f"Job {job_id} is already {job.status}")

        job_type = job.type
        job_logger = bind_job_logger(JOB_LOGGER_NAME, job.id, job_type)
        started = time.monotonic()

        try:
            processor = self.registry.get(job_type)
            context = JobContext(
                job=job,
                payload=validate_payload(job_type, job.data),
                db=db,
                api=self._get_api(),
                queue=queue,
                logger=job_logger,
            )
            job_logger.info(f"Starting {job_type} (attempt {job.attempts}/{job.max_attempts})")
            try:
                # Cancels at the next await; blocking DB work in between runs to completion
                result = await asyncio.wait_for(processor.process(context), timeout=self.job_timeout)
            except asyncio.TimeoutError as e:
                raise TransientError(f"Job timed out after {self.job_timeout}s") from e
        except Exception as e:
            db.rollback()
            retried = queue.fail(job, e)
            record_job_outcome(job_type, 'retried' if retried else 'failed', time.monotonic() - started)
            if retried:
                job_logger.warning(f"Attempt {job.attempts} failed, retrying at {job.available_at}: {e}")
            else:
                job_logger.error(f"Job failed: {job.failed_reason}")
            raise

        queue.complete(job, result)
        record_job_outcome(job_type, 'completed', time.monotonic() - started)
        return result
