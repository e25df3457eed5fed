"""Tests for the worker pool driving jobs through the queue."""
import asyncio
import time
from typing import Any, Dict, List

import pytest
from sqlalchemy.orm import Session

from tournament_sync.core.errors import ConfigurationError, TransientError
from tournament_sync.core.logging import get_correlation_id
from tournament_sync.models import SyncJob, SyncMetadata
from tournament_sync.services.sync.processors.base import BaseProcessor, JobContext
from tournament_sync.services.sync.processors.registry import ProcessorRegistry
from tournament_sync.services.sync.queue.job_queue import JobQueue
from tournament_sync.services.sync.queue.job_types import JobType
from tournament_sync.services.sync.queue.worker_pool import WorkerPool


class ScriptedProcessor(BaseProcessor):
    """Discovery stand-in that plays back a list of outcomes."""

    job_type = JobType.TOURNAMENT_DISCOVERY

    def __init__(self, outcomes: List[Any] = None, delay: float = 0):
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: List[str] = []
        self.correlation_ids: List[str] = []
        self.running = 0
        self.max_running = 0

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        self.calls.append(ctx.job_id)
        self.correlation_ids.append(get_correlation_id())
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.running -= 1

        outcome = self.outcomes.pop(0) if self.outcomes else {'processed': 1}
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class BlockingProcessor(ScriptedProcessor):
    """Runs a synchronous sleep, like a slow database call, before awaiting."""

    def __init__(self, block: float):
        super().__init__()
        self.block = block
        self.blocking_done = False

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        time.sleep(self.block)
        self.blocking_done = True
        await asyncio.sleep(1.0)
        return {'processed': 1}


@pytest.fixture
def enqueue(db_session: Session, fast_policy, logger):
    queue = JobQueue(db_session, policy=fast_policy, logger=logger)

    def _enqueue(job_type: str = "tournament-discovery", payload: dict = None) -> str:
        return queue.enqueue(job_type, payload or {})

    return _enqueue


def make_pool(processor, session_factory, mock_api, fast_policy, **kwargs) -> WorkerPool:
    return WorkerPool(
        ProcessorRegistry([processor]),
        api=mock_api,
        session_factory=session_factory,
        policy=fast_policy,
        **kwargs,
    )


def load_job(db_session: Session, job_id: str) -> SyncJob:
    db_session.expire_all()
    return db_session.query(SyncJob).filter(SyncJob.id == job_id).one()


# =============================================================================
# OUTCOMES
# =============================================================================

class TestJobOutcomes:

    @pytest.mark.asyncio
    async def test_successful_job(self, db_session, session_factory, mock_api, fast_policy, enqueue):
        """Should complete the job with the processor result."""
        processor = ScriptedProcessor([{'processed': 4, 'matched': 2}])
        pool = make_pool(processor, session_factory, mock_api, fast_policy)
        job_id = enqueue()

        result = await pool.submit(job_id)

        assert result['success'] is True
        assert result['processed'] == 4
        assert 'duration_ms' in result
        job = load_job(db_session, job_id)
        assert job.status == 'completed'
        assert job.progress == 100
        assert job.result['matched'] == 2
        assert job.attempts == 1

        metadata = db_session.query(SyncMetadata).filter(SyncMetadata.data_type == "tournament-discovery").one()
        assert metadata.last_sync_status == 'success'
        assert metadata.records_processed == 4

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, db_session, session_factory, mock_api, fast_policy, enqueue):
        """Should put a transient failure back on the queue and finish on the next drain."""
        processor = ScriptedProcessor([TransientError("API returned 503"), {'processed': 2}])
        pool = make_pool(processor, session_factory, mock_api, fast_policy)
        job_id = enqueue()

        with pytest.raises(TransientError):
            await pool.submit(job_id)

        job = load_job(db_session, job_id)
        assert job.status == 'waiting'
        assert job.failed_reason == "API returned 503"

        futures = await pool.drain()
        assert len(futures) == 1
        result = await futures[0]

        assert result['processed'] == 2
        job = load_job(db_session, job_id)
        assert job.status == 'completed'
        assert job.attempts == 2
        assert processor.calls == [job_id, job_id]

    @pytest.mark.asyncio
    async def test_configuration_error_fails_at_once(
        self, db_session, session_factory, mock_api, fast_policy, enqueue
    ):
        """Should not retry a non-retryable error."""
        processor = ScriptedProcessor([ConfigurationError("Season is required")])
        pool = make_pool(processor, session_factory, mock_api, fast_policy)
        job_id = enqueue()

        with pytest.raises(ConfigurationError):
            await pool.submit(job_id)

        job = load_job(db_session, job_id)
        assert job.status == 'failed'
        assert job.attempts == 1
        assert await pool.drain() == []

        metadata = db_session.query(SyncMetadata).filter(SyncMetadata.data_type == "tournament-discovery").one()
        assert metadata.last_sync_status == 'failed'
        assert metadata.error_message == "Season is required"

    @pytest.mark.asyncio
    async def test_malformed_stored_payload_fails_at_once(
        self, db_session, session_factory, mock_api, fast_policy, enqueue
    ):
        """Should fail a job whose stored dates do not parse without retrying it."""
        processor = ScriptedProcessor()
        pool = make_pool(processor, session_factory, mock_api, fast_policy)
        job_id = enqueue()
        job = load_job(db_session, job_id)
        job.data = {"ref_date": "garbage"}
        db_session.commit()

        with pytest.raises(ConfigurationError, match="Invalid payload"):
            await pool.submit(job_id)

        job = load_job(db_session, job_id)
        assert job.status == 'failed'
        assert job.attempts == 1
        assert processor.calls == []
        assert await pool.drain() == []

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self, db_session, session_factory, mock_api, fast_policy, enqueue):
        """Should fail the job after max_attempts transient failures."""
        processor = ScriptedProcessor([TransientError("timeout")] * 3)
        pool = make_pool(processor, session_factory, mock_api, fast_policy)
        job_id = enqueue()

        with pytest.raises(TransientError):
            await pool.submit(job_id)
        for _ in range(2):
            futures = await pool.drain()
            assert len(futures) == 1
            with pytest.raises(TransientError):
                await futures[0]

        job = load_job(db_session, job_id)
        assert job.status == 'failed'
        assert job.attempts == 3
        assert await pool.drain() == []

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, db_session, session_factory, mock_api, fast_policy, enqueue):
        """Should fail a job that overruns its timeout as transient."""
        processor = ScriptedProcessor(delay=1.0)
        pool = make_pool(processor, session_factory, mock_api, fast_policy, job_timeout=0.05)
        job_id = enqueue()

        with pytest.raises(TransientError, match="timed out"):
            await pool.submit(job_id)

        job = load_job(db_session, job_id)
        assert job.status == 'waiting'
        assert "timed out" in job.failed_reason

    @pytest.mark.asyncio
    async def test_timeout_waits_for_blocking_work(
        self, db_session, session_factory, mock_api, fast_policy, enqueue
    ):
        """Should let synchronous work finish and time the job out at its next await."""
        processor = BlockingProcessor(block=0.2)
        pool = make_pool(processor, session_factory, mock_api, fast_policy, job_timeout=0.05)
        job_id = enqueue()
        started = time.monotonic()

        with pytest.raises(TransientError, match="timed out"):
            await pool.submit(job_id)

        assert processor.blocking_done is True
        assert time.monotonic() - started >= 0.2
        assert load_job(db_session, job_id).status == 'waiting'

    @pytest.mark.asyncio
    async def test_unregistered_job_type(self, db_session, session_factory, mock_api, fast_policy, enqueue):
        """Should fail jobs without a processor."""
        pool = make_pool(ScriptedProcessor(), session_factory, mock_api, fast_policy)
        job_id = enqueue("team-matching", {"tournament_code": "C1"})

        with pytest.raises(ConfigurationError, match="No processor registered"):
            await pool.submit(job_id)

        assert load_job(db_session, job_id).status == 'failed'

    @pytest.mark.asyncio
    async def test_completed_job_not_rerun(self, db_session, session_factory, mock_api, fast_policy, enqueue):
        """Should refuse to run a job that already finished."""
        processor = ScriptedProcessor()
        pool = make_pool(processor, session_factory, mock_api, fast_policy)
        job_id = enqueue()
        await pool.submit(job_id)

        with pytest.raises(ConfigurationError):
            await pool.submit(job_id)

        assert processor.calls == [job_id]


# =============================================================================
# POOL BEHAVIOUR
# =============================================================================

class TestPoolBehaviour:

    @pytest.mark.asyncio
    async def test_correlation_id_is_job_id(self, session_factory, mock_api, fast_policy, enqueue):
        """Should expose the job id as correlation id while the job runs."""
        processor = ScriptedProcessor()
        pool = make_pool(processor, session_factory, mock_api, fast_policy)
        job_id = enqueue()

        await pool.submit(job_id)

        assert processor.correlation_ids == [job_id]
        assert get_correlation_id() == ""

    @pytest.mark.asyncio
    async def test_drain_respects_concurrency(self, db_session, session_factory, mock_api, fast_policy, enqueue):
        """Should claim no more jobs than free slots."""
        processor = ScriptedProcessor(delay=0.05)
        pool = make_pool(processor, session_factory, mock_api, fast_policy, concurrency=2)
        job_ids = [enqueue() for _ in range(3)]

        futures = await pool.drain()
        assert len(futures) == 2
        assert pool.in_flight == 2
        assert await pool.drain() == []

        await asyncio.gather(*futures)
        await asyncio.sleep(0)
        assert pool.in_flight == 0
        assert processor.max_running <= 2

        rest = await pool.drain()
        assert len(rest) == 1
        await rest[0]
        db_session.expire_all()
        statuses = {job.id: job.status for job in db_session.query(SyncJob).all()}
        assert statuses == {job_id: 'completed' for job_id in job_ids}

    @pytest.mark.asyncio
    async def test_shutdown_waits_and_stops_accepting(self, session_factory, mock_api, fast_policy, enqueue):
        """Should wait for running jobs and refuse new submissions."""
        processor = ScriptedProcessor(delay=0.05)
        pool = make_pool(processor, session_factory, mock_api, fast_policy)
        future = pool.submit(enqueue())

        await pool.shutdown()

        assert future.done()
        assert future.result()['success'] is True
        with pytest.raises(ConfigurationError):
            pool.submit(enqueue())
        assert await pool.drain() == []
        mock_api.close.assert_not_called()
