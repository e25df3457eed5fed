"""
Base class and execution context for job processors.

A processor receives a JobContext holding everything one job may touch:
its own session, the API client, the queue (for child jobs and progress)
and a logger bound to the job. Processors never reach for globals.

Every run updates SyncMetadata(source='tournament_api', data_type=<job type>)
with counts, duration and status, the same bookkeeping the status endpoint
aggregates into a health verdict.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from tournament_sync.core.logging import LoggerLike
from tournament_sync.models import SyncJob, SyncMetadata
from tournament_sync.services.sync.queue.job_queue import JobQueue
from tournament_sync.services.sync.queue.job_types import JobPayload, JobType
from tournament_sync.services.tournament_api.client import TournamentApiClient

METADATA_SOURCE = 'tournament_api'


@dataclass
class JobContext:
    """What a processor gets to work with for one job run."""
    job: SyncJob
    payload: JobPayload
    db: Session
    api: TournamentApiClient
    queue: JobQueue
    logger: LoggerLike

    @property
    def job_id(self) -> str:
        return self.job.id

    def update_progress(self, progress: float) -> None:
        self.queue.update_progress(self.job.id, int(progress))

    def enqueue_child(self, job_type: JobType, payload: Dict[str, Any]) -> str:
        """Enqueue a job with this one as parent."""
        return self.queue.enqueue(job_type.value, payload, parent_id=self.job.id)


def get_or_create_metadata(db: Session, data_type: str, source: str = METADATA_SOURCE) -> SyncMetadata:
    """Get or create the sync metadata row for a job type."""
    metadata = db.query(SyncMetadata).filter(
        SyncMetadata.source == source,
        SyncMetadata.data_type == data_type
    ).first()

    if not metadata:
        metadata = SyncMetadata(source=source, data_type=data_type)
        db.add(metadata)
        db.flush()

    return metadata


class BaseProcessor(ABC):
    """
    One processor per job type.

    Subclasses implement ``run`` and return a result dict; ``processed``,
    ``matched`` and ``failed`` keys feed the sync metadata when present.
    """

    job_type: JobType

    async def process(self, ctx: JobContext) -> Dict[str, Any]:
        """
        Run the job with metadata bookkeeping.

        Returns:
            The ``run`` result plus success and duration_ms

        Raises:
            Whatever ``run`` raised, after recording the failure
        """
        start_time = datetime.utcnow()
        metadata = get_or_create_metadata(ctx.db, self.job_type.value)
        metadata.last_sync_started_at = start_time
        ctx.db.commit()

        try:
            result = await self.run(ctx)
        except Exception as e:
            self._record_failure(ctx, e, start_time)
            raise

        duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
        failed = int(result.get('failed', 0) or 0)

        metadata = get_or_create_metadata(ctx.db, self.job_type.value)
        metadata.last_sync_completed_at = datetime.utcnow()
        metadata.last_sync_status = 'partial' if failed else 'success'
        metadata.records_processed = int(result.get('processed', 0) or 0)
        metadata.records_matched = int(result.get('matched', 0) or 0)
        metadata.records_failed = failed
        metadata.error_message = None
        metadata.sync_duration_ms = duration_ms
        ctx.db.commit()

        ctx.logger.info(
            f"{self.job_type.value} complete: {metadata.records_processed} processed, "
            f"{failed} failed ({duration_ms}ms)"
        )
        return {'success': True, **result, 'duration_ms': duration_ms}

    def _record_failure(self, ctx: JobContext, error: Exception, start_time: datetime) -> None:
        duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
        try:
            ctx.db.rollback()
            metadata = get_or_create_metadata(ctx.db, self.job_type.value)
            metadata.last_sync_status = 'failed'
            metadata.error_message = str(error)
            metadata.sync_duration_ms = duration_ms
            ctx.db.commit()
        except OperationalError as e:
            ctx.logger.error(f"Could not record failure for {self.job_type.value}: {e}")

    @abstractmethod
    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        """Do the job's work and return its result counts."""
