"""
Automated task scheduler for the tournament sync engine.

This module provides scheduled background jobs for:
- Tournament discovery (daily)
- Draining the durable job queue into the worker pool
- Recovering jobs whose lock expired
- Team matching for competitions with unmatched external teams

Scheduler: APScheduler (lightweight, FastAPI-compatible)

The scheduler only enqueues and drains; the work itself runs in the
WorkerPool, so a missed tick never loses a job.
"""
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from tournament_sync.core.config import settings
from tournament_sync.core.database import SessionLocal
from tournament_sync.core.logging import get_logger, LoggerLike
from tournament_sync.models import CompetitionEvent, ExternalTeam, SyncJob
from tournament_sync.services.sync.orchestrator import SyncOrchestrator
from tournament_sync.services.sync.queue.job_types import JobType
from tournament_sync.services.sync.queue.worker_pool import WorkerPool


class AutomationScheduler:
    """
    Main scheduler for automated background tasks.

    Without a worker pool only the enqueueing jobs are scheduled, which
    is what an API-only process wants.
    """

    def __init__(
        self,
        pool: Optional[WorkerPool] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        timezone: Optional[str] = None,
        logger: Optional[LoggerLike] = None
    ):
        self.pool = pool
        self.session_factory = session_factory or SessionLocal
        self.timezone = timezone or settings.SCHEDULER_TIMEZONE or 'UTC'
        self.logger = logger or get_logger(__name__)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            self.logger.warning("Scheduler already running")
            return

        self.logger.info("Starting automation scheduler...")

        self.scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,
                'misfire_grace_time': 300
            }
        )

        self._schedule_discovery()
        self._schedule_team_matching()
        if self.pool is not None:
            self._schedule_queue_drain()
            self._schedule_stalled_recovery()

        self.scheduler.start()
        self.running = True

        self.logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")
        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        self.logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=False)
        self.running = False
        self.logger.info("Scheduler stopped")

    # ========================================================================
    # Job bodies
    # ========================================================================

    def enqueue_discovery(self) -> Optional[str]:
        """Enqueue the daily discovery run with the configured defaults."""
        db = self.session_factory()
        try:
            job_id = SyncOrchestrator(db, self.logger).enqueue(JobType.TOURNAMENT_DISCOVERY.value, {})
            self.logger.info(f"Discovery job queued: {job_id}")
            return job_id
        except Exception as e:
            self.logger.error(f"Discovery enqueue failed: {e}")
            return None
        finally:
            db.close()

    def enqueue_team_matching(self) -> List[str]:
        """
        Enqueue a team-matching job per competition with unmatched teams.

        Competitions that already have a waiting or active team-matching
        job are skipped.
        """
        db = self.session_factory()
        try:
            codes = [
                row[0] for row in db.query(ExternalTeam.tournament_code).join(
                    CompetitionEvent, CompetitionEvent.visual_code == ExternalTeam.tournament_code
                ).filter(ExternalTeam.is_matched.is_(False)).distinct().all()
            ]
            if not codes:
                return []

            busy = {
                (job.data or {}).get('tournament_code')
                for job in db.query(SyncJob).filter(
                    SyncJob.type == JobType.TEAM_MATCHING.value,
                    SyncJob.status.in_(['waiting', 'active'])
                ).all()
            }

            orchestrator = SyncOrchestrator(db, self.logger)
            job_ids = [
                orchestrator.enqueue(JobType.TEAM_MATCHING.value, {'tournament_code': code})
                for code in sorted(codes) if code not in busy
            ]
            if job_ids:
                self.logger.info(f"Queued team matching for {len(job_ids)} competitions")
            return job_ids
        except Exception as e:
            self.logger.error(f"Team matching enqueue failed: {e}")
            return []
        finally:
            db.close()

    async def drain_queue(self) -> int:
        try:
            futures = await self.pool.drain()
            return len(futures)
        except Exception as e:
            self.logger.error(f"Queue drain failed: {e}")
            return 0

    def recover_stalled(self) -> int:
        try:
            return self.pool.recover_stalled()
        except Exception as e:
            self.logger.error(f"Stalled job recovery failed: {e}")
            return 0

    # ========================================================================
    # Schedules
    # ========================================================================

    def _schedule_discovery(self):
        """
        Schedule: Tournament discovery.

        Frequency: Daily at DISCOVERY_CRON_HOUR
        Purpose: Find new competitions and tournaments and fan out structure syncs
        """
        self.scheduler.add_job(
            self.enqueue_discovery,
            trigger=CronTrigger(hour=settings.DISCOVERY_CRON_HOUR, minute=0, timezone=self.timezone),
            id='tournament_discovery',
            name='Tournament Discovery',
            misfire_grace_time=3600,
        )
        self.logger.info(f"Scheduled: Tournament discovery (daily {settings.DISCOVERY_CRON_HOUR}:00)")

    def _schedule_team_matching(self):
        self.scheduler.add_job(
            self.enqueue_team_matching,
            trigger=CronTrigger(minute=30, timezone=self.timezone),
            id='team_matching',
            name='Team Matching',
        )
        self.logger.info("Scheduled: Team matching (hourly at :30)")

    def _schedule_queue_drain(self):
        self.scheduler.add_job(
            self.drain_queue,
            trigger=IntervalTrigger(seconds=settings.QUEUE_POLL_INTERVAL_SECONDS),
            id='queue_drain',
            name='Drain Job Queue',
            misfire_grace_time=30,
        )
        self.logger.info(f"Scheduled: Queue drain (every {settings.QUEUE_POLL_INTERVAL_SECONDS}s)")

    def _schedule_stalled_recovery(self):
        self.scheduler.add_job(
            self.recover_stalled,
            trigger=IntervalTrigger(minutes=1),
            id='stalled_recovery',
            name='Recover Stalled Jobs',
        )
        self.logger.info("Scheduled: Stalled job recovery (every minute)")

    def _log_scheduled_jobs(self):
        """Log all scheduled jobs for visibility."""
        jobs = self.scheduler.get_jobs()

        self.logger.info("=" * 60)
        self.logger.info("SCHEDULED AUTOMATION JOBS")
        self.logger.info("=" * 60)

        for job in jobs:
            next_run = getattr(job, 'next_run_time', None)
            next_run_str = next_run.strftime('%Y-%m-%d %H:%M %Z') if next_run else 'Pending'
            self.logger.info(f"  • {job.name} ({job.id}), next run: {next_run_str}")

        self.logger.info("=" * 60)

