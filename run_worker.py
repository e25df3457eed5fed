#!/usr/bin/env python3
"""
Worker runner for the tournament sync engine.

Runs the worker pool and the automation scheduler as a standalone
service. It can be run via systemd, supervisor, or directly.

Usage:
    python run_worker.py                                  # Run in foreground
    python run_worker.py --concurrency 8                  # Override QUEUE_CONCURRENCY
    python run_worker.py --status                         # Print queue and sync health
    python run_worker.py --enqueue tournament-discovery   # Enqueue a job and exit
    python run_worker.py --enqueue team-matching --payload '{"tournament_code": "ABC"}'
    python run_worker.py --run JOB_ID                     # Run one job inline and exit
    python run_worker.py --init-db                        # Create missing tables
"""
import argparse
import asyncio
import json
import signal
import sys
from typing import Optional

from tournament_sync.core.config import settings
from tournament_sync.core.database import SessionLocal, init_db
from tournament_sync.core.errors import SyncError
from tournament_sync.core.logging import configure_logging, get_logger
from tournament_sync.core.scheduler import AutomationScheduler
from tournament_sync.services.sync.orchestrator import SyncOrchestrator
from tournament_sync.services.sync.processors.registry import ProcessorRegistry
from tournament_sync.services.sync.queue.worker_pool import WorkerPool

configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)


class WorkerRunner:
    """Runner for the worker pool and the automation scheduler."""

    def __init__(self, concurrency: Optional[int] = None):
        self.pool = WorkerPool(ProcessorRegistry.default(), concurrency=concurrency)
        self.scheduler = AutomationScheduler(pool=self.pool)
        self.shutdown = False

    async def start(self):
        """Start the scheduler and run until shutdown."""
        logger.info(f"Starting worker runner (concurrency {self.pool.concurrency})...")

        recovered = self.pool.recover_stalled()
        if recovered:
            logger.info(f"Recovered {recovered} stalled job(s)")

        await self.scheduler.start()
        await self.pool.drain()

        logger.info("Worker is now running")
        logger.info("Press Ctrl+C to stop")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._set_shutdown)

        while not self.shutdown:
            await asyncio.sleep(1)

        await self.scheduler.stop()
        await self.pool.shutdown()
        logger.info("Worker runner stopped")

    def _set_shutdown(self):
        logger.info("Shutdown signal received")
        self.shutdown = True


def print_status() -> int:
    db = SessionLocal()
    try:
        status = SyncOrchestrator(db).get_status()
    finally:
        db.close()

    print("=" * 60)
    print(f"SYNC HEALTH: {status['health_status']}")
    print("=" * 60)
    for key, value in status['status_by_job'].items():
        print(f"  • {key}: {value} (last: {status['last_sync_times'].get(key) or 'never'})")
    print()
    print("Queues:")
    for queue, counts in status['queues'].items():
        print(f"  • {queue}: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
    print()
    print(f"Unmatched teams: {status['issues']['unmatched_teams']}")
    print(f"Pending reviews: {status['issues']['pending_reviews']}")
    return 0


def enqueue(job_type: str, payload: Optional[str]) -> int:
    db = SessionLocal()
    try:
        job_id = SyncOrchestrator(db).enqueue(job_type, json.loads(payload) if payload else {})
        print(job_id)
        return 0
    except (SyncError, json.JSONDecodeError) as e:
        print(f"Could not enqueue {job_type}: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()


async def run_single(job_id: str) -> int:
    pool = WorkerPool(ProcessorRegistry.default(), concurrency=1)
    try:
        result = await pool.submit(job_id)
        print(json.dumps(result, indent=2, default=str))
        return 0
    except Exception as e:
        print(f"Job {job_id} failed: {e}", file=sys.stderr)
        return 1
    finally:
        await pool.shutdown()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Run the tournament sync worker and scheduler'
    )
    parser.add_argument('--concurrency', type=int, help='Maximum jobs running at once')
    parser.add_argument('--status', action='store_true', help='Print sync health and queue depths, then exit')
    parser.add_argument('--enqueue', type=str, metavar='JOB_TYPE', help='Enqueue a job and exit')
    parser.add_argument('--payload', type=str, metavar='JSON', help='Payload for --enqueue')
    parser.add_argument('--run', type=str, metavar='JOB_ID', help='Run one job inline and exit')
    parser.add_argument('--init-db', action='store_true', help='Create missing tables and exit')

    args = parser.parse_args()

    if args.init_db:
        init_db()
        logger.info("Database tables created")
        return 0

    if args.status:
        return print_status()

    if args.enqueue:
        return enqueue(args.enqueue, args.payload)

    if args.run:
        return asyncio.run(run_single(args.run))

    runner = WorkerRunner(concurrency=args.concurrency)
    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down...")
        return 0
    except Exception as e:
        logger.error(f"Worker error: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
