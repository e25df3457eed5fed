"""Sync orchestrator: the entry point for triggering and inspecting sync work.

This orchestrator coordinates:
- Enqueueing jobs on the durable queue (validated per job type)
- Job inspection and manual retries
- Sync health from SyncMetadata, queue depths and circuit breakers
- The team-matching review queue (approve, reject, create team)

Sync schedule (see core/scheduler.py):
- tournament-discovery: daily at DISCOVERY_CRON_HOUR
- queue drain: every QUEUE_POLL_INTERVAL_SECONDS
- stalled job recovery: every minute
- team-matching: hourly, for competitions with unmatched external teams
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tournament_sync.core.errors import ConfigurationError, NotFoundError
from tournament_sync.core.logging import get_logger, LoggerLike
from tournament_sync.models import (
    ExternalTeam, MatchAuditLog, SyncMetadata, Team, TeamMatchingReview
)
from tournament_sync.services.core.circuit_breaker import get_all_breaker_states
from tournament_sync.services.sync.matchers.team_resolver import TeamResolver
from tournament_sync.services.sync.processors.team_matching import link_external_team
from tournament_sync.services.sync.queue.job_queue import JobQueue, job_to_dict

REVIEW_STATUSES = ('pending_review', 'approved', 'rejected', 'resolved')


def review_to_dict(review: TeamMatchingReview) -> Dict[str, Any]:
    return {
        'id': review.id,
        'tournament_code': review.tournament_code,
        'external_team_code': review.external_team_code,
        'external_team_name': review.external_team_name,
        'external_team_data': review.external_team_data,
        'suggestions': review.suggestions or [],
        'error_message': review.error_message,
        'status': review.status,
        'resolution': review.resolution,
        'resolved_team_id': review.resolved_team_id,
        'resolved_by': review.resolved_by,
        'resolved_at': review.resolved_at.isoformat() if review.resolved_at else None,
        'notes': review.notes,
        'created_at': review.created_at.isoformat() if review.created_at else None,
    }


class SyncOrchestrator:
    """
    Coordinates sync jobs and the manual review queue.

    All sync operations triggered from outside the worker (HTTP, CLI,
    scheduler) should go through this orchestrator.
    """

    def __init__(self, db: Session, logger: Optional[LoggerLike] = None):
        """
        Initialize the sync orchestrator.

        Args:
            db: SQLAlchemy database session
            logger: Logger override (defaults to the module logger)
        """
        self.db = db
        self.logger = logger or get_logger(__name__)
        self.queue = JobQueue(db, logger=self.logger)

    # ========================================================================
    # Jobs
    # ========================================================================

    def enqueue(self, job_type: str, payload: Optional[Dict[str, Any]] = None) -> str:
        """
        Enqueue a job.

        Raises:
            UnknownJobTypeError: job_type is not a known type
            ConfigurationError: payload does not validate
        """
        job_id = self.queue.enqueue(job_type, payload)
        self.logger.info(f"Enqueued {job_type} job {job_id}")
        return job_id

    def get_job(self, job_id: str) -> Dict[str, Any]:
        """Job with its child jobs. Raises NotFoundError when missing."""
        job = self.queue.get_job(job_id)
        if job is None:
            raise NotFoundError('job', job_id)
        result = job_to_dict(job)
        result['children'] = [job_to_dict(child) for child in self.queue.get_children(job_id)]
        return result

    def get_recent_jobs(self, limit: int = 20, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return [job_to_dict(job) for job in self.queue.get_recent_jobs(limit=limit, status=status)]

    def retry_job(self, job_id: str) -> Dict[str, Any]:
        job = self.queue.retry(job_id)
        self.logger.info(f"Manual retry of job {job_id} ({job.type})")
        return job_to_dict(job)

    def get_status(self) -> Dict[str, Any]:
        """
        Return overall sync health status.

        Aggregates SyncMetadata entries, queue depths, pending reviews and
        circuit breaker states.

        Returns:
            Dict with overall sync health
        """
        all_metadata = self.db.query(SyncMetadata).all()

        status_counts = {}
        last_sync_times = {}
        total_processed = 0
        total_matched = 0
        total_failed = 0

        for metadata in all_metadata:
            key = f"{metadata.source}_{metadata.data_type}"
            status_counts[key] = metadata.last_sync_status
            last_sync_times[key] = metadata.last_sync_completed_at
            total_processed += metadata.records_processed or 0
            total_matched += metadata.records_matched or 0
            total_failed += metadata.records_failed or 0

        total_jobs = len(all_metadata)
        success_count = sum(1 for m in all_metadata if m.last_sync_status == 'success')
        health_status = 'healthy' if success_count == total_jobs else 'degraded' if success_count > 0 else 'unhealthy'

        unmatched_teams = self.db.query(ExternalTeam).filter(ExternalTeam.is_matched.is_(False)).count()
        pending_reviews = self.db.query(TeamMatchingReview).filter(
            TeamMatchingReview.status == 'pending_review'
        ).count()

        return {
            'health_status': health_status,
            'total_jobs': total_jobs,
            'success_count': success_count,
            'status_by_job': status_counts,
            'last_sync_times': {
                k: v.isoformat() if v else None
                for k, v in last_sync_times.items()
            },
            'totals': {
                'processed': total_processed,
                'matched': total_matched,
                'failed': total_failed
            },
            'queues': self.queue.get_counts(),
            'circuit_breakers': get_all_breaker_states(),
            'issues': {
                'unmatched_teams': unmatched_teams,
                'pending_reviews': pending_reviews
            }
        }

    # ========================================================================
    # Review queue
    # ========================================================================

    def _get_review(self, review_id: str) -> TeamMatchingReview:
        review = self.db.query(TeamMatchingReview).filter(TeamMatchingReview.id == review_id).first()
        if review is None:
            raise NotFoundError('review', review_id)
        return review

    def _settle(self, review: TeamMatchingReview, status: str, resolution: str,
                resolved_by: str, team_id: Optional[str] = None, notes: Optional[str] = None):
        review.status = status
        review.resolution = resolution
        review.resolved_by = resolved_by
        review.resolved_at = datetime.utcnow()
        review.resolved_team_id = team_id
        if notes is not None:
            review.notes = notes

    def get_pending_reviews(self, tournament_code: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        query = self.db.query(TeamMatchingReview).filter(TeamMatchingReview.status == 'pending_review')
        if tournament_code:
            query = query.filter(TeamMatchingReview.tournament_code == tournament_code)
        reviews = query.order_by(TeamMatchingReview.created_at.asc()).limit(limit).all()
        return [review_to_dict(r) for r in reviews]

    def get_review_stats(self, tournament_code: Optional[str] = None) -> Dict[str, int]:
        """Review counts per status, plus the total."""
        query = self.db.query(TeamMatchingReview.status, func.count(TeamMatchingReview.id))
        if tournament_code:
            query = query.filter(TeamMatchingReview.tournament_code == tournament_code)
        counts = dict(query.group_by(TeamMatchingReview.status).all())

        stats = {status: counts.get(status, 0) for status in REVIEW_STATUSES}
        stats['total'] = sum(counts.values())
        return stats

    def approve_review(self, review_id: str, team_id: str, resolved_by: str) -> Dict[str, Any]:
        """
        Link the external team of a review to an existing team.

        Raises:
            NotFoundError: review or team missing
            ConfigurationError: review already settled
        """
        review = self._get_review(review_id)
        if review.status != 'pending_review':
            raise ConfigurationError(f"Review {review_id} is already {review.status}")
        team = self.db.query(Team).filter(Team.id == team_id).first()
        if team is None:
            raise NotFoundError('team', team_id)

        link_external_team(
            self.db, review.tournament_code, review.external_team_code, review.external_team_name,
            team.id, None, 'manual', performed_by=resolved_by,
        )
        self._settle(review, 'approved', 'linked_existing_team', resolved_by, team.id)
        TeamResolver(self.db, self.logger).backfill_visual_code(
            team, review.external_team_code, 'manual', 1.0, performed_by=resolved_by
        )
        self.db.commit()
        self.logger.info(f"Review {review_id} approved: {review.external_team_name} -> {team.name}")
        return review_to_dict(review)

    def reject_review(self, review_id: str, reason: Optional[str], resolved_by: str) -> Dict[str, Any]:
        review = self._get_review(review_id)
        if review.status != 'pending_review':
            raise ConfigurationError(f"Review {review_id} is already {review.status}")

        self._settle(review, 'rejected', 'rejected', resolved_by, notes=reason)
        self.db.commit()
        self.logger.info(f"Review {review_id} rejected by {resolved_by}: {reason}")
        return review_to_dict(review)

    def create_team_from_review(
        self,
        review_id: str,
        name: str,
        team_number: Optional[int],
        type: Optional[str],
        season: int,
        club_id: Optional[str],
        resolved_by: str
    ) -> Dict[str, Any]:
        """
        Create a new team for an unmatched external team and link it.

        The external code becomes the new team's visual code unless another
        team of that season already holds it.
        """
        review = self._get_review(review_id)
        if review.status != 'pending_review':
            raise ConfigurationError(f"Review {review_id} is already {review.status}")

        team = Team(name=name, team_number=team_number, type=type, season=season, club_id=club_id)
        self.db.add(team)
        self.db.flush()
        self.db.add(MatchAuditLog(
            entity_type='team',
            entity_id=team.id,
            action='created',
            new_state={'name': name, 'season': season, 'club_id': club_id},
            match_details={'review_id': review.id, 'external_team_code': review.external_team_code},
            performed_by=resolved_by,
        ))

        link_external_team(
            self.db, review.tournament_code, review.external_team_code, review.external_team_name,
            team.id, None, 'manual', performed_by=resolved_by,
        )
        self._settle(review, 'resolved', 'created_new_team', resolved_by, team.id)
        TeamResolver(self.db, self.logger).backfill_visual_code(
            team, review.external_team_code, 'manual', 1.0, performed_by=resolved_by
        )
        self.db.commit()
        self.logger.info(f"Review {review_id} resolved by creating team {name} ({team.id})")
        result = review_to_dict(review)
        result['team'] = {'id': team.id, 'name': team.name, 'visual_code': team.visual_code, 'season': team.season}
        return result
