"""
Team matching for external teams the structure sync could not link.

Pipeline per external team:
1. Rank candidate teams with the resolver's weighted fuzzy scorer
2. Keep candidates scoring above 0.3
3. Best >= TEAM_HIGH_CONFIDENCE_THRESHOLD -> link (automatic_high_confidence)
   Best >= TEAM_MATCH_THRESHOLD           -> link, flagged (automatic_medium_confidence)
   Otherwise                              -> manual review with the top suggestions

Nothing is auto-created: a team without an acceptable match always ends
up in the review queue, with an error message when matching itself blew up.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from tournament_sync.core.config import settings
from tournament_sync.core.errors import ConfigurationError, TransientError
from tournament_sync.models import CompetitionEvent, ExternalTeam, MatchAuditLog, TeamMatchingReview
from tournament_sync.repositories.base import BaseRepository
from tournament_sync.services.sync.matchers.team_resolver import TeamResolver, MatchContext, ScoredCandidate
from tournament_sync.services.sync.processors.base import BaseProcessor, JobContext
from tournament_sync.services.sync.queue.job_types import JobType, TeamMatchingPayload, UnmatchedTeam
from tournament_sync.services.sync.utils.team_name_parser import (
    normalize_team_name, parse_strength, parse_team_name
)

MIN_CANDIDATE_SCORE = 0.3
MATCH_HIGH = 'automatic_high_confidence'
MATCH_MEDIUM = 'automatic_medium_confidence'
FINAL_REVIEW_STATUSES = ('approved', 'resolved')


def external_team_values(name: str, country_code: Optional[str] = None, event_code: Optional[str] = None) -> Dict[str, Any]:
    """Parsed ExternalTeam columns for an external label."""
    parsed = parse_team_name(name)
    values = {
        'external_name': name,
        'normalized_name': normalize_team_name(name),
        'club_name': parsed.club_name,
        'team_number': parsed.team_number,
        'gender': parsed.gender,
        'strength': parse_strength(name),
    }
    if country_code:
        values['country_code'] = country_code
    if event_code:
        values['event_code'] = event_code
    return values


def suggestion(candidate: ScoredCandidate) -> Dict[str, Any]:
    team = candidate.team
    return {
        'team_id': team.id,
        'name': team.name,
        'club_name': team.club.name if team.club is not None else None,
        'team_number': team.team_number,
        'type': team.type,
        'score': round(candidate.score, 4),
    }


def link_external_team(
    db: Session,
    tournament_code: str,
    external_code: str,
    external_name: str,
    team_id: str,
    score: Optional[float],
    match_type: str,
    performed_by: str = 'system',
    event_code: Optional[str] = None
) -> ExternalTeam:
    """Mark an external team as matched and write the audit row (not committed)."""
    external_teams = BaseRepository(ExternalTeam, db)
    key = {'tournament_code': tournament_code, 'external_code': external_code}
    previous = external_teams.find_one_by(**key)
    previous_state = None
    if previous is not None:
        previous_state = {'matched_team_id': previous.matched_team_id, 'is_matched': previous.is_matched}

    values = external_team_values(external_name, event_code=event_code)
    values.update(
        matched_team_id=team_id,
        match_score=score,
        match_type=match_type,
        matched_at=datetime.utcnow(),
        is_matched=True,
    )
    external_team, _ = external_teams.upsert(key, values)

    db.add(MatchAuditLog(
        entity_type='external_team',
        entity_id=external_team.id,
        action='matched' if performed_by == 'system' else 'approved',
        previous_state=previous_state,
        new_state={'matched_team_id': team_id, 'is_matched': True},
        match_details={'match_type': match_type, 'score': round(score, 4) if score is not None else None},
        performed_by=performed_by,
    ))
    return external_team


class TeamMatchingProcessor(BaseProcessor):
    """Batch-match external teams, queueing the doubtful ones for review."""

    job_type = JobType.TEAM_MATCHING

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        payload: TeamMatchingPayload = ctx.payload
        ctx.update_progress(0)

        event = ctx.db.query(CompetitionEvent).filter(
            CompetitionEvent.visual_code == payload.tournament_code
        ).first()
        if event is None:
            raise ConfigurationError(f"No competition {payload.tournament_code}; season unknown for team matching")

        context = MatchContext.from_event(event)
        resolver = TeamResolver(ctx.db, ctx.logger)
        teams = payload.unmatched_teams or self._stored_unmatched(ctx, payload)
        ctx.logger.info(f"Processing {len(teams)} unmatched teams")

        stats = {'processed': 0, 'matched': 0, 'high_confidence': 0, 'medium_confidence': 0,
                 'pending_review': 0, 'errors': 0, 'failed': 0}
        if not teams:
            ctx.update_progress(100)
            return stats

        for index, team in enumerate(teams, start=1):
            outcome = await self._match_team(ctx, payload.tournament_code, team, resolver, context)
            stats['processed'] += 1
            stats[outcome] += 1
            if outcome in ('high_confidence', 'medium_confidence'):
                stats['matched'] += 1
            ctx.update_progress(index / len(teams) * 100)

        stats['failed'] = stats['errors']
        return stats

    def _stored_unmatched(self, ctx: JobContext, payload: TeamMatchingPayload) -> List[UnmatchedTeam]:
        query = ctx.db.query(ExternalTeam).filter(
            ExternalTeam.tournament_code == payload.tournament_code,
            ExternalTeam.is_matched.is_(False),
        )
        if payload.event_code:
            query = query.filter(ExternalTeam.event_code == payload.event_code)
        return [
            UnmatchedTeam(external_code=row.external_code, external_name=row.external_name, event_code=row.event_code)
            for row in query.order_by(ExternalTeam.external_name).all()
        ]

    async def _match_team(
        self,
        ctx: JobContext,
        tournament_code: str,
        team: UnmatchedTeam,
        resolver: TeamResolver,
        context: MatchContext
    ) -> str:
        """Match one team. Returns the stats key of the outcome."""
        try:
            candidates = [
                c for c in resolver.rank_candidates(team.external_name, context)
                if c.score > MIN_CANDIDATE_SCORE
            ]

            if not candidates:
                ctx.logger.debug(f"No candidates found for team: {team.external_name}")
                self._queue_review(ctx.db, tournament_code, team, [])
                ctx.db.commit()
                return 'pending_review'

            best = candidates[0]
            if best.score >= settings.TEAM_HIGH_CONFIDENCE_THRESHOLD:
                match_type, outcome = MATCH_HIGH, 'high_confidence'
            elif best.score >= settings.TEAM_MATCH_THRESHOLD:
                match_type, outcome = MATCH_MEDIUM, 'medium_confidence'
            else:
                self._queue_review(ctx.db, tournament_code, team, candidates[:settings.TEAM_SUGGESTION_LIMIT])
                ctx.db.commit()
                ctx.logger.debug(
                    f"Queued for manual review: {team.external_name} (best score: {best.score:.3f})"
                )
                return 'pending_review'

            link_external_team(
                ctx.db, tournament_code, team.external_code, team.external_name,
                best.team.id, best.score, match_type, event_code=team.event_code,
            )
            self._close_review(ctx.db, tournament_code, team.external_code, best.team.id, match_type)
            resolver.backfill_visual_code(best.team, team.external_code, 'fuzzy', best.score)
            ctx.db.commit()
            ctx.logger.info(
                f"Auto-matched ({outcome.replace('_', ' ')}): {team.external_name} -> {best.team.name} "
                f"(score: {best.score:.3f})"
            )
            return outcome

        except OperationalError as e:
            ctx.db.rollback()
            raise TransientError(f"Store unavailable while matching {team.external_name}: {e}") from e
        except Exception as e:
            ctx.db.rollback()
            ctx.logger.error(f"Failed to match team {team.external_name}: {e}")
            self._queue_review(ctx.db, tournament_code, team, [], error_message=str(e))
            ctx.db.commit()
            return 'errors'

    # ========================================================================
    # Review queue
    # ========================================================================

    def _queue_review(
        self,
        db: Session,
        tournament_code: str,
        team: UnmatchedTeam,
        candidates: List[ScoredCandidate],
        error_message: Optional[str] = None
    ) -> Optional[TeamMatchingReview]:
        """Create or refresh the pending review for a team; settled reviews are left alone."""
        BaseRepository(ExternalTeam, db).upsert(
            {'tournament_code': tournament_code, 'external_code': team.external_code},
            external_team_values(team.external_name, event_code=team.event_code),
        )

        reviews = BaseRepository(TeamMatchingReview, db)
        key = {'tournament_code': tournament_code, 'external_team_code': team.external_code}
        existing = reviews.find_one_by(**key)
        if existing is not None and existing.status in FINAL_REVIEW_STATUSES:
            return existing

        review, _ = reviews.upsert(key, {
            'external_team_name': team.external_name,
            'external_team_data': {**team.model_dump(), **external_team_values(team.external_name)},
            'suggestions': [suggestion(c) for c in candidates],
            'error_message': error_message,
            'status': 'pending_review',
        })
        return review

    def _close_review(self, db: Session, tournament_code: str, external_code: str, team_id: str, match_type: str):
        review = BaseRepository(TeamMatchingReview, db).find_one_by(
            tournament_code=tournament_code, external_team_code=external_code
        )
        if review is not None and review.status == 'pending_review':
            review.status = 'resolved'
            review.resolution = match_type
            review.resolved_team_id = team_id
            review.resolved_by = 'system'
            review.resolved_at = datetime.utcnow()
