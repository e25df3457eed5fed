"""
Competition structure sync.

Pipeline:
1. Tournament details (missing tournament fails the job)
2. Events -> CompetitionSubEvent per event
3. Teams  -> resolve every external team; high-confidence matches are
             linked, the rest go to a team-matching child job
4. Draws  -> CompetitionDraw per event draw, then the draw's entries
5. Optionally one competition-game-sync child job per draw

Steps 2-4 fail independently: a step that hits a TransientError is
recorded and the next step still runs. Only when all three steps failed
transiently is the job failed for retry. Within the draw step a single
failing draw is a PartialFailure and its siblings continue.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import OperationalError

from tournament_sync.core.errors import NotFoundError, PartialFailure, TransientError
from tournament_sync.models import CompetitionEvent, CompetitionSubEvent, CompetitionDraw, ExternalTeam
from tournament_sync.repositories.base import BaseRepository
from tournament_sync.services.sync.matchers.team_resolver import TeamResolver, MatchContext
from tournament_sync.services.sync.processors.base import BaseProcessor, JobContext
from tournament_sync.services.sync.processors.discovery import new_competition_event
from tournament_sync.services.sync.processors.structure import (
    COMPETITION_DEFAULT_DRAW, fetch_events, map_draw_type, map_event_gender
)
from tournament_sync.services.sync.processors.team_matching import external_team_values
from tournament_sync.services.sync.queue.job_types import JobType, StructureSyncPayload
from tournament_sync.services.sync.reconcilers.entries import EntryReconciler
from tournament_sync.services.tournament_api.dtos import TeamDTO
from tournament_sync.services.tournament_api.result import NotFound


class CompetitionStructureProcessor(BaseProcessor):
    """Sync sub-events, teams, draws and entries of one competition."""

    job_type = JobType.COMPETITION_STRUCTURE_SYNC

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        payload: StructureSyncPayload = ctx.payload
        code = payload.tournament_code
        ctx.update_progress(0)

        details = await ctx.api.get_tournament_details(code)
        if isinstance(details, NotFound):
            raise NotFoundError('tournament', code)
        tournament = details.value
        ctx.logger.info(f"Syncing competition structure for: {tournament.name}")

        event = self._get_or_create_event(ctx, tournament)
        context = MatchContext.from_event(event)
        resolver = TeamResolver(ctx.db, ctx.logger)
        ctx.update_progress(10)

        stats: Dict[str, Any] = {
            'events': 0, 'teams': 0, 'matched': 0, 'unmatched': 0,
            'draws': 0, 'entries_created': 0, 'failed': 0, 'failed_steps': [], 'child_jobs': [],
        }
        transient_errors: List[TransientError] = []

        steps = (
            ('events', lambda: self._sync_events(ctx, event, payload, stats), 30),
            ('teams', lambda: self._sync_teams(ctx, event, payload, resolver, context, stats), 60),
            ('draws', lambda: self._sync_draws(ctx, event, payload, resolver, context, stats), 100),
        )
        for name, step, progress in steps:
            try:
                await step()
            except OperationalError as e:
                ctx.db.rollback()
                transient_errors.append(TransientError(f"Store unavailable during {name} sync: {e}"))
                stats['failed_steps'].append(name)
                ctx.logger.error(f"Failed to sync {name}: {e}")
            except TransientError as e:
                ctx.db.rollback()
                transient_errors.append(e)
                stats['failed_steps'].append(name)
                ctx.logger.error(f"Failed to sync {name}: {e}")
            except Exception as e:
                ctx.db.rollback()
                stats['failed_steps'].append(name)
                stats['failed'] += 1
                ctx.logger.error(f"Failed to sync {name}: {e}")
            ctx.update_progress(progress)

        if len(transient_errors) == len(steps):
            raise transient_errors[-1]

        event.last_sync = datetime.utcnow()
        ctx.db.commit()

        stats['processed'] = stats['events'] + stats['teams'] + stats['draws']
        ctx.logger.info(
            f"Completed competition structure sync for {code}: {stats['events']} events, "
            f"{stats['teams']} teams ({stats['matched']} matched), {stats['draws']} draws"
        )
        return stats

    def _get_or_create_event(self, ctx: JobContext, tournament) -> CompetitionEvent:
        event = ctx.db.query(CompetitionEvent).filter(CompetitionEvent.visual_code == tournament.code).first()
        if event is None:
            event = new_competition_event(tournament)
            ctx.db.add(event)
            ctx.db.commit()
            ctx.logger.info(f"Created competition {tournament.name} ({tournament.code})")
        return event

    # ========================================================================
    # Events
    # ========================================================================

    async def _sync_events(self, ctx: JobContext, event: CompetitionEvent, payload: StructureSyncPayload, stats):
        events = await fetch_events(ctx.api, event.visual_code, payload.event_codes, ctx.logger)
        sub_events = BaseRepository(CompetitionSubEvent, ctx.db)

        for dto in events:
            sub_events.upsert(
                {'event_id': event.id, 'visual_code': dto.code},
                {
                    'name': dto.name,
                    'event_type': map_event_gender(dto.gender_id),
                    'level': dto.level_id,
                    'last_sync': datetime.utcnow(),
                },
            )
            stats['events'] += 1

        ctx.db.commit()
        ctx.logger.info(f"Synced {len(events)} events")

    # ========================================================================
    # Teams
    # ========================================================================

    async def _sync_teams(
        self,
        ctx: JobContext,
        event: CompetitionEvent,
        payload: StructureSyncPayload,
        resolver: TeamResolver,
        context: MatchContext,
        stats
    ):
        result = await ctx.api.get_tournament_teams(event.visual_code)
        if isinstance(result, NotFound):
            ctx.logger.warning(f"No teams for {event.visual_code}: {result}")
            return

        external_teams = BaseRepository(ExternalTeam, ctx.db)
        unmatched: List[Dict[str, str]] = []

        for team in result.value:
            if not team.code or not team.name:
                continue
            stats['teams'] += 1
            try:
                if await self._sync_team(ctx, event, team, payload.force_update, resolver, context, external_teams):
                    stats['matched'] += 1
                else:
                    unmatched.append({'external_code': team.code, 'external_name': team.name})
            except (TransientError, OperationalError):
                raise
            except Exception as e:
                ctx.db.rollback()
                ctx.logger.warning(str(PartialFailure('team', team.name, e)))
                stats['failed'] += 1

        stats['unmatched'] = len(unmatched)
        if unmatched:
            stats['child_jobs'].append(ctx.enqueue_child(JobType.TEAM_MATCHING, {
                'tournament_code': event.visual_code,
                'unmatched_teams': unmatched,
            }))
            ctx.logger.info(f"Queued {len(unmatched)} teams for matching")

        ctx.logger.info(f"Synced {stats['teams']} teams")

    async def _sync_team(
        self,
        ctx: JobContext,
        event: CompetitionEvent,
        team: TeamDTO,
        force_update: bool,
        resolver: TeamResolver,
        context: MatchContext,
        external_teams: BaseRepository
    ) -> bool:
        """Record the external team and link it on a high-confidence match. Returns True when linked."""
        key = {'tournament_code': event.visual_code, 'external_code': team.code}
        existing = external_teams.find_one_by(**key)
        if existing is not None and existing.is_matched and not force_update:
            return True

        values = external_team_values(team.name, country_code=team.country_code)

        resolution = await resolver.resolve(team.code, team.name, context)
        if resolution.matched and resolution.confidence == 'high':
            values.update(
                matched_team_id=resolution.team.id,
                match_score=resolution.score,
                match_type=resolution.strategy,
                matched_at=datetime.utcnow(),
                is_matched=True,
            )

        external_team, _ = external_teams.upsert(key, values)
        ctx.db.commit()
        return bool(external_team.is_matched)

    # ========================================================================
    # Draws
    # ========================================================================

    def _sub_events(self, ctx: JobContext, event: CompetitionEvent, event_codes: Optional[List[str]]):
        query = ctx.db.query(CompetitionSubEvent).filter(CompetitionSubEvent.event_id == event.id)
        if event_codes:
            query = query.filter(CompetitionSubEvent.visual_code.in_(event_codes))
        return query.order_by(CompetitionSubEvent.visual_code).all()

    async def _sync_draws(
        self,
        ctx: JobContext,
        event: CompetitionEvent,
        payload: StructureSyncPayload,
        resolver: TeamResolver,
        context: MatchContext,
        stats
    ):
        draws_repo = BaseRepository(CompetitionDraw, ctx.db)
        entries = EntryReconciler(ctx.db, ctx.logger)
        sub_events = self._sub_events(ctx, event, payload.event_codes)

        for sub_event in sub_events:
            result = await ctx.api.get_event_draws(event.visual_code, sub_event.visual_code)
            if isinstance(result, NotFound):
                ctx.logger.warning(f"No draws for event {sub_event.visual_code}: {result}")
                continue

            for dto in result.value:
                try:
                    draw, _ = draws_repo.upsert(
                        {'sub_event_id': sub_event.id, 'visual_code': dto.code},
                        {
                            'name': dto.name,
                            'type': map_draw_type(dto.type_id, COMPETITION_DEFAULT_DRAW),
                            'size': dto.size,
                            'last_sync': datetime.utcnow(),
                        },
                    )
                    ctx.db.commit()

                    draw_entries = await ctx.api.get_draw_entries(event.visual_code, dto.code)
                    if isinstance(draw_entries, NotFound):
                        ctx.logger.warning(f"No entries for draw {dto.code}")
                    else:
                        counts = await entries.reconcile_draw_entries(draw, draw_entries.value, resolver, context)
                        stats['entries_created'] += counts['created']
                    stats['draws'] += 1
                except (TransientError, OperationalError):
                    raise
                except Exception as e:
                    ctx.db.rollback()
                    ctx.logger.warning(str(PartialFailure('draw', dto.code, e)))
                    stats['failed'] += 1
                    continue

                if payload.include_sub_components:
                    stats['child_jobs'].append(ctx.enqueue_child(JobType.COMPETITION_GAME_SYNC, {
                        'tournament_code': event.visual_code,
                        'event_code': sub_event.visual_code,
                        'draw_code': dto.code,
                    }))

        ctx.logger.info(f"Synced {stats['draws']} draws for {len(sub_events)} events")
