"""
Tournament structure sync.

Pipeline:
1. Tournament details (missing tournament fails the job)
2. Events -> TournamentSubEvent with gender and game type
3. Draws  -> TournamentDraw per event, plus player-pair entries
4. One tournament-game-sync child job over start date -> end date + 1 day

Like the competition sync, the event and draw steps fail independently
and only an all-transient failure is retried.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import OperationalError

from tournament_sync.core.errors import NotFoundError, PartialFailure, TransientError
from tournament_sync.models import TournamentEvent, TournamentSubEvent, TournamentDraw
from tournament_sync.repositories.base import BaseRepository
from tournament_sync.services.sync.processors.base import BaseProcessor, JobContext
from tournament_sync.services.sync.processors.discovery import new_tournament_event
from tournament_sync.services.sync.processors.structure import (
    TOURNAMENT_DEFAULT_DRAW, fetch_events, map_draw_type, map_event_game_type, map_event_gender
)
from tournament_sync.services.sync.queue.job_types import JobType, StructureSyncPayload
from tournament_sync.services.sync.reconcilers.entries import EntryReconciler
from tournament_sync.services.sync.reconcilers.games import GameReconciler
from tournament_sync.services.tournament_api.dtos import EntryDTO, TournamentDTO
from tournament_sync.services.tournament_api.result import NotFound


def game_sync_window(tournament: TournamentDTO) -> Optional[Dict[str, str]]:
    """ISO window from the first day through the day after the last one."""
    starts, ends = tournament.starts_at, tournament.ends_at
    if starts is None:
        return None
    ends = ends or starts
    return {
        'window_start': starts.date().isoformat(),
        'window_end': (ends.date() + timedelta(days=1)).isoformat(),
    }


class TournamentStructureProcessor(BaseProcessor):
    """Sync sub-events, draws and entries of one individual tournament."""

    job_type = JobType.TOURNAMENT_STRUCTURE_SYNC

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        payload: StructureSyncPayload = ctx.payload
        code = payload.tournament_code
        ctx.update_progress(0)

        details = await ctx.api.get_tournament_details(code)
        if isinstance(details, NotFound):
            raise NotFoundError('tournament', code)
        tournament = details.value
        ctx.logger.info(f"Syncing tournament structure for: {tournament.name}")

        event = ctx.db.query(TournamentEvent).filter(TournamentEvent.visual_code == code).first()
        if event is None:
            event = new_tournament_event(tournament)
            ctx.db.add(event)
            ctx.db.commit()
        ctx.update_progress(10)

        stats: Dict[str, Any] = {
            'events': 0, 'draws': 0, 'entries_created': 0, 'failed': 0, 'failed_steps': [], 'child_jobs': [],
        }
        transient_errors: List[TransientError] = []

        steps = (
            ('events', lambda: self._sync_events(ctx, event, payload, stats), 40),
            ('draws', lambda: self._sync_draws(ctx, event, payload, stats), 90),
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

        window = game_sync_window(tournament)
        if window:
            stats['child_jobs'].append(ctx.enqueue_child(
                JobType.TOURNAMENT_GAME_SYNC, {'tournament_code': code, **window}
            ))

        event.last_sync = datetime.utcnow()
        ctx.db.commit()
        ctx.update_progress(100)

        stats['processed'] = stats['events'] + stats['draws']
        ctx.logger.info(f"Completed tournament structure sync for {code}: {stats['events']} events, {stats['draws']} draws")
        return stats

    async def _sync_events(self, ctx: JobContext, event: TournamentEvent, payload: StructureSyncPayload, stats):
        events = await fetch_events(ctx.api, event.visual_code, payload.event_codes, ctx.logger)
        sub_events = BaseRepository(TournamentSubEvent, ctx.db)

        for dto in events:
            sub_events.upsert(
                {'event_id': event.id, 'visual_code': dto.code},
                {
                    'name': dto.name,
                    'event_type': map_event_gender(dto.gender_id),
                    'game_type': map_event_game_type(dto.game_type_id, dto.gender_id),
                    'level': dto.level_id,
                    'last_sync': datetime.utcnow(),
                },
            )
            stats['events'] += 1

        ctx.db.commit()
        ctx.logger.info(f"Synced {len(events)} events")

    async def _sync_draws(self, ctx: JobContext, event: TournamentEvent, payload: StructureSyncPayload, stats):
        query = ctx.db.query(TournamentSubEvent).filter(TournamentSubEvent.event_id == event.id)
        if payload.event_codes:
            query = query.filter(TournamentSubEvent.visual_code.in_(payload.event_codes))
        sub_events = query.order_by(TournamentSubEvent.visual_code).all()

        draws_repo = BaseRepository(TournamentDraw, ctx.db)
        entries = EntryReconciler(ctx.db, ctx.logger)
        players = GameReconciler(ctx.db, ctx.logger)

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
                            'type': map_draw_type(dto.type_id, TOURNAMENT_DEFAULT_DRAW),
                            'size': dto.size,
                            'qualification': bool(dto.qualification),
                            'last_sync': datetime.utcnow(),
                        },
                    )
                    ctx.db.commit()

                    draw_entries = await ctx.api.get_draw_entries(event.visual_code, dto.code)
                    if not isinstance(draw_entries, NotFound):
                        pairs = self._player_pairs(players, draw_entries.value)
                        stats['entries_created'] += entries.add_player_entries(draw.id, sub_event.id, pairs)
                        ctx.db.commit()
                    stats['draws'] += 1
                except (TransientError, OperationalError):
                    raise
                except Exception as e:
                    ctx.db.rollback()
                    ctx.logger.warning(str(PartialFailure('draw', dto.code, e)))
                    stats['failed'] += 1

        ctx.logger.info(f"Synced {stats['draws']} draws for {len(sub_events)} events")

    @staticmethod
    def _player_pairs(players: GameReconciler, draw_entries: List[EntryDTO]):
        pairs = []
        for entry in draw_entries:
            player1 = players.upsert_player(entry.player1)
            if player1 is None:
                continue
            player2 = players.upsert_player(entry.player2)
            pairs.append((player1.id, player2.id if player2 is not None else None))
        return pairs
