"""
Game sync for competitions and tournaments.

Source priority (first one present wins):
1. match_codes - explicit encounter (competition) or match (tournament) codes
2. draw_code   - everything in one draw
3. date        - one day
4. window      - window_start..window_end from the payload, otherwise the
                 last GAME_SYNC_WINDOW_DAYS days, fetched one day at a time

Competitions: each encounter is reconciled, then its games are fetched
and linked to it (link_type 'competition').
Tournaments: each match is linked to its TournamentDraw (link_type
'tournament'), and the player pairs seen in a draw are appended as
entries.
"""
from abc import abstractmethod
from collections import OrderedDict
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import OperationalError

from tournament_sync.core.config import settings
from tournament_sync.core.errors import NotFoundError, PartialFailure, TransientError
from tournament_sync.models import (
    CompetitionEvent, TournamentEvent, TournamentSubEvent, TournamentDraw
)
from tournament_sync.services.sync.matchers.team_resolver import TeamResolver
from tournament_sync.services.sync.processors.base import BaseProcessor, JobContext
from tournament_sync.services.sync.queue.job_types import GameSyncPayload, JobType
from tournament_sync.services.sync.reconcilers.encounters import EncounterReconciler, find_competition_draw
from tournament_sync.services.sync.reconcilers.entries import EntryReconciler
from tournament_sync.services.sync.reconcilers.games import GameReconciler, LINK_COMPETITION, LINK_TOURNAMENT
from tournament_sync.services.tournament_api.dtos import MatchDTO, SidePlayersDTO, TeamMatchDTO
from tournament_sync.services.tournament_api.result import Lookup, NotFound


def window_days(payload: GameSyncPayload, today: date, default_days: int) -> List[date]:
    """Days to fetch when no codes, draw or date were given (inclusive)."""
    if payload.window_start:
        start = payload.window_start
        end = payload.window_end or start
    else:
        start = today - timedelta(days=default_days)
        end = today

    days = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days


def find_tournament_draw(
    db,
    event: TournamentEvent,
    draw_code: str,
    event_code: Optional[str] = None
) -> Optional[TournamentDraw]:
    """Draw by visual code within a tournament, narrowed to a sub-event when its code is known."""
    query = db.query(TournamentDraw).join(TournamentSubEvent).filter(
        TournamentSubEvent.event_id == event.id,
        TournamentDraw.visual_code == draw_code,
    )
    if event_code:
        narrowed = query.filter(TournamentSubEvent.visual_code == event_code).first()
        if narrowed:
            return narrowed
    return query.first()


class GameSyncProcessor(BaseProcessor):
    """Shared source selection for both game syncs."""

    def __init__(self, today: Optional[date] = None):
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    async def collect(self, ctx: JobContext, payload: GameSyncPayload) -> Tuple[str, List[Any]]:
        """
        Fetch the items to reconcile following the source priority.

        Returns:
            (source name, items)
        """
        code = payload.tournament_code

        if payload.match_codes:
            items = []
            for match_code in payload.match_codes:
                result = await self.fetch_by_code(ctx, code, match_code)
                if isinstance(result, NotFound):
                    ctx.logger.warning(f"Match {match_code} not found in {code}, skipping")
                    continue
                items.append(result.value)
            return 'codes', items

        if payload.draw_code:
            result = await self.fetch_by_draw(ctx, code, payload.draw_code)
            if isinstance(result, NotFound):
                ctx.logger.warning(f"Draw {payload.draw_code} not found in {code}")
                return 'draw', []
            return 'draw', result.value

        if payload.date:
            result = await self.fetch_by_date(ctx, code, payload.date.isoformat())
            return 'date', [] if isinstance(result, NotFound) else result.value

        items = []
        for day in window_days(payload, self.today, settings.GAME_SYNC_WINDOW_DAYS):
            try:
                result = await self.fetch_by_date(ctx, code, day.isoformat())
            except TransientError as e:
                ctx.logger.debug(f"No games for {code} on {day}: {e}")
                continue
            if isinstance(result, NotFound) or not result.value:
                ctx.logger.debug(f"No games for {code} on {day}")
                continue
            items.extend(result.value)
        return 'window', items

    @abstractmethod
    async def fetch_by_code(self, ctx: JobContext, tournament_code: str, code: str) -> Lookup:
        ...

    @abstractmethod
    async def fetch_by_draw(self, ctx: JobContext, tournament_code: str, draw_code: str) -> Lookup:
        ...

    @abstractmethod
    async def fetch_by_date(self, ctx: JobContext, tournament_code: str, day: str) -> Lookup:
        ...


class CompetitionGameSyncProcessor(GameSyncProcessor):
    """Encounters and their games for a competition."""

    job_type = JobType.COMPETITION_GAME_SYNC

    async def fetch_by_code(self, ctx, tournament_code, code):
        return await ctx.api.get_encounter_details(tournament_code, code)

    async def fetch_by_draw(self, ctx, tournament_code, draw_code):
        return await ctx.api.get_encounters_by_draw(tournament_code, draw_code)

    async def fetch_by_date(self, ctx, tournament_code, day):
        return await ctx.api.get_encounters_by_date(tournament_code, day)

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        payload: GameSyncPayload = ctx.payload
        event = ctx.db.query(CompetitionEvent).filter(
            CompetitionEvent.visual_code == payload.tournament_code
        ).first()
        if event is None:
            raise NotFoundError('competition', payload.tournament_code)

        source, encounters = await self.collect(ctx, payload)
        ctx.logger.info(f"Syncing {len(encounters)} encounters for {event.name} (source: {source})")

        draw = None
        if payload.draw_code:
            draw = find_competition_draw(ctx.db, event, payload.draw_code, payload.event_code)
            if draw is None:
                ctx.logger.warning(f"Draw {payload.draw_code} not synced yet for {event.visual_code}")
                encounters = []

        resolver = TeamResolver(ctx.db, ctx.logger)
        encounter_reconciler = EncounterReconciler(ctx.db, resolver, ctx.logger)
        games = GameReconciler(ctx.db, ctx.logger)

        stats: Dict[str, Any] = {
            'source': source, 'encounters': 0, 'skipped': 0, 'processed': 0, 'failed': 0, 'failed_codes': [],
        }

        for index, dto in enumerate(encounters, start=1):
            try:
                await self._sync_encounter(ctx, event, dto, draw, encounter_reconciler, games, stats)
            except OperationalError as e:
                ctx.db.rollback()
                raise TransientError(f"Store unavailable while syncing encounter {dto.code}: {e}") from e
            except TransientError:
                raise
            except Exception as e:
                ctx.db.rollback()
                ctx.logger.warning(str(PartialFailure('encounter', dto.code, e)))
                stats['failed'] += 1
                stats['failed_codes'].append(dto.code)
            ctx.update_progress(index / len(encounters) * 100)

        return stats

    async def _sync_encounter(
        self,
        ctx: JobContext,
        event: CompetitionEvent,
        dto: TeamMatchDTO,
        draw,
        encounter_reconciler: EncounterReconciler,
        games: GameReconciler,
        stats: Dict[str, Any]
    ):
        encounter = await encounter_reconciler.reconcile(event, dto, draw)
        if encounter is None:
            stats['skipped'] += 1
            return
        stats['encounters'] += 1

        result = await ctx.api.get_team_match_games(event.visual_code, dto.code)
        if isinstance(result, NotFound):
            ctx.logger.warning(f"No games for encounter {dto.code}")
            return

        counts = games.reconcile_games(result.value, encounter.id, LINK_COMPETITION)
        stats['processed'] += counts['processed']
        stats['failed'] += counts['failed']
        stats['failed_codes'].extend(f"{dto.code}/{code}" for code in counts['failed_codes'])


class TournamentGameSyncProcessor(GameSyncProcessor):
    """Individual matches for a tournament."""

    job_type = JobType.TOURNAMENT_GAME_SYNC

    async def fetch_by_code(self, ctx, tournament_code, code):
        return await ctx.api.get_match_details(tournament_code, code)

    async def fetch_by_draw(self, ctx, tournament_code, draw_code):
        return await ctx.api.get_matches_by_draw(tournament_code, draw_code)

    async def fetch_by_date(self, ctx, tournament_code, day):
        return await ctx.api.get_matches_by_date(tournament_code, day)

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        payload: GameSyncPayload = ctx.payload
        event = ctx.db.query(TournamentEvent).filter(
            TournamentEvent.visual_code == payload.tournament_code
        ).first()
        if event is None:
            raise NotFoundError('tournament', payload.tournament_code)

        source, matches = await self.collect(ctx, payload)
        ctx.logger.info(f"Syncing {len(matches)} matches for {event.name} (source: {source})")

        games = GameReconciler(ctx.db, ctx.logger)
        entries = EntryReconciler(ctx.db, ctx.logger)
        stats: Dict[str, Any] = {
            'source': source, 'draws': 0, 'skipped': 0, 'processed': 0, 'failed': 0,
            'failed_codes': [], 'entries_created': 0,
        }

        by_draw = self._group_by_draw(matches, payload)
        for index, ((draw_code, event_code), draw_matches) in enumerate(by_draw.items(), start=1):
            draw = find_tournament_draw(ctx.db, event, draw_code, event_code) if draw_code else None
            if draw is None:
                ctx.logger.warning(f"Draw {draw_code} not found for {event.visual_code}, skipping {len(draw_matches)} matches")
                stats['skipped'] += len(draw_matches)
                continue

            counts = games.reconcile_games(draw_matches, draw.id, LINK_TOURNAMENT)
            stats['draws'] += 1
            stats['processed'] += counts['processed']
            stats['failed'] += counts['failed']
            stats['failed_codes'].extend(counts['failed_codes'])

            try:
                pairs = self._player_pairs(games, draw_matches)
                stats['entries_created'] += entries.add_player_entries(draw.id, draw.sub_event_id, pairs)
                ctx.db.commit()
            except OperationalError as e:
                ctx.db.rollback()
                raise TransientError(f"Store unavailable while adding entries for draw {draw_code}: {e}") from e
            except Exception as e:
                ctx.db.rollback()
                ctx.logger.warning(str(PartialFailure('entries', draw_code, e)))
                stats['failed'] += 1

            ctx.update_progress(index / len(by_draw) * 100)

        return stats

    @staticmethod
    def _group_by_draw(matches: List[MatchDTO], payload: GameSyncPayload):
        groups: "OrderedDict[Tuple[Optional[str], Optional[str]], List[MatchDTO]]" = OrderedDict()
        for match in matches:
            key = (match.draw_code or payload.draw_code, match.event_code or payload.event_code)
            groups.setdefault(key, []).append(match)
        return groups

    @staticmethod
    def _player_pairs(games: GameReconciler, matches: List[MatchDTO]) -> List[Tuple[str, Optional[str]]]:
        """Distinct (player1, player2) ids per side, in first-seen order."""
        pairs: List[Tuple[str, Optional[str]]] = []
        for match in matches:
            for side in (match.team1, match.team2):
                pair = TournamentGameSyncProcessor._side_pair(games, side)
                if pair is not None and pair not in pairs:
                    pairs.append(pair)
        return pairs

    @staticmethod
    def _side_pair(games: GameReconciler, side: Optional[SidePlayersDTO]) -> Optional[Tuple[str, Optional[str]]]:
        if side is None:
            return None
        player1 = games.upsert_player(side.player1)
        if player1 is None:
            return None
        player2 = games.upsert_player(side.player2)
        return player1.id, player2.id if player2 is not None else None
