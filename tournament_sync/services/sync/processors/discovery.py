"""
Tournament discovery.

Pipeline:
1. Page through tournaments changed since the reference date (or fetch
   one tournament by code)
2. Skip tournaments already stored as a competition or tournament event
3. Create the event record (team type -> CompetitionEvent, otherwise
   TournamentEvent)
4. Schedule follow-up jobs:
   - competitions: structure sync inside the configured month window
   - tournaments: structure sync unless finished, plus a game sync when
     the tournament is running today
"""
import re
from datetime import datetime, date
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import OperationalError

from tournament_sync.core.config import settings
from tournament_sync.core.errors import NotFoundError, PartialFailure, SyncError, TransientError
from tournament_sync.models import CompetitionEvent, TournamentEvent
from tournament_sync.services.sync.processors.base import BaseProcessor, JobContext
from tournament_sync.services.sync.queue.job_types import DiscoveryPayload, JobType
from tournament_sync.services.tournament_api.dtos import TournamentDTO, parse_datetime
from tournament_sync.services.tournament_api.result import NotFound

TEAM_TOURNAMENT_TYPE = 1
STATUS_FINISHED = 101
DEFAULT_COUNTRY = 'BEL'

TOURNAMENT_STATUS = {
    0: 'unknown',
    101: 'finished',
    199: 'cancelled',
    198: 'postponed',
    201: 'league_new',
    202: 'league_entry_open',
    203: 'league_publicly_visible',
    204: 'league_finished',
}


def map_tournament_status(status: Optional[int]) -> str:
    return TOURNAMENT_STATUS.get(status, 'unknown')


def create_slug(name: str) -> str:
    """URL slug: lowercase, alphanumerics and single dashes."""
    slug = re.sub(r'[^a-z0-9\s-]', '', (name or '').lower())
    slug = re.sub(r'\s+', '-', slug.strip())
    return re.sub(r'-+', '-', slug)


def in_month_window(today: date, months: tuple) -> bool:
    first, last = months
    return first <= today.month <= last


def entry_window(tournament: TournamentDTO):
    """Online entry open/close, falling back to the tournament dates."""
    open_date = parse_datetime(tournament.online_entry_start_date) or tournament.starts_at
    close_date = parse_datetime(tournament.online_entry_end_date) or tournament.ends_at
    return open_date, close_date


def new_competition_event(tournament: TournamentDTO, today: Optional[date] = None) -> CompetitionEvent:
    """Unsaved CompetitionEvent for a team tournament; the season is its start year."""
    open_date, close_date = entry_window(tournament)
    starts = tournament.starts_at
    return CompetitionEvent(
        visual_code=tournament.code,
        name=tournament.name,
        slug=create_slug(tournament.name),
        season=starts.year if starts else (today or date.today()).year,
        status=map_tournament_status(tournament.tournament_status),
        country=tournament.country_code or DEFAULT_COUNTRY,
        official=True,
        open_date=open_date,
        close_date=close_date,
        last_sync=datetime.utcnow(),
    )


def new_tournament_event(tournament: TournamentDTO) -> TournamentEvent:
    open_date, close_date = entry_window(tournament)
    return TournamentEvent(
        visual_code=tournament.code,
        name=tournament.name,
        slug=create_slug(tournament.name),
        tournament_number=tournament.historic_code or tournament.code,
        first_day=tournament.starts_at,
        dates=f"{tournament.start_date} - {tournament.end_date}",
        status=map_tournament_status(tournament.tournament_status),
        country=tournament.country_code or DEFAULT_COUNTRY,
        official=True,
        open_date=open_date,
        close_date=close_date,
        last_sync=datetime.utcnow(),
    )


class DiscoveryProcessor(BaseProcessor):
    """Create newly seen tournaments and fan out their sync jobs."""

    job_type = JobType.TOURNAMENT_DISCOVERY

    def __init__(self, today: Optional[date] = None):
        # Fixed date for tests; otherwise evaluated per run
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        payload: DiscoveryPayload = ctx.payload
        tournaments = await self._fetch(ctx, payload)
        ctx.logger.info(f"Discovered {len(tournaments)} tournaments")

        stats: Dict[str, Any] = {'processed': 0, 'created': 0, 'skipped': 0, 'failed': 0, 'scheduled': []}

        for index, tournament in enumerate(tournaments, start=1):
            stats['processed'] += 1
            try:
                created = self._process_tournament(ctx, tournament, stats['scheduled'])
            except OperationalError as e:
                ctx.db.rollback()
                raise TransientError(f"Store unavailable during discovery: {e}") from e
            except SyncError as e:
                if e.retryable:
                    raise
                ctx.db.rollback()
                ctx.logger.warning(str(PartialFailure('discovery', tournament.code, e)))
                stats['failed'] += 1
            except Exception as e:
                ctx.db.rollback()
                ctx.logger.error(f"Failed to process tournament {tournament.code}: {e}")
                stats['failed'] += 1
            else:
                stats['created' if created else 'skipped'] += 1

            ctx.update_progress(index / len(tournaments) * 100)

        stats['matched'] = stats['created']
        return stats

    async def _fetch(self, ctx: JobContext, payload: DiscoveryPayload) -> List[TournamentDTO]:
        if payload.tournament_code:
            result = await ctx.api.get_tournament_details(payload.tournament_code)
            if isinstance(result, NotFound):
                raise NotFoundError('tournament', payload.tournament_code)
            return [result.value]

        result = await ctx.api.discover_tournaments(
            ref_date=payload.ref_date.isoformat() if payload.ref_date else settings.DISCOVERY_REF_DATE,
            page_size=payload.page_size or settings.DISCOVERY_PAGE_SIZE,
            search_term=payload.search_term,
        )
        if isinstance(result, NotFound):
            ctx.logger.warning(f"Discovery returned nothing: {result}")
            return []
        return result.value

    # ========================================================================
    # Per tournament
    # ========================================================================

    def _exists(self, ctx: JobContext, code: str) -> bool:
        return (
            ctx.db.query(TournamentEvent.id).filter(TournamentEvent.visual_code == code).first() is not None
            or ctx.db.query(CompetitionEvent.id).filter(CompetitionEvent.visual_code == code).first() is not None
        )

    def _process_tournament(self, ctx: JobContext, tournament: TournamentDTO, scheduled: List[str]) -> bool:
        """Create the tournament and schedule its jobs. Returns False when it already existed."""
        if self._exists(ctx, tournament.code):
            ctx.logger.debug(f"Tournament {tournament.code} already exists, skipping")
            return False

        if tournament.type_id == TEAM_TOURNAMENT_TYPE:
            ctx.db.add(new_competition_event(tournament, self.today))
            ctx.db.commit()
            ctx.logger.info(f"Created new competition: {tournament.name} ({tournament.code})")

            if in_month_window(self.today, settings.competition_sync_months):
                scheduled.append(ctx.enqueue_child(
                    JobType.COMPETITION_STRUCTURE_SYNC, {'tournament_code': tournament.code}
                ))
                ctx.logger.info(f"Scheduled competition structure sync for {tournament.code}")
            return True

        ctx.db.add(new_tournament_event(tournament))
        ctx.db.commit()
        ctx.logger.info(f"Created new tournament: {tournament.name} ({tournament.code})")

        if tournament.tournament_status != STATUS_FINISHED:
            scheduled.append(ctx.enqueue_child(
                JobType.TOURNAMENT_STRUCTURE_SYNC, {'tournament_code': tournament.code}
            ))
            ctx.logger.info(f"Scheduled tournament structure sync for {tournament.code}")

            if self._in_progress(tournament):
                scheduled.append(ctx.enqueue_child(
                    JobType.TOURNAMENT_GAME_SYNC, {'tournament_code': tournament.code}
                ))
                ctx.logger.info(f"Scheduled game sync for running tournament {tournament.code}")
        return True

    def _in_progress(self, tournament: TournamentDTO) -> bool:
        starts, ends = tournament.starts_at, tournament.ends_at
        if starts is None or ends is None:
            return False
        return starts.date() <= self.today <= ends.date()
