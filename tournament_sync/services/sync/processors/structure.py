"""Helpers shared by the competition and tournament structure syncs."""
from typing import List, Optional

from tournament_sync.core.logging import LoggerLike
from tournament_sync.services.tournament_api.client import TournamentApiClient
from tournament_sync.services.tournament_api.dtos import EventDTO
from tournament_sync.services.tournament_api.result import NotFound

EVENT_GENDERS = {1: 'M', 2: 'F', 3: 'MX'}
GAME_TYPES = {1: 'S', 2: 'D'}
DRAW_TYPES = {0: 'KO', 1: 'QUALIFICATION', 2: 'QUALIFICATION', 3: 'POULE', 4: 'KO', 5: 'QUALIFICATION'}

# Competitions are mostly round-robin, tournaments mostly knockout
COMPETITION_DEFAULT_DRAW = 'POULE'
TOURNAMENT_DEFAULT_DRAW = 'KO'


def map_event_gender(gender_id: Optional[int]) -> str:
    return EVENT_GENDERS.get(gender_id, 'M')


def map_event_game_type(game_type_id: Optional[int], gender_id: Optional[int]) -> str:
    """S or D from GameTypeID; mixed events (GenderID 3) are always MX."""
    if gender_id == 3:
        return 'MX'
    return GAME_TYPES.get(game_type_id, 'S')


def map_draw_type(type_id: Optional[int], default: str) -> str:
    return DRAW_TYPES.get(type_id, default)


async def fetch_events(
    api: TournamentApiClient,
    tournament_code: str,
    event_codes: Optional[List[str]],
    logger: LoggerLike
) -> List[EventDTO]:
    """
    Events of a tournament, optionally limited to some event codes.

    A missing event is logged and skipped; TransientError propagates.
    """
    if not event_codes:
        result = await api.get_tournament_events(tournament_code)
        if isinstance(result, NotFound):
            logger.warning(f"No events for {tournament_code}: {result}")
            return []
        return result.value

    events: List[EventDTO] = []
    for event_code in event_codes:
        result = await api.get_tournament_events(tournament_code, event_code)
        if isinstance(result, NotFound):
            logger.warning(f"Event {event_code} not found in {tournament_code}, skipping")
            continue
        events.extend(result.value)
    return events
