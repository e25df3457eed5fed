"""Game, player and membership reconciliation.

Games are keyed by (visual_code, link_id, link_type):
- competition: link_id is the encounter id
- tournament: link_id is the tournament draw id

Each player slot gets a GamePlayerMembership carrying the player's ranking
levels as of the day the game was played, so later ranking changes never
rewrite history.
"""
import enum
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from tournament_sync.core.errors import PartialFailure, TransientError
from tournament_sync.core.logging import get_logger, LoggerLike
from tournament_sync.models import Game, Player, GamePlayerMembership, RankingSystem, RankingPlace
from tournament_sync.repositories.base import BaseRepository
from tournament_sync.services.sync.reconcilers.values import (
    GameValues, MembershipValues, PlayerValues, RankingSnapshot
)
from tournament_sync.services.tournament_api.dtos import MatchDTO, PlayerDTO, SidePlayersDTO, parse_int


class GameType(str, enum.Enum):
    S = "S"
    D = "D"
    MX = "MX"


class GameStatus(str, enum.Enum):
    NORMAL = "NORMAL"
    WALKOVER = "WALKOVER"
    RETIREMENT = "RETIREMENT"
    DISQUALIFIED = "DISQUALIFIED"
    NO_MATCH = "NO_MATCH"


LINK_COMPETITION = "competition"
LINK_TOURNAMENT = "tournament"

MATCH_TYPE_IDS = {1: GameType.S, 2: GameType.D, 3: GameType.MX}

# Competition score statuses arrive as words. played, scheduled and postponed
# all collapse to NORMAL; kept as-is until the product side decides otherwise.
COMPETITION_STATUS = {
    "played": GameStatus.NORMAL,
    "scheduled": GameStatus.NORMAL,
    "postponed": GameStatus.NORMAL,
    "cancelled": GameStatus.NO_MATCH,
}

# Tournament ScoreStatus ids
TOURNAMENT_STATUS = {
    0: GameStatus.NORMAL,
    1: GameStatus.WALKOVER,
    2: GameStatus.RETIREMENT,
    3: GameStatus.DISQUALIFIED,
    4: GameStatus.NO_MATCH,
}

PLAYER_GENDERS = {1: "M", 2: "F"}


def map_game_type(match_type_id: Optional[int], event_name: Optional[str]) -> GameType:
    """GameType from MatchTypeID, falling back to the event name; singles by default."""
    if match_type_id in MATCH_TYPE_IDS:
        return MATCH_TYPE_IDS[match_type_id]

    name = (event_name or "").lower()
    if "single" in name:
        return GameType.S
    if "double" in name:
        return GameType.D
    if "mixed" in name:
        return GameType.MX
    return GameType.S


def map_competition_status(match: MatchDTO) -> GameStatus:
    return COMPETITION_STATUS.get(str(match.score_status or "").lower(), GameStatus.NORMAL)


def map_tournament_status(match: MatchDTO) -> GameStatus:
    """
    Tournament status from ScoreStatus.

    Organizers often leave the status at Normal for walkovers, so a Normal
    game without a first-set score is a walkover unless neither side has a
    first player.
    """
    status = TOURNAMENT_STATUS.get(parse_int(match.score_status, 0), GameStatus.NORMAL)
    if status != GameStatus.NORMAL:
        return status

    first_set = match.sets[0] if match.sets else None
    no_score = first_set is None or (first_set.team1 is None and first_set.team2 is None)
    has_player = any(
        side is not None and side.player1 is not None and side.player1.member_id
        for side in (match.team1, match.team2)
    )
    if no_score and has_player:
        return GameStatus.WALKOVER
    return GameStatus.NORMAL


def map_player_gender(gender_id: Optional[int]) -> str:
    return PLAYER_GENDERS.get(gender_id, "M")


def set_scores(match: MatchDTO) -> Dict[str, int]:
    """set1..set3 columns; absent or unparseable scores are 0."""
    scores = {}
    for index in range(3):
        game_set = match.sets[index] if index < len(match.sets) else None
        scores[f"set{index + 1}_team1"] = parse_int(game_set.team1 if game_set else None, 0)
        scores[f"set{index + 1}_team2"] = parse_int(game_set.team2 if game_set else None, 0)
    return scores


def get_ranking_protected(
    single: Optional[int],
    double: Optional[int],
    mix: Optional[int],
    system: RankingSystem
) -> RankingSnapshot:
    """
    Clamp a ranking snapshot to the system's rules.

    - Missing levels default to ``amount_of_levels`` (the lowest level)
    - No level sits more than ``max_diff_levels`` below the best one
    - Nothing exceeds ``amount_of_levels``
    """
    lowest = system.amount_of_levels
    max_diff = system.max_diff_levels or 0

    levels = [single or lowest, double or lowest, mix or lowest]
    best = min(levels)
    levels = [min(best + max_diff, level) for level in levels]
    levels = [min(level, lowest) for level in levels]
    return RankingSnapshot(single=levels[0], double=levels[1], mix=levels[2])


class GameReconciler:
    """Upsert games with their players and memberships."""

    def __init__(self, db: Session, logger: Optional[LoggerLike] = None):
        self.db = db
        self.logger = logger or get_logger(__name__)
        self.games = BaseRepository(Game, db)
        self.players = BaseRepository(Player, db)
        self.memberships = BaseRepository(GamePlayerMembership, db)
        self._primary_system: Optional[RankingSystem] = None

    # ========================================================================
    # Players
    # ========================================================================

    def upsert_player(self, dto: PlayerDTO) -> Optional[Player]:
        """Create or refresh a player by member id; names and gender follow the API."""
        if dto is None or not dto.member_id:
            return None

        values = PlayerValues(
            member_id=dto.member_id,
            first_name=dto.first_name,
            last_name=dto.last_name,
            gender=map_player_gender(dto.gender_id),
        )
        player, _ = self.players.upsert(values.key(), values.values())
        return player

    # ========================================================================
    # Ranking snapshots
    # ========================================================================

    def _get_primary_system(self) -> Optional[RankingSystem]:
        if self._primary_system is None:
            self._primary_system = self.db.query(RankingSystem).filter(RankingSystem.primary.is_(True)).first()
        return self._primary_system

    def ranking_snapshot(self, player: Player, played_at: Optional[datetime]) -> Optional[RankingSnapshot]:
        """Latest ranking at or before ``played_at`` in the primary system, clamped."""
        system = self._get_primary_system()
        if system is None:
            return None

        as_of = (played_at or datetime.utcnow()).date()
        place = self.db.query(RankingPlace).filter(
            RankingPlace.player_id == player.id,
            RankingPlace.system_id == system.id,
            RankingPlace.ranking_date <= as_of,
        ).order_by(RankingPlace.ranking_date.desc()).first()

        if place is None:
            return get_ranking_protected(None, None, None, system)
        return get_ranking_protected(place.single, place.double, place.mix, system)

    # ========================================================================
    # Games
    # ========================================================================

    def reconcile_game(
        self,
        match: MatchDTO,
        link_id: str,
        link_type: str,
        status_mapper: Optional[Callable[[MatchDTO], GameStatus]] = None
    ) -> Game:
        """Upsert one game with its players and memberships."""
        if status_mapper is None:
            status_mapper = map_competition_status if link_type == LINK_COMPETITION else map_tournament_status

        values = GameValues(
            visual_code=match.code,
            link_id=link_id,
            link_type=link_type,
            played_at=match.played_at,
            game_type=map_game_type(match.match_type_id, match.event_name).value,
            status=status_mapper(match).value,
            winner=match.winner,
            round=match.round_name,
            **set_scores(match),
        )
        game, created = self.games.upsert(values.key(), values.values())

        system = self._get_primary_system()
        for team_index, side in ((1, match.team1), (2, match.team2)):
            self._reconcile_side(game, side, team_index, system)

        self.logger.debug(f"{'Created' if created else 'Updated'} game {match.code} ({link_type} {link_id})")
        return game

    def _reconcile_side(
        self,
        game: Game,
        side: Optional[SidePlayersDTO],
        team_index: int,
        system: Optional[RankingSystem]
    ):
        if side is None:
            return

        for position, dto in ((1, side.player1), (2, side.player2)):
            player = self.upsert_player(dto)
            if player is None:
                continue

            values = MembershipValues(
                game_id=game.id,
                player_id=player.id,
                team=team_index,
                player=position,
                system_id=system.id if system is not None else None,
                ranking=self.ranking_snapshot(player, game.played_at),
            )
            self.memberships.upsert(values.key(), values.values())

    def reconcile_games(
        self,
        matches: List[MatchDTO],
        link_id: str,
        link_type: str
    ) -> Dict[str, Any]:
        """
        Upsert a batch of games sharing one link.

        A failing game is rolled back on its own and counted; siblings
        continue.

        Returns:
            Counts: processed, failed, plus the failed game codes
        """
        stats: Dict[str, Any] = {'processed': 0, 'failed': 0, 'failed_codes': []}

        for match in matches:
            try:
                self.reconcile_game(match, link_id, link_type)
                self.db.commit()
                stats['processed'] += 1
            except OperationalError as e:
                self.db.rollback()
                raise TransientError(f"Store unavailable while syncing game {match.code}: {e}") from e
            except Exception as e:
                self.db.rollback()
                self._primary_system = None
                failure = PartialFailure('game', match.code, e)
                self.logger.warning(str(failure))
                stats['failed'] += 1
                stats['failed_codes'].append(match.code)

        if stats['failed']:
            self.logger.warning(f"{stats['failed']} of {len(matches)} games failed for {link_type} {link_id}")
        return stats
