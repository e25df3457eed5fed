"""Team resolver for mapping external team labels onto internal teams.

Handles the ways tournament software names a team:
- Stable external code once the team has been seen before
- Event-specific regex ("team matcher") with clubName/teamNumber/gender groups
- Free text such as "Evergem 1H (79)" or "Lokerse BC 2D"

Pipeline:
1. Exact (visual_code, season) lookup
2. Team matcher regex, then club substring search and number/gender filter
3. Weighted fuzzy score over club-derived and team-name-derived candidates

The first strategy that finds a team wins. Matches from steps 2 and 3
promote the external code onto a team that has none; an existing code
is never replaced.
"""
import re
from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from tournament_sync.core.errors import ConfigurationError, MalformedPatternError, TransientError
from tournament_sync.core.logging import get_logger, LoggerLike
from tournament_sync.core.metrics import record_resolution
from tournament_sync.models import Club, Team, MatchAuditLog
from tournament_sync.repositories.base import BaseRepository
from tournament_sync.services.sync.utils.similarity import similarity
from tournament_sync.services.sync.utils.team_name_parser import (
    ParsedTeamName, parse_team_name, normalize_team_name
)

# Gender letter -> accepted Team.type values
PATTERN_GENDER_TYPES: Dict[str, Tuple[str, ...]] = {
    'H': ('M', 'MEN', 'HEREN'),
    'D': ('F', 'WOMEN', 'DAMES', 'VROUWEN'),
    'G': ('MX', 'MIXED', 'GEMENGD'),
}
FUZZY_GENDER_TYPES: Dict[str, Tuple[str, ...]] = {
    **PATTERN_GENDER_TYPES,
    'M': PATTERN_GENDER_TYPES['H'],
    'F': PATTERN_GENDER_TYPES['D'],
}

CLUB_NAME_WEIGHT = 0.5
TEAM_NUMBER_WEIGHT = 0.3
GENDER_WEIGHT = 0.2

CODE_MATCH_SCORE = 1.0
PATTERN_MATCH_SCORE = 0.95
HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.6

LIKE_ESCAPE = "\\"


@dataclass(frozen=True)
class MatchContext:
    """Competition context a team is resolved in."""
    season: Optional[int]
    team_matcher: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_event(cls, event) -> "MatchContext":
        """Build from a CompetitionEvent (or None, which yields no season)."""
        if event is None:
            return cls(season=None)
        return cls(season=event.season, team_matcher=event.team_matcher, state=event.state)


@dataclass(frozen=True)
class Resolution:
    team: Optional[Team]
    confidence: str  # high, medium, low, none
    score: float
    strategy: Optional[str] = None  # code, pattern, fuzzy

    @property
    def matched(self) -> bool:
        return self.team is not None


@dataclass(frozen=True)
class ScoredCandidate:
    team: Team
    score: float


NO_MATCH = Resolution(team=None, confidence='none', score=0.0)


def contains_pattern(text: str) -> str:
    """LIKE pattern matching `text` anywhere, with its wildcards taken literally."""
    for char in (LIKE_ESCAPE, "%", "_"):
        text = text.replace(char, LIKE_ESCAPE + char)
    return f"%{text}%"


def confidence_tier(score: float) -> str:
    """Map a fuzzy score onto high/medium/low."""
    if score >= HIGH_CONFIDENCE:
        return 'high'
    if score >= MEDIUM_CONFIDENCE:
        return 'medium'
    return 'low'


def gender_matches(gender: str, team_type: Optional[str]) -> bool:
    """Fuzzy gender check; teams without a type are not penalized."""
    if not team_type:
        return True
    return team_type.upper() in FUZZY_GENDER_TYPES.get(gender.upper(), ())


def score_candidate(parsed: ParsedTeamName, team: Team, club: Optional[Club]) -> float:
    """
    Weighted similarity between a parsed label and one team.

    Weights: club name 0.5, team number 0.3, gender 0.2. Only the weights
    of components present in the label count toward the denominator, so a
    bare club name is scored on name similarity alone.

    Returns:
        Score in [0, 1]
    """
    score = 0.0
    weights = 0.0

    if parsed.club_name and club is not None:
        score += CLUB_NAME_WEIGHT * max(
            similarity(parsed.club_name, club.name or ''),
            similarity(parsed.club_name, club.team_name or ''),
            similarity(parsed.club_name, club.abbreviation or ''),
        )
        weights += CLUB_NAME_WEIGHT
    elif parsed.club_name and team.name:
        score += CLUB_NAME_WEIGHT * similarity(parsed.club_name, team.name)
        weights += CLUB_NAME_WEIGHT

    if parsed.team_number is not None:
        if team.team_number == parsed.team_number:
            score += TEAM_NUMBER_WEIGHT
        weights += TEAM_NUMBER_WEIGHT

    if parsed.gender:
        if gender_matches(parsed.gender, team.type):
            score += GENDER_WEIGHT
        weights += GENDER_WEIGHT

    return score / weights if weights > 0 else 0.0


class TeamResolver:
    """
    Resolve external team references to internal Team rows.

    Season scoping is mandatory: a code or name is only ever matched
    against teams of the context's season.
    """

    def __init__(self, db: Session, logger: Optional[LoggerLike] = None):
        """
        Args:
            db: SQLAlchemy database session
            logger: Logger to write to (defaults to the module logger)
        """
        self.db = db
        self.logger = logger or get_logger(__name__)
        self.teams = BaseRepository(Team, db)

    async def resolve(
        self,
        external_code: Optional[str],
        external_name: Optional[str],
        context: MatchContext
    ) -> Resolution:
        """
        Resolve an external team.

        Pipeline:
        1. Exact code lookup (high, 1.0)
        2. Team matcher pattern (high, 0.95)
        3. Fuzzy scoring (tier by score)

        Args:
            external_code: External team code, if known
            external_name: External team label, if known
            context: Season (required), team matcher and state

        Returns:
            Resolution; ``team`` is None when nothing matched

        Raises:
            ConfigurationError: context has no season
            TransientError: the database is unreachable
        """
        if not context.season:
            raise ConfigurationError("Season is required for team matching")

        if not external_code and not external_name:
            return NO_MATCH

        try:
            resolution = self._run_pipeline(external_code, external_name, context)
        except OperationalError as e:
            raise TransientError(f"Team lookup failed: {e}") from e

        record_resolution(resolution.strategy or 'none', resolution.confidence)
        return resolution

    def _run_pipeline(
        self,
        external_code: Optional[str],
        external_name: Optional[str],
        context: MatchContext
    ) -> Resolution:
        # Step 1: Exact code
        if external_code:
            team = self.teams.find_one_by(visual_code=external_code, season=context.season)
            if team:
                self.logger.debug(f"Found team by code {external_code} (season {context.season})")
                return Resolution(team=team, confidence='high', score=CODE_MATCH_SCORE, strategy='code')

        if not external_name:
            return NO_MATCH

        # Step 2: Team matcher pattern
        if context.team_matcher:
            try:
                team = self._match_by_pattern(external_name, context.team_matcher, context.season)
            except MalformedPatternError as e:
                self.logger.warning(str(e))
                team = None
            if team:
                self.backfill_visual_code(team, external_code, 'pattern', PATTERN_MATCH_SCORE)
                return Resolution(team=team, confidence='high', score=PATTERN_MATCH_SCORE, strategy='pattern')

        # Step 3: Fuzzy
        candidates = self.rank_candidates(external_name, context)
        if not candidates:
            self.logger.warning(f"No match found for team: '{external_name}' (season {context.season})")
            return NO_MATCH

        best = candidates[0]
        confidence = confidence_tier(best.score)
        self.logger.debug(
            f"Fuzzy matched '{external_name}' -> '{best.team.name}' "
            f"(score: {best.score:.3f}, confidence: {confidence})"
        )
        self.backfill_visual_code(best.team, external_code, 'fuzzy', best.score)
        return Resolution(team=best.team, confidence=confidence, score=best.score, strategy='fuzzy')

    # ========================================================================
    # Pattern matching
    # ========================================================================

    def _match_by_pattern(self, name: str, team_matcher: str, season: int) -> Optional[Team]:
        """
        Apply the event's team matcher and search the extracted club.

        Raises:
            MalformedPatternError: the pattern does not compile or lacks clubName
        """
        try:
            regex = re.compile(team_matcher, re.IGNORECASE)
        except re.error as e:
            raise MalformedPatternError(team_matcher, str(e)) from e

        if 'clubName' not in regex.groupindex:
            raise MalformedPatternError(team_matcher, "missing named group 'clubName'")

        match = regex.search(name)
        if not match:
            return None

        groups = match.groupdict()
        club_name = (groups.get('clubName') or '').strip()
        if not club_name:
            return None

        team_number = groups.get('teamNumber')
        expected_number = int(team_number) if team_number and team_number.isdigit() else None
        gender = groups.get('gender')

        for club in self._find_clubs(club_name):
            for team in self._club_teams(club, season):
                if expected_number is not None and team.team_number is not None \
                        and team.team_number != expected_number:
                    continue
                if gender and team.type:
                    expected_types = PATTERN_GENDER_TYPES.get(gender.upper(), ())
                    if expected_types and team.type.upper() not in expected_types:
                        continue
                self.logger.debug(f"Matched team via team matcher: {name} -> {team.name}")
                return team

        return None

    # ========================================================================
    # Fuzzy matching
    # ========================================================================

    def rank_candidates(self, name: str, context: MatchContext) -> List[ScoredCandidate]:
        """
        Score every candidate team for a label, best first.

        Candidates come from clubs whose name, team name or abbreviation
        contains the parsed club name (restricted to ``context.state``),
        plus teams whose own name contains it. Ties keep discovery order,
        club-derived candidates first.

        Returns:
            Candidates with a score above zero, sorted by score descending
        """
        if not context.season:
            raise ConfigurationError("Season is required for team matching")

        parsed = parse_team_name(name)
        scored: Dict[str, ScoredCandidate] = {}

        def consider(team: Team, club: Optional[Club]):
            score = score_candidate(parsed, team, club)
            current = scored.get(team.id)
            if score > 0 and (current is None or score > current.score):
                scored[team.id] = ScoredCandidate(team=team, score=score)

        if parsed.club_name:
            for club in self._find_clubs(parsed.club_name, state=context.state):
                for team in self._club_teams(club, context.season):
                    consider(team, club)

        search = parsed.club_name or normalize_team_name(name)
        if search:
            direct = self.db.query(Team).filter(
                Team.name.ilike(contains_pattern(search), escape=LIKE_ESCAPE),
                Team.season == context.season
            ).order_by(Team.name).all()
            for team in direct:
                club = team.club
                if context.state and club is not None and club.state and club.state != context.state:
                    continue
                consider(team, club)

        return sorted(scored.values(), key=lambda c: c.score, reverse=True)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _find_clubs(self, club_name: str, state: Optional[str] = None) -> List[Club]:
        pattern = contains_pattern(club_name)
        query = self.db.query(Club).filter(or_(
            Club.name.ilike(pattern, escape=LIKE_ESCAPE),
            Club.team_name.ilike(pattern, escape=LIKE_ESCAPE),
            Club.abbreviation.ilike(pattern, escape=LIKE_ESCAPE),
        ))
        if state:
            query = query.filter(Club.state == state)
        return query.order_by(Club.name).all()

    def _club_teams(self, club: Club, season: int) -> List[Team]:
        return self.db.query(Team).filter(
            Team.club_id == club.id,
            Team.season == season
        ).order_by(Team.team_number, Team.name).all()

    def backfill_visual_code(
        self,
        team: Team,
        external_code: Optional[str],
        strategy: str,
        score: float,
        performed_by: str = 'system'
    ) -> bool:
        """
        Promote the external code onto a team that has none yet.

        The change is flushed, not committed; the caller owns the transaction.

        Returns:
            True when the code was written
        """
        if not external_code or team.visual_code:
            return False

        holder = self.teams.find_one_by(visual_code=external_code, season=team.season)
        if holder is not None:
            self.logger.warning(
                f"Visual code {external_code} already belongs to team {holder.name}, not assigning it to {team.name}"
            )
            return False

        self.teams.upsert({'id': team.id}, {'visual_code': external_code})
        self.db.add(MatchAuditLog(
            entity_type='team',
            entity_id=team.id,
            action='visual_code_backfilled',
            previous_state={'visual_code': None},
            new_state={'visual_code': external_code},
            match_details={'strategy': strategy, 'score': round(score, 4)},
            performed_by=performed_by,
        ))
        self.db.flush()
        self.logger.info(f"Updated team {team.name} with visual code {external_code}")
        return True

    async def resolve_many(
        self,
        refs: List[Tuple[Optional[str], Optional[str]]],
        context: MatchContext
    ) -> List[Resolution]:
        """Resolve (code, name) pairs in order."""
        results = []
        for code, name in refs:
            results.append(await self.resolve(code, name, context))
        return results
