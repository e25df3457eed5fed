"""Encounter reconciliation for competitions.

Encounter and draw visual codes repeat across events, so every lookup is
scoped to the owning competition event through draw -> sub-event -> event.
"""
from typing import Optional

from sqlalchemy.orm import Session

from tournament_sync.core.logging import get_logger, LoggerLike
from tournament_sync.models import CompetitionEvent, CompetitionSubEvent, CompetitionDraw, Encounter
from tournament_sync.repositories.base import BaseRepository
from tournament_sync.services.sync.matchers.team_resolver import TeamResolver, MatchContext
from tournament_sync.services.sync.reconcilers.values import EncounterValues
from tournament_sync.services.tournament_api.dtos import TeamMatchDTO, TeamDTO


def find_competition_draw(
    db: Session,
    event: CompetitionEvent,
    draw_code: str,
    event_code: Optional[str] = None
) -> Optional[CompetitionDraw]:
    """Draw by visual code within an event, narrowed to a sub-event when its code is known."""
    query = db.query(CompetitionDraw).join(CompetitionSubEvent).filter(
        CompetitionSubEvent.event_id == event.id,
        CompetitionDraw.visual_code == draw_code,
    )
    if event_code:
        narrowed = query.filter(CompetitionSubEvent.visual_code == event_code).first()
        if narrowed:
            return narrowed
    return query.first()


def find_encounter(db: Session, event: CompetitionEvent, visual_code: str) -> Optional[Encounter]:
    """Encounter by visual code within an event."""
    return db.query(Encounter).join(CompetitionDraw).join(CompetitionSubEvent).filter(
        CompetitionSubEvent.event_id == event.id,
        Encounter.visual_code == visual_code,
    ).first()


class EncounterReconciler:
    """Upsert encounters, resolving home and away teams."""

    def __init__(self, db: Session, resolver: TeamResolver, logger: Optional[LoggerLike] = None):
        self.db = db
        self.resolver = resolver
        self.logger = logger or get_logger(__name__)
        self.encounters = BaseRepository(Encounter, db)

    async def _resolve_side(self, side: Optional[TeamDTO], context: MatchContext) -> Optional[str]:
        if side is None:
            return None
        resolution = await self.resolver.resolve(side.code, side.name, context)
        return resolution.team.id if resolution.team is not None else None

    async def reconcile(
        self,
        event: CompetitionEvent,
        dto: TeamMatchDTO,
        draw: Optional[CompetitionDraw] = None
    ) -> Optional[Encounter]:
        """
        Create or update one encounter.

        An unresolved side leaves its team id empty instead of failing the
        encounter.

        Args:
            event: Owning competition event
            dto: Encounter from the API
            draw: Owning draw when the caller already has it

        Returns:
            The encounter, or None when its draw is unknown locally
        """
        if draw is None:
            if not dto.draw_code:
                self.logger.warning(f"Encounter {dto.code} has no draw code, skipping")
                return None
            draw = find_competition_draw(self.db, event, dto.draw_code, dto.event_code)
            if draw is None:
                self.logger.warning(f"Draw {dto.draw_code} not found, skipping encounter {dto.code}")
                return None

        context = MatchContext.from_event(event)
        values = EncounterValues(
            draw_id=draw.id,
            visual_code=dto.code,
            date=dto.played_at,
            original_date=dto.original_date,
            home_team_id=await self._resolve_side(dto.team1, context),
            away_team_id=await self._resolve_side(dto.team2, context),
            home_score=dto.home_score,
            away_score=dto.away_score,
            start_hour=dto.start_hour,
            end_hour=dto.end_hour,
            shuttle=dto.shuttle,
        )

        existing = find_encounter(self.db, event, dto.code)
        if existing is not None:
            encounter, _ = self.encounters.upsert({'id': existing.id}, values.values())
        else:
            encounter = self.encounters.create(visual_code=dto.code, **values.values())
            self.db.flush()

        self.db.commit()
        return encounter
