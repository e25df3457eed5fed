"""Append-only entry reconciliation.

Entries are inserted when missing and never updated or deleted, so staff
moving teams between draws keep their history across syncs.
"""
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from tournament_sync.core.logging import get_logger, LoggerLike
from tournament_sync.models import CompetitionDraw, Entry
from tournament_sync.repositories.base import BaseRepository
from tournament_sync.services.sync.matchers.team_resolver import TeamResolver, MatchContext
from tournament_sync.services.sync.reconcilers.values import EntryValues
from tournament_sync.services.tournament_api.dtos import EntryDTO


class EntryReconciler:
    """Insert missing team and player-pair entries for a draw."""

    def __init__(self, db: Session, logger: Optional[LoggerLike] = None):
        self.db = db
        self.logger = logger or get_logger(__name__)
        self.entries = BaseRepository(Entry, db)

    def add(self, values: EntryValues) -> Tuple[Entry, bool]:
        """Insert the entry unless its key exists. Returns (entry, created)."""
        return self.entries.insert_if_missing(values.key(), values.values())

    def add_team_entry(self, draw_id: str, sub_event_id: Optional[str], team_id: str) -> bool:
        _, created = self.add(EntryValues(
            draw_id=draw_id, sub_event_id=sub_event_id, team_id=team_id, entry_type='competition'
        ))
        return created

    def add_player_entries(
        self,
        draw_id: str,
        sub_event_id: Optional[str],
        pairs: Iterable[Tuple[str, Optional[str]]]
    ) -> int:
        """
        Append tournament entries for player pairs (player2 None for singles).

        Returns:
            Number of entries created
        """
        created = 0
        for player1_id, player2_id in pairs:
            _, was_created = self.add(EntryValues(
                draw_id=draw_id,
                sub_event_id=sub_event_id,
                player1_id=player1_id,
                player2_id=player2_id,
                entry_type='tournament',
            ))
            created += int(was_created)
        return created

    async def reconcile_draw_entries(
        self,
        draw: CompetitionDraw,
        entries: List[EntryDTO],
        resolver: TeamResolver,
        context: MatchContext
    ) -> Dict[str, int]:
        """
        Resolve each entry's team and append missing entries.

        Unresolved teams are counted and skipped; they surface through the
        team-matching review queue instead.

        Returns:
            Counts: created, existing, unresolved
        """
        stats = {'created': 0, 'existing': 0, 'unresolved': 0}

        for entry in entries:
            if entry.team is None or not (entry.team.code or entry.team.name):
                continue

            resolution = await resolver.resolve(entry.team.code, entry.team.name, context)
            if not resolution.matched:
                stats['unresolved'] += 1
                self.logger.debug(f"No team for entry '{entry.team.name}' in draw {draw.visual_code}")
                continue

            if self.add_team_entry(draw.id, draw.sub_event_id, resolution.team.id):
                stats['created'] += 1
            else:
                stats['existing'] += 1

        self.db.commit()
        return stats
