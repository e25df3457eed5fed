"""
Models Module

Exports every table used by the sync engine.

Usage:
    from tournament_sync.models import Team, Club, Game

    teams = db.query(Team).filter(Team.season == 2025).all()
"""
from tournament_sync.models.base import Base
from tournament_sync.models.registry import (
    Club,
    Team,
    Player,
    RankingSystem,
    RankingPlace,
)
from tournament_sync.models.events import (
    CompetitionEvent,
    CompetitionSubEvent,
    CompetitionDraw,
    Encounter,
    TournamentEvent,
    TournamentSubEvent,
    TournamentDraw,
    Entry,
    Game,
    GamePlayerMembership,
)
from tournament_sync.models.sync import (
    SyncJob,
    SyncMetadata,
    MatchAuditLog,
    ExternalTeam,
    TeamMatchingReview,
)

__all__ = [
    "Base",
    "Club",
    "Team",
    "Player",
    "RankingSystem",
    "RankingPlace",
    "CompetitionEvent",
    "CompetitionSubEvent",
    "CompetitionDraw",
    "Encounter",
    "TournamentEvent",
    "TournamentSubEvent",
    "TournamentDraw",
    "Entry",
    "Game",
    "GamePlayerMembership",
    "SyncJob",
    "SyncMetadata",
    "MatchAuditLog",
    "ExternalTeam",
    "TeamMatchingReview",
]
