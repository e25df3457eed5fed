"""
Repository layer for data access.

Usage:
    from tournament_sync.repositories import BaseRepository
    from tournament_sync.models import Team

    teams = BaseRepository(Team, db)
    team, created = teams.upsert({"visual_code": "T-1", "season": 2025}, {"name": "Evergem 1H"})
"""
from tournament_sync.repositories.base import BaseRepository

__all__ = ["BaseRepository"]
