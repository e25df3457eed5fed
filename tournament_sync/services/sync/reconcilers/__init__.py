"""
Reconcilers turn API DTOs into idempotent store writes.

- entries: append-only team and player-pair entries
- encounters: competition encounters with resolved home/away teams
- games: games, players and ranking-stamped memberships
"""
from tournament_sync.services.sync.reconcilers.entries import EntryReconciler
from tournament_sync.services.sync.reconcilers.encounters import EncounterReconciler
from tournament_sync.services.sync.reconcilers.games import GameReconciler, GameStatus, GameType

__all__ = ["EntryReconciler", "EncounterReconciler", "GameReconciler", "GameStatus", "GameType"]
