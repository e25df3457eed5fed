"""
Job processors, one per job type.

- discovery: tournament-discovery
- competition_structure: competition-structure-sync
- tournament_structure: tournament-structure-sync
- game_sync: competition-game-sync and tournament-game-sync
- team_matching: team-matching
"""
