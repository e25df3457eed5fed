"""String helpers for team name matching."""
