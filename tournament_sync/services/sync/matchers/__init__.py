"""Matchers that link external identities to internal records."""
from tournament_sync.services.sync.matchers.team_resolver import (
    TeamResolver,
    MatchContext,
    Resolution,
    ScoredCandidate,
    confidence_tier,
)

__all__ = ["TeamResolver", "MatchContext", "Resolution", "ScoredCandidate", "confidence_tier"]
