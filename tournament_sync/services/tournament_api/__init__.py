"""
Tournament software API access.

Usage:
    from tournament_sync.services.tournament_api import build_api_client, Found, NotFound

    client = build_api_client()
    result = await client.get_tournament_details("ABC123")
    if isinstance(result, Found):
        print(result.value.name)
"""
from tournament_sync.services.tournament_api.client import TournamentApiClient, build_api_client
from tournament_sync.services.tournament_api.result import Found, NotFound, Lookup, unwrap_or

__all__ = [
    "TournamentApiClient",
    "build_api_client",
    "Found",
    "NotFound",
    "Lookup",
    "unwrap_or",
]
