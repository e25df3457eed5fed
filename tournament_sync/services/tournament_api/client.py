"""
Tournament software API client.

Read-only access to the tournament software REST API (XML over HTTPS,
basic auth):
- Tournament discovery and details
- Events, teams, entries and draws
- Individual matches and team encounters

Each data type has its own cache TTL, from tournament lists (1 hour) down
to live match data (1 minute).

Every method returns ``Found(dto)`` or ``NotFound``. Failures raise:
- ConfigurationError: credentials missing or rejected (401/403)
- TransientError: network errors, 5xx, open circuit breaker, other statuses
"""
import asyncio
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Type
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tournament_sync.core.config import settings
from tournament_sync.core.errors import ConfigurationError, TransientError
from tournament_sync.core.logging import get_logger, LoggerLike
from tournament_sync.core.metrics import record_api_request
from tournament_sync.services.core.circuit_breaker import (
    CircuitBreakerError, tournament_api_breaker, call_protected
)
from tournament_sync.services.tournament_api.dtos import (
    as_list, TournamentDTO, EventDTO, TeamDTO, EntryDTO, DrawDTO, MatchDTO, TeamMatchDTO
)
from tournament_sync.services.tournament_api.result import Found, NotFound, Lookup

# Cache TTL in seconds per data type
CACHE_TTL = {
    "tournaments": 3600,  # tournament list changes infrequently
    "tournamentDetails": 1800,
    "events": 1800,
    "teams": 900,
    "entries": 600,
    "draws": 300,
    "matches": 60,  # changes constantly during play
}

DEFAULT_REF_DATE = "2014-01-01"


class _ServerError(TransientError):
    """5xx response; retried before surfacing as a TransientError."""


def xml_to_dict(element: ET.Element) -> Any:
    """
    Convert an XML element to plain Python values.

    - Attributes and children merge into one dict
    - Repeated children become a list
    - Leaf elements without attributes become their text ("" when empty)
    - Namespaces are dropped from tag names
    """
    children = list(element)
    if not children and not element.attrib:
        return (element.text or "").strip()

    result: Dict[str, Any] = {}
    for name, value in element.attrib.items():
        result[_local_name(name)] = value

    for child in children:
        key = _local_name(child.tag)
        value = xml_to_dict(child)
        if key in result:
            if not isinstance(result[key], list):
                result[key] = [result[key]]
            result[key].append(value)
        else:
            result[key] = value

    text = (element.text or "").strip()
    if text and not children:
        result["_text"] = text
    return result


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


class TournamentApiClient:
    """
    Async client for the tournament software API.

    The httpx client is created lazily; call ``close()`` when done.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        cache_enabled: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[LoggerLike] = None,
    ):
        """
        Args:
            base_url: API root (defaults to TOURNAMENT_API_BASE_URL)
            username: Basic auth user (defaults to TOURNAMENT_API_USERNAME)
            password: Basic auth password (defaults to TOURNAMENT_API_PASSWORD)
            timeout: Request timeout in seconds
            cache_enabled: Enable the in-memory response cache
            transport: Custom httpx transport (tests use httpx.MockTransport)
            logger: Logger to write to

        Raises:
            ConfigurationError: credentials are missing
        """
        self.base_url = (base_url or settings.TOURNAMENT_API_BASE_URL).rstrip("/")
        self.username = username if username is not None else settings.TOURNAMENT_API_USERNAME
        self.password = password if password is not None else settings.TOURNAMENT_API_PASSWORD
        if not self.username or not self.password:
            raise ConfigurationError("TOURNAMENT_API_USERNAME and TOURNAMENT_API_PASSWORD are required")

        self.timeout = timeout or settings.TOURNAMENT_API_TIMEOUT
        self.cache_enabled = settings.TOURNAMENT_API_CACHE_ENABLED if cache_enabled is None else cache_enabled
        self.logger = logger or get_logger(__name__)

        self._transport = transport
        self._cache: Dict[str, tuple] = {}  # key -> (data, expiry)
        self._lock = asyncio.Lock()
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=httpx.BasicAuth(self.username, self.password),
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers={"Accept": "application/xml", "Content-Type": "application/xml"},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ========================================================================
    # Cache
    # ========================================================================

    @staticmethod
    def _cache_key(endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        return f"{endpoint}?{urlencode(sorted(params.items()))}" if params else endpoint

    async def _get_cached(self, key: str) -> Optional[Any]:
        """Get data from cache if valid."""
        if not self.cache_enabled:
            return None
        async with self._lock:
            if key in self._cache:
                data, expiry = self._cache[key]
                if datetime.now() < expiry:
                    return data
                del self._cache[key]
        return None

    async def _set_cache(self, key: str, data: Any, cache_type: str):
        """Set data in cache with the TTL of its data type."""
        if not self.cache_enabled:
            return
        expiry = datetime.now() + timedelta(seconds=CACHE_TTL[cache_type])
        async with self._lock:
            self._cache[key] = (data, expiry)

    async def clear_cache(self, endpoint: Optional[str] = None):
        """Clear cached responses for one endpoint (any params), or everything."""
        async with self._lock:
            if endpoint is None:
                count = len(self._cache)
                self._cache.clear()
            else:
                keys = [k for k in self._cache if k == endpoint or k.startswith(f"{endpoint}?")]
                for key in keys:
                    del self._cache[key]
                count = len(keys)
        self.logger.debug(f"Cleared {count} tournament API cache entries")

    # ========================================================================
    # Transport
    # ========================================================================

    async def _send(self, endpoint: str, params: Optional[Dict[str, Any]]) -> httpx.Response:
        client = await self._get_client()
        response = await client.get(endpoint, params=params)
        if response.status_code >= 500:
            raise _ServerError(f"Tournament API {endpoint} returned {response.status_code}")
        return response

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
        reraise=True,
    )
    async def _fetch(self, endpoint: str, params: Optional[Dict[str, Any]]) -> httpx.Response:
        """Single GET through the circuit breaker; transport errors and 5xx are retried."""
        return await call_protected(tournament_api_breaker, self._send, endpoint, params)

    async def _get(self, endpoint: str, cache_type: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        GET an endpoint and return the parsed ``Result`` element.

        Returns:
            Result dict, or None when the API answered 404
        """
        key = self._cache_key(endpoint, params)
        cached = await self._get_cached(key)
        if cached is not None:
            record_api_request("cache_hit")
            return cached

        try:
            response = await self._fetch(endpoint, params)
        except CircuitBreakerError as e:
            record_api_request("transient")
            raise TransientError(f"Tournament API circuit open: {e}") from e
        except httpx.TransportError as e:
            record_api_request("transient")
            raise TransientError(f"Tournament API request failed for {endpoint}: {e}") from e
        except TransientError:
            record_api_request("transient")
            raise

        if response.status_code == 404:
            record_api_request("not_found")
            self.logger.debug(f"Tournament API 404 for {endpoint}")
            return None
        if response.status_code in (401, 403):
            record_api_request("unauthorized")
            raise ConfigurationError(f"Tournament API rejected credentials ({response.status_code})")
        if response.status_code >= 400:
            record_api_request("transient")
            raise TransientError(f"Tournament API {endpoint} returned {response.status_code}")

        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            record_api_request("transient")
            raise TransientError(f"Tournament API returned invalid XML for {endpoint}: {e}") from e

        data = xml_to_dict(root)
        if not isinstance(data, dict):
            data = {}

        record_api_request("success")
        await self._set_cache(key, data, cache_type)
        return data

    async def _get_many(
        self,
        endpoint: str,
        cache_type: str,
        key: str,
        model: Type[BaseModel],
        resource: str,
        code: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Lookup:
        data = await self._get(endpoint, cache_type, params)
        if data is None:
            return NotFound(resource, code)
        return Found([model.model_validate(item) for item in as_list(data.get(key)) if isinstance(item, dict)])

    async def _get_one(
        self,
        endpoint: str,
        cache_type: str,
        key: str,
        model: Type[BaseModel],
        resource: str,
        code: Optional[str] = None,
    ) -> Lookup:
        data = await self._get(endpoint, cache_type)
        items = [item for item in as_list(data.get(key)) if isinstance(item, dict)] if data is not None else []
        if not items:
            return NotFound(resource, code)
        return Found(model.model_validate(items[0]))

    # ========================================================================
    # Tournaments
    # ========================================================================

    async def discover_tournaments(
        self,
        ref_date: str = DEFAULT_REF_DATE,
        page_size: int = 100,
        search_term: Optional[str] = None,
    ) -> Lookup:
        """
        List tournaments changed since ``ref_date``, or matching ``search_term``.

        Returns:
            Found(List[TournamentDTO])
        """
        if search_term:
            params = {"q": search_term, "pagesize": page_size}
        else:
            params = {"list": 1, "refdate": ref_date or DEFAULT_REF_DATE, "pagesize": page_size}
        return await self._get_many(
            "/1.0/Tournament", "tournaments", "Tournament", TournamentDTO, "tournaments", params=params
        )

    async def get_tournament_details(self, tournament_code: str) -> Lookup:
        """Found(TournamentDTO)."""
        return await self._get_one(
            f"/1.0/Tournament/{tournament_code}", "tournamentDetails", "Tournament", TournamentDTO,
            "tournament", tournament_code
        )

    async def get_tournament_events(self, tournament_code: str, event_code: Optional[str] = None) -> Lookup:
        """Found(List[EventDTO])."""
        endpoint = f"/1.0/Tournament/{tournament_code}/Event"
        if event_code:
            endpoint += f"/{event_code}"
        return await self._get_many(
            endpoint, "events", "TournamentEvent", EventDTO, "events", event_code or tournament_code
        )

    # ========================================================================
    # Teams and entries
    # ========================================================================

    async def get_tournament_teams(self, tournament_code: str, team_code: Optional[str] = None) -> Lookup:
        """Found(List[TeamDTO])."""
        endpoint = f"/1.0/Tournament/{tournament_code}/Team"
        if team_code:
            endpoint += f"/{team_code}"
        return await self._get_many(endpoint, "teams", "Team", TeamDTO, "teams", team_code or tournament_code)

    async def get_event_teams(self, tournament_code: str, event_code: str, team_code: Optional[str] = None) -> Lookup:
        """Found(List[TeamDTO])."""
        endpoint = f"/1.0/Tournament/{tournament_code}/Event/{event_code}/Team"
        if team_code:
            endpoint += f"/{team_code}"
        return await self._get_many(endpoint, "teams", "Team", TeamDTO, "event teams", event_code)

    async def get_event_entries(self, tournament_code: str, event_code: str) -> Lookup:
        """Found(List[EntryDTO])."""
        return await self._get_many(
            f"/1.0/Tournament/{tournament_code}/Event/{event_code}/Entry", "entries", "Entry", EntryDTO,
            "event entries", event_code
        )

    async def get_draw_entries(self, tournament_code: str, draw_code: str) -> Lookup:
        """Found(List[EntryDTO])."""
        return await self._get_many(
            f"/1.0/Tournament/{tournament_code}/Draw/{draw_code}/Entry", "entries", "Entry", EntryDTO,
            "draw entries", draw_code
        )

    # ========================================================================
    # Draws
    # ========================================================================

    async def get_event_draws(self, tournament_code: str, event_code: str, draw_code: Optional[str] = None) -> Lookup:
        """Found(List[DrawDTO])."""
        endpoint = f"/1.0/Tournament/{tournament_code}/Event/{event_code}/Draw"
        if draw_code:
            endpoint += f"/{draw_code}"
        return await self._get_many(
            endpoint, "draws", "TournamentDraw", DrawDTO, "draws", draw_code or event_code
        )

    async def get_draw_details(self, tournament_code: str, draw_code: str) -> Lookup:
        """Found(DrawDTO)."""
        return await self._get_one(
            f"/1.0/Tournament/{tournament_code}/Draw/{draw_code}", "draws", "TournamentDraw", DrawDTO,
            "draw", draw_code
        )

    # ========================================================================
    # Individual matches
    # ========================================================================

    async def get_matches_by_date(self, tournament_code: str, date: str) -> Lookup:
        """Found(List[MatchDTO]) for one day (YYYY-MM-DD)."""
        return await self._get_many(
            f"/1.0/Tournament/{tournament_code}/Match/{date}", "matches", "Match", MatchDTO, "matches", date
        )

    async def get_matches_by_draw(self, tournament_code: str, draw_code: str) -> Lookup:
        """Found(List[MatchDTO])."""
        return await self._get_many(
            f"/1.0/Tournament/{tournament_code}/Draw/{draw_code}/Match", "matches", "Match", MatchDTO,
            "matches", draw_code
        )

    async def get_match_details(self, tournament_code: str, match_code: str) -> Lookup:
        """Found(MatchDTO)."""
        return await self._get_one(
            f"/1.0/Tournament/{tournament_code}/MatchDetail/{match_code}", "matches", "Match", MatchDTO,
            "match", match_code
        )

    # ========================================================================
    # Team encounters (competitions)
    # ========================================================================

    async def get_encounters_by_draw(self, tournament_code: str, draw_code: str) -> Lookup:
        """Found(List[TeamMatchDTO])."""
        return await self._get_many(
            f"/1.0/Tournament/{tournament_code}/Draw/{draw_code}/Match", "matches", "TeamMatch", TeamMatchDTO,
            "encounters", draw_code
        )

    async def get_encounters_by_date(self, tournament_code: str, date: str) -> Lookup:
        """Found(List[TeamMatchDTO]) for one day (YYYY-MM-DD)."""
        return await self._get_many(
            f"/1.0/Tournament/{tournament_code}/Match/{date}", "matches", "TeamMatch", TeamMatchDTO,
            "encounters", date
        )

    async def get_encounter_details(self, tournament_code: str, encounter_code: str) -> Lookup:
        """Found(TeamMatchDTO)."""
        return await self._get_one(
            f"/1.0/Tournament/{tournament_code}/TeamMatch/{encounter_code}", "matches", "TeamMatch",
            TeamMatchDTO, "encounter", encounter_code
        )

    async def get_team_match_games(self, tournament_code: str, encounter_code: str) -> Lookup:
        """
        All individual games of one encounter (e.g. 4 doubles + 4 singles).

        Returns:
            Found(List[MatchDTO]); an encounter without games yields Found([])
        """
        return await self._get_many(
            f"/1.0/Tournament/{tournament_code}/TeamMatch/{encounter_code}", "matches", "Match", MatchDTO,
            "encounter games", encounter_code
        )

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Number of cached responses and whether caching is on."""
        async with self._lock:
            size = len(self._cache)
        return {"enabled": self.cache_enabled, "entries": size}


def build_api_client(logger: Optional[LoggerLike] = None) -> TournamentApiClient:
    """Client configured from settings."""
    return TournamentApiClient(logger=logger)


__all__: List[str] = ["TournamentApiClient", "build_api_client", "xml_to_dict", "CACHE_TTL"]
