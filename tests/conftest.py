"""Shared pytest fixtures for tournament-sync tests."""
import os
import sys
from pathlib import Path
from datetime import date
from typing import Callable, Generator
from unittest.mock import AsyncMock

# Settings are read at import time; point them at throwaway values first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("TOURNAMENT_API_USERNAME", "test-user")
os.environ.setdefault("TOURNAMENT_API_PASSWORD", "test-password")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tournament_sync.core.logging import get_logger
from tournament_sync.models import (
    Base, Club, Team, CompetitionEvent, TournamentEvent, RankingSystem
)
from tournament_sync.services.sync.processors.base import JobContext
from tournament_sync.services.sync.queue.job_queue import JobQueue
from tournament_sync.services.sync.queue.job_types import validate_payload
from tournament_sync.services.sync.queue.retry_policy import RetryPolicy
from tournament_sync.services.tournament_api.client import TournamentApiClient
from tournament_sync.services.tournament_api.dtos import TournamentDTO
from tournament_sync.services.tournament_api.result import NotFound

SEASON = 2024


@pytest.fixture(scope="function")
def db_engine():
    """In-memory database shared by every session of one test."""
    # StaticPool keeps a single connection, so the worker pool's sessions
    # and the test's own session see the same in-memory database.
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine) -> Callable[[], Session]:
    return sessionmaker(bind=db_engine, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def logger():
    return get_logger("tests")


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without backoff delay."""
    return RetryPolicy(max_attempts=3, delay_ms=0)


# =============================================================================
# REGISTRY DATA
# =============================================================================

@pytest.fixture
def sample_clubs_teams(db_session: Session):
    """Two clubs with their teams for the 2024 season, plus one 2023 team."""
    evergem = Club(name="Evergem", team_name="BC Evergem", abbreviation="EVG", state="Oost-Vlaanderen")
    lokeren = Club(name="Lokerse BC", team_name="Lokerse Badmintonclub", abbreviation="LBC", state="Oost-Vlaanderen")
    db_session.add_all([evergem, lokeren])
    db_session.flush()

    teams = {
        "evergem_1h": Team(name="Evergem 1H", season=SEASON, team_number=1, type="M", club_id=evergem.id),
        "evergem_1d": Team(name="Evergem 1D", season=SEASON, team_number=1, type="F", club_id=evergem.id),
        "evergem_2h": Team(name="Evergem 2H", season=SEASON, team_number=2, type="M", club_id=evergem.id),
        "lokeren_2g": Team(name="Lokerse BC 2G", season=SEASON, team_number=2, type="MX", club_id=lokeren.id),
        "evergem_1h_2023": Team(
            name="Evergem 1H", season=SEASON - 1, team_number=1, type="M",
            club_id=evergem.id, visual_code="EVG-OLD",
        ),
    }
    db_session.add_all(teams.values())
    db_session.commit()

    return {"clubs": {"evergem": evergem, "lokeren": lokeren}, "teams": teams}


@pytest.fixture
def competition_event(db_session: Session) -> CompetitionEvent:
    event = CompetitionEvent(
        visual_code="COMP1",
        name="PBO Competitie 2024-2025",
        slug="pbo-competitie-2024-2025",
        season=SEASON,
        state="Oost-Vlaanderen",
        status="league_entry_open",
        country="BEL",
    )
    db_session.add(event)
    db_session.commit()
    return event


@pytest.fixture
def tournament_event(db_session: Session) -> TournamentEvent:
    event = TournamentEvent(
        visual_code="TOUR1",
        name="Lokerse Jeugdtornooi",
        slug="lokerse-jeugdtornooi",
        tournament_number="T-123",
        status="unknown",
        country="BEL",
    )
    db_session.add(event)
    db_session.commit()
    return event


@pytest.fixture
def ranking_system(db_session: Session) -> RankingSystem:
    system = RankingSystem(name="BVL", primary=True, amount_of_levels=12, max_diff_levels=2)
    db_session.add(system)
    db_session.commit()
    return system


# =============================================================================
# API AND JOB CONTEXT
# =============================================================================

def tournament_dto(code: str, type_id: int = 0, status: int = 0, start: str = "2024-09-14",
                   end: str = "2024-09-15", name: str = None) -> TournamentDTO:
    return TournamentDTO(
        code=code,
        name=name or f"Tournament {code}",
        type_id=type_id,
        tournament_status=status,
        start_date=start,
        end_date=end,
    )


@pytest.fixture
def mock_api() -> AsyncMock:
    """Tournament API double; every lookup answers NotFound unless a test says otherwise."""
    api = AsyncMock(spec=TournamentApiClient)
    for name in (
        "discover_tournaments", "get_tournament_details", "get_tournament_events",
        "get_tournament_teams", "get_event_teams", "get_event_entries", "get_draw_entries",
        "get_event_draws", "get_draw_details", "get_matches_by_date", "get_matches_by_draw",
        "get_match_details", "get_encounters_by_draw", "get_encounters_by_date",
        "get_encounter_details", "get_team_match_games",
    ):
        getattr(api, name).return_value = NotFound(name)
    return api


@pytest.fixture
def make_context(db_session: Session, mock_api: AsyncMock, logger) -> Callable[..., JobContext]:
    """Build a JobContext around a freshly enqueued, active job."""

    def _make(job_type: str, payload: dict = None) -> JobContext:
        queue = JobQueue(db_session, policy=RetryPolicy(delay_ms=0), logger=logger)
        job_id = queue.enqueue(job_type, payload or {})
        job = queue.get_job(job_id)
        queue.mark_active(job)
        return JobContext(
            job=job,
            payload=validate_payload(job_type, job.data),
            db=db_session,
            api=mock_api,
            queue=queue,
            logger=logger,
        )

    return _make


@pytest.fixture
def today() -> date:
    return date(2024, 6, 15)
