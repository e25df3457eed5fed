"""
Job types, the queue each one runs on, and their validated payloads.

Queues:
- tournament-discovery: tournament-discovery
- competition-event: competition structure and game sync
- tournament-event: tournament structure and game sync
- team-matching: team-matching
"""
import enum
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from tournament_sync.core.errors import ConfigurationError


class JobType(str, enum.Enum):
    TOURNAMENT_DISCOVERY = "tournament-discovery"
    COMPETITION_STRUCTURE_SYNC = "competition-structure-sync"
    TOURNAMENT_STRUCTURE_SYNC = "tournament-structure-sync"
    COMPETITION_GAME_SYNC = "competition-game-sync"
    TOURNAMENT_GAME_SYNC = "tournament-game-sync"
    TEAM_MATCHING = "team-matching"


QUEUE_FOR_JOB: Dict[JobType, str] = {
    JobType.TOURNAMENT_DISCOVERY: "tournament-discovery",
    JobType.COMPETITION_STRUCTURE_SYNC: "competition-event",
    JobType.COMPETITION_GAME_SYNC: "competition-event",
    JobType.TOURNAMENT_STRUCTURE_SYNC: "tournament-event",
    JobType.TOURNAMENT_GAME_SYNC: "tournament-event",
    JobType.TEAM_MATCHING: "team-matching",
}

# Longest explicit game-sync window, in days
MAX_WINDOW_DAYS = 366

# GameSyncPayload has a field named `date`
Day = date


class JobPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")


def as_day(value: Any) -> Any:
    """Day part of a timestamp ("2024-09-14T00:00:00" -> "2024-09-14"); other values pass through."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in "T ":
        return value[:10]
    return value


class DiscoveryPayload(JobPayload):
    ref_date: Optional[date] = None
    page_size: Optional[int] = Field(default=None, gt=0)
    search_term: Optional[str] = None
    tournament_code: Optional[str] = None  # add a single tournament by code

    @field_validator("ref_date", mode="before")
    @classmethod
    def _ref_day(cls, value):
        return as_day(value)


class StructureSyncPayload(JobPayload):
    tournament_code: str
    event_codes: Optional[List[str]] = None
    force_update: bool = False
    include_sub_components: bool = False


class GameSyncPayload(JobPayload):
    """
    Source priority: match_codes, then draw_code, then date, then the
    window (window_start/window_end, or the last N days).
    """
    tournament_code: str
    event_code: Optional[str] = None
    draw_code: Optional[str] = None
    match_codes: Optional[List[str]] = None
    date: Optional[Day] = None
    window_start: Optional[Day] = None
    window_end: Optional[Day] = None

    @field_validator("date", "window_start", "window_end", mode="before")
    @classmethod
    def _days(cls, value):
        return as_day(value)

    @model_validator(mode="after")
    def _check_window(self):
        if self.window_end is not None and self.window_start is None:
            raise ValueError("window_end needs window_start")
        if self.window_start is not None and self.window_end is not None:
            if self.window_end < self.window_start:
                raise ValueError(f"window_end {self.window_end} is before window_start {self.window_start}")
            if (self.window_end - self.window_start).days >= MAX_WINDOW_DAYS:
                raise ValueError(f"window spans more than {MAX_WINDOW_DAYS} days")
        return self


class UnmatchedTeam(BaseModel):
    external_code: str
    external_name: str
    event_code: Optional[str] = None


class TeamMatchingPayload(JobPayload):
    tournament_code: str
    event_code: Optional[str] = None
    unmatched_teams: List[UnmatchedTeam] = Field(default_factory=list)


PAYLOAD_MODELS: Dict[JobType, Type[JobPayload]] = {
    JobType.TOURNAMENT_DISCOVERY: DiscoveryPayload,
    JobType.COMPETITION_STRUCTURE_SYNC: StructureSyncPayload,
    JobType.TOURNAMENT_STRUCTURE_SYNC: StructureSyncPayload,
    JobType.COMPETITION_GAME_SYNC: GameSyncPayload,
    JobType.TOURNAMENT_GAME_SYNC: GameSyncPayload,
    JobType.TEAM_MATCHING: TeamMatchingPayload,
}


class UnknownJobTypeError(ConfigurationError):
    """The job type is not one of JobType."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


def parse_job_type(job_type) -> JobType:
    """JobType from its string value.

    Raises:
        UnknownJobTypeError: not a known job type
    """
    if isinstance(job_type, JobType):
        return job_type
    try:
        return JobType(job_type)
    except ValueError as e:
        raise UnknownJobTypeError(str(job_type)) from e


def validate_payload(job_type, payload: Optional[dict]) -> JobPayload:
    """
    Validate a raw payload against the model for its job type.

    Raises:
        UnknownJobTypeError: unknown job type
        ConfigurationError: payload does not fit the model
    """
    model = PAYLOAD_MODELS[parse_job_type(job_type)]
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid payload for {job_type}: {e}") from e
