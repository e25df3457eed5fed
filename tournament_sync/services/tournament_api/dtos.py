"""
Tournament API data transfer objects.

The API returns XML that the client converts to dicts. These models validate
only the fields the sync engine reads; everything else is ignored. Field
names follow the wire format through aliases, so both
``TournamentDTO(Code="X")`` and ``TournamentDTO(code="X")`` work.

XML has no arrays: a single child arrives as a dict and several as a list.
``as_list`` normalizes both.
"""
from datetime import datetime, date
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def as_list(value: Any) -> List[Any]:
    """Normalize a single-or-list XML value to a list, dropping empties."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [v for v in value if v not in (None, "")]
    return [value]


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an API timestamp ("2024-09-14T19:00:00" or "2024-09-14")."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def parse_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Integer from an XML text value, ``default`` when absent or unparseable."""
    if value is None or value == "":
        return default
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    @field_validator("*", mode="before")
    @classmethod
    def _empty_string_to_none(cls, value):
        # Empty XML elements parse to ""
        return None if value == "" else value


class TournamentDTO(ApiModel):
    code: str = Field(alias="Code")
    name: str = Field(default="", alias="Name")
    type_id: int = Field(default=0, alias="TypeID")
    tournament_status: int = Field(default=0, alias="TournamentStatus")
    start_date: Optional[str] = Field(default=None, alias="StartDate")
    end_date: Optional[str] = Field(default=None, alias="EndDate")
    online_entry_start_date: Optional[str] = Field(default=None, alias="OnlineEntryStartDate")
    online_entry_end_date: Optional[str] = Field(default=None, alias="OnlineEntryEndDate")
    historic_code: Optional[str] = Field(default=None, alias="HistoricCode")
    country_code: Optional[str] = Field(default=None, alias="CountryCode")

    @property
    def starts_at(self) -> Optional[datetime]:
        return parse_datetime(self.start_date)

    @property
    def ends_at(self) -> Optional[datetime]:
        return parse_datetime(self.end_date)


class EventDTO(ApiModel):
    code: str = Field(alias="Code")
    name: str = Field(default="", alias="Name")
    level_id: Optional[int] = Field(default=None, alias="LevelID")
    gender_id: Optional[int] = Field(default=None, alias="GenderID")
    game_type_id: Optional[int] = Field(default=None, alias="GameTypeID")


class TeamDTO(ApiModel):
    code: Optional[str] = Field(default=None, alias="Code")
    name: Optional[str] = Field(default=None, alias="Name")
    country_code: Optional[str] = Field(default=None, alias="CountryCode")


class PlayerDTO(ApiModel):
    member_id: Optional[str] = Field(default=None, alias="MemberID")
    first_name: Optional[str] = Field(default=None, alias="Firstname")
    last_name: Optional[str] = Field(default=None, alias="Lastname")
    gender_id: Optional[int] = Field(default=None, alias="GenderID")

    @field_validator("member_id", mode="before")
    @classmethod
    def _member_id_as_str(cls, value):
        return None if value in (None, "") else str(value)


class EntryDTO(ApiModel):
    team: Optional[TeamDTO] = Field(default=None, alias="Team")
    player1: Optional[PlayerDTO] = Field(default=None, alias="Player1")
    player2: Optional[PlayerDTO] = Field(default=None, alias="Player2")


class DrawDTO(ApiModel):
    code: str = Field(alias="Code")
    event_code: Optional[str] = Field(default=None, alias="EventCode")
    name: str = Field(default="", alias="Name")
    type_id: Optional[int] = Field(default=None, alias="TypeID")
    size: Optional[int] = Field(default=None, alias="Size")
    qualification: bool = Field(default=False, alias="Qualification")


class SidePlayersDTO(ApiModel):
    """One side of an individual match: a player or a pair."""
    player1: Optional[PlayerDTO] = Field(default=None, alias="Player1")
    player2: Optional[PlayerDTO] = Field(default=None, alias="Player2")

    @property
    def players(self) -> List[PlayerDTO]:
        return [p for p in (self.player1, self.player2) if p is not None and p.member_id]


class SetDTO(ApiModel):
    team1: Optional[str] = Field(default=None, alias="Team1")
    team2: Optional[str] = Field(default=None, alias="Team2")


class MatchDTO(ApiModel):
    code: str = Field(alias="Code")
    winner: Optional[int] = Field(default=None, alias="Winner")
    score_status: Optional[Union[int, str]] = Field(default=0, alias="ScoreStatus")
    match_type_id: Optional[int] = Field(default=None, alias="MatchTypeID")
    round_name: Optional[str] = Field(default=None, alias="RoundName")
    match_time: Optional[str] = Field(default=None, alias="MatchTime")
    event_code: Optional[str] = Field(default=None, alias="EventCode")
    event_name: Optional[str] = Field(default=None, alias="EventName")
    draw_code: Optional[str] = Field(default=None, alias="DrawCode")
    team1: Optional[SidePlayersDTO] = Field(default=None, alias="Team1")
    team2: Optional[SidePlayersDTO] = Field(default=None, alias="Team2")
    sets: List[SetDTO] = Field(default_factory=list, alias="Sets")

    @field_validator("score_status", mode="before")
    @classmethod
    def _numeric_status(cls, value):
        # Tournaments send ids, competitions sometimes send words
        return parse_int(value, value)

    @field_validator("sets", mode="before")
    @classmethod
    def _unwrap_sets(cls, value):
        # <Sets><Set>..</Set><Set>..</Set></Sets>
        if isinstance(value, dict):
            value = value.get("Set")
        return as_list(value)

    @property
    def played_at(self) -> Optional[datetime]:
        return parse_datetime(self.match_time)


class TeamMatchDTO(ApiModel):
    """A competition encounter between two teams."""
    code: str = Field(alias="Code")
    draw_code: Optional[str] = Field(default=None, alias="DrawCode")
    event_code: Optional[str] = Field(default=None, alias="EventCode")
    match_time: Optional[str] = Field(default=None, alias="MatchTime")
    original_match_time: Optional[str] = Field(default=None, alias="OriginalMatchTime")
    team1: Optional[TeamDTO] = Field(default=None, alias="Team1")
    team2: Optional[TeamDTO] = Field(default=None, alias="Team2")
    home_score: Optional[int] = Field(default=None, alias="HomeScore")
    away_score: Optional[int] = Field(default=None, alias="AwayScore")
    start_hour: Optional[str] = Field(default=None, alias="StartHour")
    end_hour: Optional[str] = Field(default=None, alias="EndHour")
    shuttle: Optional[str] = Field(default=None, alias="Shuttle")
    score_status: Optional[Union[int, str]] = Field(default=0, alias="ScoreStatus")

    @field_validator("shuttle", mode="before")
    @classmethod
    def _shuttle_as_str(cls, value):
        return None if value in (None, "") else str(value)

    @property
    def played_at(self) -> Optional[datetime]:
        return parse_datetime(self.match_time)

    @property
    def original_date(self) -> Optional[datetime]:
        return parse_datetime(self.original_match_time)
