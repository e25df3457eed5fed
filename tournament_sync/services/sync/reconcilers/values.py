"""
Immutable upsert inputs for the reconcilers.

Each value object splits into ``key()`` (the natural key the row is found
by) and ``values()`` (the columns written on insert or update), which feed
``BaseRepository.upsert(key, values)``.
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PlayerValues:
    member_id: str
    first_name: Optional[str]
    last_name: Optional[str]
    gender: str
    competition_player: bool = True

    def key(self) -> Dict[str, Any]:
        return {"member_id": self.member_id}

    def values(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("member_id")
        return data


@dataclass(frozen=True)
class EncounterValues:
    draw_id: str
    visual_code: str
    date: Optional[datetime]
    original_date: Optional[datetime]
    home_team_id: Optional[str]
    away_team_id: Optional[str]
    home_score: Optional[int]
    away_score: Optional[int]
    start_hour: Optional[str]
    end_hour: Optional[str]
    shuttle: Optional[str]

    def values(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("visual_code")
        return data


@dataclass(frozen=True)
class GameValues:
    visual_code: str
    link_id: str
    link_type: str
    played_at: Optional[datetime]
    game_type: str
    status: str
    winner: Optional[int]
    round: Optional[str]
    set1_team1: int = 0
    set1_team2: int = 0
    set2_team1: int = 0
    set2_team2: int = 0
    set3_team1: int = 0
    set3_team2: int = 0

    def key(self) -> Dict[str, Any]:
        return {"visual_code": self.visual_code, "link_id": self.link_id, "link_type": self.link_type}

    def values(self) -> Dict[str, Any]:
        data = asdict(self)
        for column in self.key():
            data.pop(column)
        return data


@dataclass(frozen=True)
class RankingSnapshot:
    single: int
    double: int
    mix: int


@dataclass(frozen=True)
class MembershipValues:
    game_id: str
    player_id: str
    team: int
    player: int
    system_id: Optional[str]
    ranking: Optional[RankingSnapshot]

    def key(self) -> Dict[str, Any]:
        return {"game_id": self.game_id, "player_id": self.player_id}

    def values(self) -> Dict[str, Any]:
        data = {"team": self.team, "player": self.player, "system_id": self.system_id}
        if self.ranking is not None:
            data.update(single=self.ranking.single, double=self.ranking.double, mix=self.ranking.mix)
        return data


@dataclass(frozen=True)
class EntryValues:
    draw_id: str
    entry_type: str
    sub_event_id: Optional[str] = None
    team_id: Optional[str] = None
    player1_id: Optional[str] = None
    player2_id: Optional[str] = None

    def key(self) -> Dict[str, Any]:
        if self.team_id is not None:
            return {"draw_id": self.draw_id, "team_id": self.team_id}
        return {"draw_id": self.draw_id, "player1_id": self.player1_id, "player2_id": self.player2_id}

    def values(self) -> Dict[str, Any]:
        return {"entry_type": self.entry_type, "sub_event_id": self.sub_event_id}
