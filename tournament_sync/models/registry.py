"""
Internal club/team/player registry.

Clubs and teams are maintained by administrators; the sync engine only
reads them, plus the one-way ``visual_code`` promotion on Team. Players are
owned by the external system and upserted by member id.
"""
from sqlalchemy import Column, String, Integer, DateTime, Date, ForeignKey, Boolean, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from tournament_sync.models.base import Base, new_id, utcnow


class Club(Base):
    """A club owning one or more teams per season."""
    __tablename__ = "clubs"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, index=True)
    team_name = Column(String(255), nullable=True)  # name used on team sheets
    abbreviation = Column(String(32), nullable=True)
    state = Column(String(64), nullable=True, index=True)  # province / region
    country = Column(String(3), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    teams = relationship("Team", back_populates="club")


class Team(Base):
    """A club team for one season.

    ``visual_code`` is the external system's code. It starts unset and is
    backfilled by the resolver; once set it is never cleared or replaced.
    """
    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, index=True)
    visual_code = Column(String(64), nullable=True)
    season = Column(Integer, nullable=False, index=True)
    team_number = Column(Integer, nullable=True)
    type = Column(String(16), nullable=True)  # M, F, MX, NATIONAL
    strength = Column(Integer, nullable=True)
    club_id = Column(String(36), ForeignKey("clubs.id"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    club = relationship("Club", back_populates="teams")

    __table_args__ = (
        UniqueConstraint('visual_code', 'season', name='uq_teams_visual_code_season'),
        Index('ix_teams_club_season', 'club_id', 'season'),
    )


class Player(Base):
    """Player identity, mirrored from the external system by member id."""
    __tablename__ = "players"

    id = Column(String(36), primary_key=True, default=new_id)
    member_id = Column(String(64), nullable=False, unique=True, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    gender = Column(String(2), nullable=True)  # M, F
    competition_player = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class RankingSystem(Base):
    """Ranking system; exactly one is flagged primary."""
    __tablename__ = "ranking_systems"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    primary = Column(Boolean, nullable=False, default=False, index=True)
    amount_of_levels = Column(Integer, nullable=False, default=12)
    max_diff_levels = Column(Integer, nullable=False, default=2)


class RankingPlace(Base):
    """A player's single/double/mix levels as of a ranking date."""
    __tablename__ = "ranking_places"

    id = Column(String(36), primary_key=True, default=new_id)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False)
    system_id = Column(String(36), ForeignKey("ranking_systems.id"), nullable=False)
    ranking_date = Column(Date, nullable=False)
    single = Column(Integer, nullable=True)
    double = Column(Integer, nullable=True)
    mix = Column(Integer, nullable=True)

    __table_args__ = (
        Index('ix_ranking_places_player_system_date', 'player_id', 'system_id', 'ranking_date'),
    )
