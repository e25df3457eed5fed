"""
Competition and tournament structure, plus the rows the reconciler writes.

Ownership chains:
- CompetitionEvent -> CompetitionSubEvent -> CompetitionDraw -> Encounter -> Game
- TournamentEvent -> TournamentSubEvent -> TournamentDraw -> Game

Games are keyed by (visual_code, link_id, link_type): visual codes are
small ordinals ("1", "2", ...) reused across encounters and draws.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Boolean, Text, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from tournament_sync.models.base import Base, new_id, utcnow


# =============================================================================
# COMPETITIONS (team leagues)
# =============================================================================

class CompetitionEvent(Base):
    """A team competition for one season.

    ``team_matcher`` is an optional regex with named groups clubName,
    teamNumber and gender. ``state`` is geographic and narrows fuzzy
    matching; the external lifecycle lives in ``status``.
    """
    __tablename__ = "competition_events"

    id = Column(String(36), primary_key=True, default=new_id)
    visual_code = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True)
    season = Column(Integer, nullable=False, index=True)
    team_matcher = Column(Text, nullable=True)
    state = Column(String(64), nullable=True)
    status = Column(String(32), nullable=True)
    country = Column(String(3), nullable=True)
    official = Column(Boolean, nullable=False, default=True)
    open_date = Column(DateTime, nullable=True)
    close_date = Column(DateTime, nullable=True)
    last_sync = Column(DateTime, nullable=True)

    sub_events = relationship("CompetitionSubEvent", back_populates="event")


class CompetitionSubEvent(Base):
    __tablename__ = "competition_sub_events"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("competition_events.id"), nullable=False, index=True)
    visual_code = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    event_type = Column(String(4), nullable=True)  # M, F, MX
    level = Column(Integer, nullable=True)
    last_sync = Column(DateTime, nullable=True)

    event = relationship("CompetitionEvent", back_populates="sub_events")
    draws = relationship("CompetitionDraw", back_populates="sub_event")

    __table_args__ = (
        UniqueConstraint('event_id', 'visual_code', name='uq_competition_sub_events_event_code'),
    )


class CompetitionDraw(Base):
    """A poule/division inside a sub-event."""
    __tablename__ = "competition_draws"

    id = Column(String(36), primary_key=True, default=new_id)
    sub_event_id = Column(String(36), ForeignKey("competition_sub_events.id"), nullable=False, index=True)
    visual_code = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(16), nullable=True)  # KO, POULE, QUALIFICATION
    size = Column(Integer, nullable=True)
    last_sync = Column(DateTime, nullable=True)

    sub_event = relationship("CompetitionSubEvent", back_populates="draws")

    __table_args__ = (
        UniqueConstraint('sub_event_id', 'visual_code', name='uq_competition_draws_sub_event_code'),
        Index('ix_competition_draws_visual_code', 'visual_code'),
    )


class Encounter(Base):
    """A team-vs-team tie within a competition draw.

    Visual codes are only unique within an event, so lookups always join
    through draw -> sub-event -> event.
    """
    __tablename__ = "encounters"

    id = Column(String(36), primary_key=True, default=new_id)
    draw_id = Column(String(36), ForeignKey("competition_draws.id"), nullable=False, index=True)
    visual_code = Column(String(64), nullable=False, index=True)
    date = Column(DateTime, nullable=True)
    original_date = Column(DateTime, nullable=True)
    home_team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    away_team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)
    start_hour = Column(String(16), nullable=True)
    end_hour = Column(String(16), nullable=True)
    shuttle = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    draw = relationship("CompetitionDraw")


# =============================================================================
# TOURNAMENTS (individual events)
# =============================================================================

class TournamentEvent(Base):
    __tablename__ = "tournament_events"

    id = Column(String(36), primary_key=True, default=new_id)
    visual_code = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True)
    tournament_number = Column(String(64), nullable=True)
    first_day = Column(DateTime, nullable=True)
    dates = Column(String(128), nullable=True)
    status = Column(String(32), nullable=True)
    country = Column(String(3), nullable=True)
    official = Column(Boolean, nullable=False, default=True)
    open_date = Column(DateTime, nullable=True)
    close_date = Column(DateTime, nullable=True)
    last_sync = Column(DateTime, nullable=True)

    sub_events = relationship("TournamentSubEvent", back_populates="event")


class TournamentSubEvent(Base):
    __tablename__ = "tournament_sub_events"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("tournament_events.id"), nullable=False, index=True)
    visual_code = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    event_type = Column(String(4), nullable=True)  # M, F, MX
    game_type = Column(String(4), nullable=True)  # S, D, MX
    level = Column(Integer, nullable=True)
    last_sync = Column(DateTime, nullable=True)

    event = relationship("TournamentEvent", back_populates="sub_events")
    draws = relationship("TournamentDraw", back_populates="sub_event")

    __table_args__ = (
        UniqueConstraint('event_id', 'visual_code', name='uq_tournament_sub_events_event_code'),
    )


class TournamentDraw(Base):
    __tablename__ = "tournament_draws"

    id = Column(String(36), primary_key=True, default=new_id)
    sub_event_id = Column(String(36), ForeignKey("tournament_sub_events.id"), nullable=False, index=True)
    visual_code = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(16), nullable=True)
    size = Column(Integer, nullable=True)
    qualification = Column(Boolean, nullable=False, default=False)
    last_sync = Column(DateTime, nullable=True)

    sub_event = relationship("TournamentSubEvent", back_populates="draws")

    __table_args__ = (
        UniqueConstraint('sub_event_id', 'visual_code', name='uq_tournament_draws_sub_event_code'),
    )


# =============================================================================
# RECONCILED ROWS
# =============================================================================

class Entry(Base):
    """Participation of a team (competitions) or player pair (tournaments) in a draw.

    Append-only: the sync pipeline inserts missing entries and never updates
    or deletes existing ones.
    """
    __tablename__ = "entries"

    id = Column(String(36), primary_key=True, default=new_id)
    draw_id = Column(String(36), nullable=False, index=True)
    sub_event_id = Column(String(36), nullable=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    player1_id = Column(String(36), ForeignKey("players.id"), nullable=True)
    player2_id = Column(String(36), ForeignKey("players.id"), nullable=True)
    entry_type = Column(String(16), nullable=False)  # competition, tournament
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('draw_id', 'team_id', name='uq_entries_draw_team'),
        Index('ix_entries_draw_players', 'draw_id', 'player1_id', 'player2_id'),
    )


class Game(Base):
    """One individual match (single/double/mixed)."""
    __tablename__ = "games"

    id = Column(String(36), primary_key=True, default=new_id)
    visual_code = Column(String(64), nullable=False)
    link_id = Column(String(36), nullable=False)  # encounter id or tournament draw id
    link_type = Column(String(16), nullable=False)  # competition, tournament
    played_at = Column(DateTime, nullable=True)
    game_type = Column(String(4), nullable=True)  # S, D, MX
    status = Column(String(16), nullable=True)
    winner = Column(Integer, nullable=True)
    round = Column(String(64), nullable=True)
    set1_team1 = Column(Integer, nullable=True)
    set1_team2 = Column(Integer, nullable=True)
    set2_team1 = Column(Integer, nullable=True)
    set2_team2 = Column(Integer, nullable=True)
    set3_team1 = Column(Integer, nullable=True)
    set3_team2 = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    memberships = relationship("GamePlayerMembership", back_populates="game")

    __table_args__ = (
        UniqueConstraint('visual_code', 'link_id', 'link_type', name='uq_games_visual_code_link'),
        Index('ix_games_link', 'link_id', 'link_type'),
    )


class GamePlayerMembership(Base):
    """A player's slot in a game with the ranking levels they had when it was played."""
    __tablename__ = "game_player_memberships"

    id = Column(String(36), primary_key=True, default=new_id)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, index=True)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    team = Column(Integer, nullable=False)  # 1 or 2
    player = Column(Integer, nullable=False)  # position within the side
    system_id = Column(String(36), ForeignKey("ranking_systems.id"), nullable=True)
    single = Column(Integer, nullable=True)
    double = Column(Integer, nullable=True)
    mix = Column(Integer, nullable=True)

    game = relationship("Game", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint('game_id', 'player_id', name='uq_game_player_memberships_game_player'),
    )
