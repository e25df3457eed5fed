"""
Sync bookkeeping: durable jobs, health metadata, audit trail and the
team-matching review queue.
"""
from sqlalchemy import Column, String, Float, Integer, DateTime, ForeignKey, Boolean, Text, Index, UniqueConstraint, JSON

from tournament_sync.models.base import Base, new_id, utcnow


class SyncJob(Base):
    """A durable queue entry.

    Status flow: waiting -> active -> completed | failed. A failed attempt
    that may be retried goes back to waiting with ``available_at`` pushed
    out by the backoff delay.
    """
    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=new_id)
    type = Column(String(64), nullable=False, index=True)
    queue = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    parent_id = Column(String(36), ForeignKey("sync_jobs.id"), nullable=True, index=True)
    status = Column(String(16), nullable=False, default="waiting")
    progress = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    result = Column(JSON, nullable=True)
    failed_reason = Column(Text, nullable=True)
    available_at = Column(DateTime, nullable=False, default=utcnow)
    locked_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_sync_jobs_status_available', 'status', 'available_at'),
        Index('ix_sync_jobs_queue_status', 'queue', 'status'),
    )


class SyncMetadata(Base):
    """Health of the last run per (source, data_type)."""
    __tablename__ = "sync_metadata"

    id = Column(String(36), primary_key=True, default=new_id)
    source = Column(String(32), nullable=False)  # tournament_api
    data_type = Column(String(64), nullable=False)  # job type
    last_sync_started_at = Column(DateTime, nullable=True)
    last_sync_completed_at = Column(DateTime, nullable=True, index=True)
    last_sync_status = Column(String(16), nullable=True, index=True)  # success, failed, partial
    records_processed = Column(Integer, nullable=False, default=0)
    records_matched = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sync_duration_ms = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint('source', 'data_type', name='uq_sync_metadata_source_type'),
    )


class MatchAuditLog(Base):
    """Audit trail for team links and visual code promotions."""
    __tablename__ = "match_audit_log"

    id = Column(String(36), primary_key=True, default=new_id)
    entity_type = Column(String(16), nullable=False)  # team, external_team
    entity_id = Column(String(64), nullable=False)
    action = Column(String(32), nullable=False, index=True)  # matched, approved, created, visual_code_backfilled
    previous_state = Column(JSON, nullable=True)
    new_state = Column(JSON, nullable=True)
    match_details = Column(JSON, nullable=True)
    performed_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
    )


class ExternalTeam(Base):
    """A team as named by the external system, with its link to an internal team."""
    __tablename__ = "external_teams"

    id = Column(String(36), primary_key=True, default=new_id)
    tournament_code = Column(String(64), nullable=False, index=True)
    event_code = Column(String(64), nullable=True)
    external_code = Column(String(64), nullable=False)
    external_name = Column(String(255), nullable=False)
    normalized_name = Column(String(255), nullable=True)
    club_name = Column(String(255), nullable=True)
    team_number = Column(Integer, nullable=True)
    gender = Column(String(4), nullable=True)
    strength = Column(Integer, nullable=True)
    country_code = Column(String(3), nullable=True)
    matched_team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    match_score = Column(Float, nullable=True)
    match_type = Column(String(32), nullable=True)
    matched_at = Column(DateTime, nullable=True)
    is_matched = Column(Boolean, nullable=False, default=False, index=True)

    __table_args__ = (
        UniqueConstraint('tournament_code', 'external_code', name='uq_external_teams_tournament_code'),
    )


class TeamMatchingReview(Base):
    """Manual review item for an external team the engine could not link."""
    __tablename__ = "team_matching_reviews"

    id = Column(String(36), primary_key=True, default=new_id)
    tournament_code = Column(String(64), nullable=False, index=True)
    external_team_code = Column(String(64), nullable=False)
    external_team_name = Column(String(255), nullable=False)
    external_team_data = Column(JSON, nullable=True)
    suggestions = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="pending_review", index=True)
    resolved_by = Column(String(64), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolution = Column(String(32), nullable=True)
    resolved_team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('tournament_code', 'external_team_code', name='uq_team_matching_reviews_tournament_team'),
    )
