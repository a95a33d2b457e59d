"""Resumable catalog sync job model."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, JSON, String

from database import Base


class SyncJob(Base):
    """Re-entrant job advanced one page per invocation via a persisted cursor."""

    __tablename__ = "sync_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    account_id = Column(String, ForeignKey("commerce_accounts.id"), nullable=False, index=True)
    provider = Column(String, nullable=False, default="shopify")
    type = Column(String, nullable=False, default="catalog_sync")
    status = Column(String, nullable=False, default="queued", index=True)  # queued, running, success, failed
    progress_json = Column(JSON, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
