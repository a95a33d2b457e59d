"""Generation job model."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship

from database import Base


class GenerationJob(Base):
    """Single unit of billable generation work."""

    __tablename__ = "generation_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False, index=True)
    variant_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)  # generation, edit
    status = Column(String, nullable=False, default="queued", index=True)
    batch_id = Column(String, ForeignKey("batches.id"), nullable=True, index=True)
    generation_id = Column(String, ForeignKey("generations.id"), nullable=True)
    progress_json = Column(JSON, nullable=True)
    error_message = Column(String, nullable=True)
    payload_json = Column(JSON, nullable=False)
    number_of_variations = Column(Integer, nullable=False, default=1)
    credits_id = Column(String, ForeignKey("credit_periods.id"), nullable=True)
    is_overage = Column(Boolean, nullable=False, default=False)
    retry_of_job_id = Column(String, ForeignKey("generation_jobs.id"), nullable=True, index=True)
    retry_attempt = Column(Integer, nullable=False, default=0)
    queue_job_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    batch = relationship("Batch", back_populates="jobs")
