"""Generation output models."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base


class Generation(Base):
    """Output set produced by one successful generation job."""

    __tablename__ = "generations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    job_id = Column(String, nullable=False, index=True)
    variant_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="ready")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    images = relationship("GeneratedImage", back_populates="generation", cascade="all, delete-orphan")


class GeneratedImage(Base):
    """Single image artifact belonging to a generation."""

    __tablename__ = "generated_images"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    generation_id = Column(String, ForeignKey("generations.id"), nullable=False, index=True)
    url = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    generation = relationship("Generation", back_populates="images")
