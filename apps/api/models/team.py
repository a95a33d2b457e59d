"""Team (tenant) model."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Team(Base):
    """Tenant that owns credits, jobs, batches and commerce accounts."""

    __tablename__ = "teams"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    plan_tier = Column(String, nullable=True)  # starter, growth, scale
    overage_enabled = Column(Boolean, nullable=False, default=True)
    overage_limit_cents = Column(Integer, nullable=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    members = relationship("User", back_populates="team")
    credit_periods = relationship("CreditPeriod", back_populates="team")
