"""CreditPeriod model: one credit allotment per team per billing cycle."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CreditPeriod(Base):
    """Included allotment and usage counters for a billing window."""

    __tablename__ = "credit_periods"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    period_start = Column(DateTime(timezone=True), nullable=False, index=True)
    period_end = Column(DateTime(timezone=True), nullable=False, index=True)
    image_included = Column(Integer, nullable=False, default=0)
    image_used = Column(Integer, nullable=False, default=0)
    image_overage_used = Column(Integer, nullable=False, default=0)
    text_included = Column(Integer, nullable=False, default=0)
    text_used = Column(Integer, nullable=False, default=0)
    text_overage_used = Column(Integer, nullable=False, default=0)
    stripe_subscription_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    team = relationship("Team", back_populates="credit_periods")
    usage_records = relationship("UsageRecord", back_populates="credit_period")
