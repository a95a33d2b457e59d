"""UsageRecord model: append-only ledger of deductions and refunds."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base


class UsageRecord(Base):
    """Immutable usage entry. Refunds carry negative ``credits_used``."""

    __tablename__ = "usage_records"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)
    credit_period_id = Column(String, ForeignKey("credit_periods.id"), nullable=False, index=True)
    usage_type = Column(String, nullable=False)  # image, text
    credits_used = Column(Integer, nullable=False)
    is_overage = Column(Boolean, nullable=False, default=False)
    reference_type = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    credit_period = relationship("CreditPeriod", back_populates="usage_records")
