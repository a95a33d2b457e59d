"""Connected commerce store account."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.sql import func

from database import Base


class CommerceAccount(Base):
    """External store connection. ``access_token`` is stored encrypted."""

    __tablename__ = "commerce_accounts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    provider = Column(String, nullable=False, default="shopify")
    shop_domain = Column(String, nullable=False)
    access_token = Column(String, nullable=True)
    status = Column(String, nullable=False, default="connected")  # connected, disconnected
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
