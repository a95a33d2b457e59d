"""Mirror of an external store's catalog, upserted by the sync runner."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, JSON, String, UniqueConstraint
from sqlalchemy.sql import func

from database import Base


class ExternalProduct(Base):
    __tablename__ = "external_products"
    __table_args__ = (UniqueConstraint("account_id", "external_product_id", name="uq_external_products_account_ext"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    account_id = Column(String, ForeignKey("commerce_accounts.id"), nullable=False, index=True)
    external_product_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    handle = Column(String, nullable=True)
    status = Column(String, nullable=True)
    product_type = Column(String, nullable=True)
    vendor = Column(String, nullable=True)
    tags = Column(String, nullable=True)
    featured_image_url = Column(String, nullable=True)
    raw_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class ExternalVariant(Base):
    __tablename__ = "external_variants"
    __table_args__ = (UniqueConstraint("account_id", "external_variant_id", name="uq_external_variants_account_ext"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    account_id = Column(String, ForeignKey("commerce_accounts.id"), nullable=False, index=True)
    external_product_id = Column(String, nullable=False, index=True)
    external_variant_id = Column(String, nullable=False)
    title = Column(String, nullable=True)
    sku = Column(String, nullable=True)
    price = Column(String, nullable=True)
    selected_options_json = Column(JSON, nullable=True)
    featured_image_url = Column(String, nullable=True)
    raw_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
