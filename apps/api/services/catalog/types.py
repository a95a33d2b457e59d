"""Catalog provider contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class CatalogProviderError(RuntimeError):
    """Raised when the external catalog API rejects or fails a request."""


@dataclass(frozen=True)
class ExternalProductData:
    external_product_id: str
    title: str
    handle: Optional[str] = None
    status: Optional[str] = None
    product_type: Optional[str] = None
    vendor: Optional[str] = None
    tags: Optional[str] = None
    featured_image_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExternalVariantData:
    external_product_id: str
    external_variant_id: str
    title: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[str] = None
    selected_options: List[Dict[str, Any]] = field(default_factory=list)
    featured_image_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CatalogPage:
    products: List[ExternalProductData]
    variants: List[ExternalVariantData]
    next_cursor: Optional[str] = None
