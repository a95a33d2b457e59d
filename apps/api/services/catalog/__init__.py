"""Public catalog provider utilities."""

from services.catalog.providers import (
    BaseCatalogProvider,
    ShopifyCatalogProvider,
    get_catalog_provider,
    parse_products_page,
)
from services.catalog.types import (
    CatalogPage,
    CatalogProviderError,
    ExternalProductData,
    ExternalVariantData,
)

__all__ = [
    "BaseCatalogProvider",
    "CatalogPage",
    "CatalogProviderError",
    "ExternalProductData",
    "ExternalVariantData",
    "ShopifyCatalogProvider",
    "get_catalog_provider",
    "parse_products_page",
]
