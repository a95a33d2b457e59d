"""Catalog provider abstraction and the Shopify Admin GraphQL implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from config import settings
from models.commerce_account import CommerceAccount
from services.catalog.types import (
    CatalogPage,
    CatalogProviderError,
    ExternalProductData,
    ExternalVariantData,
)
from services.crypto import decrypt_token

FETCH_PRODUCTS_QUERY = """
query FetchProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        handle
        status
        productType
        vendor
        tags
        featuredMedia { preview { image { url } } }
        variants(first: 100) {
          edges {
            node {
              id
              title
              sku
              price
              selectedOptions { name value }
              image { url }
            }
          }
        }
      }
    }
  }
}
"""


class BaseCatalogProvider(ABC):
    provider_name: str

    @abstractmethod
    async def fetch_page(self, cursor: Optional[str], limit: int) -> CatalogPage:
        raise NotImplementedError


def _featured_url(product: Dict[str, Any]) -> Optional[str]:
    media = product.get("featuredMedia") or {}
    image = (media.get("preview") or {}).get("image") or {}
    return image.get("url")


def parse_products_page(data: Dict[str, Any]) -> CatalogPage:
    """Map a GraphQL ``products`` connection into a catalog page."""
    connection = (data or {}).get("products")
    if not connection:
        raise CatalogProviderError("Failed to fetch products from Shopify")

    products: List[ExternalProductData] = []
    variants: List[ExternalVariantData] = []
    for edge in connection.get("edges") or []:
        node = edge.get("node") or {}
        product_image = _featured_url(node)
        tags = node.get("tags")
        products.append(
            ExternalProductData(
                external_product_id=node["id"],
                title=node.get("title") or "",
                handle=node.get("handle"),
                status=(node.get("status") or "").lower() or None,
                product_type=node.get("productType"),
                vendor=node.get("vendor"),
                tags=", ".join(tags) if isinstance(tags, list) else tags,
                featured_image_url=product_image,
                raw=node,
            )
        )
        for variant_edge in (node.get("variants") or {}).get("edges") or []:
            variant = variant_edge.get("node") or {}
            variants.append(
                ExternalVariantData(
                    external_product_id=node["id"],
                    external_variant_id=variant["id"],
                    title=variant.get("title"),
                    sku=variant.get("sku") or None,
                    price=variant.get("price"),
                    selected_options=variant.get("selectedOptions") or [],
                    featured_image_url=(variant.get("image") or {}).get("url") or product_image,
                    raw=variant,
                )
            )

    page_info = connection.get("pageInfo") or {}
    next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
    return CatalogPage(products=products, variants=variants, next_cursor=next_cursor)


class ShopifyCatalogProvider(BaseCatalogProvider):
    provider_name = "shopify"

    def __init__(self, shop_domain: str, access_token: str, *, api_version: str, timeout: float = 30.0):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"

    async def fetch_page(self, cursor: Optional[str], limit: int) -> CatalogPage:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.endpoint,
                headers={"X-Shopify-Access-Token": self.access_token},
                json={"query": FETCH_PRODUCTS_QUERY, "variables": {"first": int(limit), "after": cursor}},
            )
        if response.status_code >= 400:
            raise CatalogProviderError(f"Shopify API error {response.status_code}: {response.text[:300]}")
        body = response.json()
        if body.get("errors"):
            first = body["errors"][0]
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise CatalogProviderError(f"Shopify GraphQL error: {message}")
        return parse_products_page(body.get("data") or {})


def get_catalog_provider(account: CommerceAccount) -> BaseCatalogProvider:
    if account.provider != "shopify":
        raise CatalogProviderError(f"Unsupported commerce provider: {account.provider}")
    if not account.access_token:
        raise CatalogProviderError("Commerce account has no access token. Reconnect the store.")
    return ShopifyCatalogProvider(
        account.shop_domain,
        decrypt_token(account.access_token),
        api_version=settings.SHOPIFY_API_VERSION,
    )
