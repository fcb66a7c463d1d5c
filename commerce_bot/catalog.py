"""Meta commerce catalog adapter (product lookups by retailer id)."""

import asyncio
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import NamedTuple, Optional

import httpx
from pydantic import BaseModel

from commerce_bot.clients import get_http_client
from commerce_bot.config import config
from commerce_bot.errors import CatalogError, InvalidPriceError

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ",".join([
    "id",
    "retailer_id",
    "name",
    "description",
    "price",
    "currency",
    "image_url",
    "availability",
    "category",
])

IN_STOCK = "in stock"
OUT_OF_STOCK = "out of stock"

_CURRENCY_PREFIX = re.compile(r"^\s*(NGN|USD|EUR|GBP)\s*", re.IGNORECASE)
_CURRENCY_SUFFIX = re.compile(r"\s*(NGN|USD|EUR|GBP)\s*$", re.IGNORECASE)
_CURRENCY_SYMBOLS = re.compile(r"[₦$€£]")


class Product(BaseModel):
    id: str
    retailer_id: str
    name: str
    description: Optional[str] = None
    price: str
    currency: str = "NGN"
    image_url: Optional[str] = None
    availability: str = IN_STOCK
    category: Optional[str] = None

    @property
    def is_purchasable(self) -> bool:
        return self.availability != OUT_OF_STOCK


def normalize_price(raw: Optional[str]) -> str:
    """Strip currency codes, symbols and thousands separators; validate the rest.

    "NGN 1,500.00" -> "1500.00". Raises InvalidPriceError for empty, non-numeric,
    non-finite or non-positive values.
    """
    if raw is None or not str(raw).strip():
        raise InvalidPriceError("Product has a missing or empty price")

    cleaned = str(raw).strip()
    cleaned = _CURRENCY_PREFIX.sub("", cleaned)
    cleaned = _CURRENCY_SUFFIX.sub("", cleaned)
    cleaned = _CURRENCY_SYMBOLS.sub("", cleaned)
    cleaned = cleaned.replace(",", "").strip()

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        raise InvalidPriceError(f"Invalid price value: {raw!r}")

    if not value.is_finite() or value <= 0:
        raise InvalidPriceError(f"Invalid price value: {raw!r}")

    return cleaned


class ProductLookup(NamedTuple):
    """Result of a batch lookup.

    ``missing`` holds ids the catalog does not know (404) or prices unusably;
    ``failed`` holds ids whose fetch failed for any other reason.
    """

    products: dict[str, Product]
    missing: list[str]
    failed: list[str]


class CatalogAPI:
    """Reads products from the WhatsApp Business catalog through the Graph API."""

    def __init__(self, catalog_id: str = None, api_url: str = None, access_token: str = None):
        self.catalog_id = catalog_id if catalog_id is not None else config.WHATSAPP_CATALOG_ID
        self.api_url = api_url or config.WHATSAPP_API_URL
        self.access_token = access_token if access_token is not None else config.WHATSAPP_ACCESS_TOKEN

    @property
    def is_configured(self) -> bool:
        return bool(self.catalog_id)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _get(self, url: str, params: dict = None) -> httpx.Response:
        client = get_http_client()
        try:
            return await client.get(url, headers=self._headers(), params=params)
        except httpx.HTTPError as e:
            logger.error(f"Catalog request failed: {type(e).__name__}")
            raise CatalogError("Failed to fetch product from catalog") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("error", {}).get("message") or response.reason_phrase
        except ValueError:
            return response.reason_phrase

    async def get_product(self, retailer_id: str) -> Optional[Product]:
        """Fetch one product; None when the catalog does not know it."""
        if not self.catalog_id:
            logger.warning("WHATSAPP_CATALOG_ID is not configured, cannot fetch product details")
            raise CatalogError("Catalog is not configured")

        url = f"{self.api_url}/{self.catalog_id}/products/{retailer_id}"
        response = await self._get(url, params={"fields": PRODUCT_FIELDS})

        if response.status_code == 404:
            logger.warning(f"Product with retailer_id {retailer_id} not found")
            return None
        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(f"Failed to fetch product {retailer_id}: {response.status_code} - {message}")
            raise CatalogError(f"Failed to fetch product from catalog: {message}", response.status_code)

        body = response.json()

        if isinstance(body.get("data"), list):
            data = next((p for p in body["data"] if p.get("retailer_id") == retailer_id), None)
            if data is None:
                logger.warning(f"Product with retailer_id {retailer_id} not found in list response")
                return None
            if not (data.get("price") and data.get("name")):
                if not data.get("id"):
                    logger.error(f"Product {retailer_id} found in list but missing required fields")
                    return None
                data = await self._get_product_details(data["id"])
        elif "id" in body or "retailer_id" in body:
            data = body
        else:
            logger.error(f"Unexpected catalog response format for {retailer_id}")
            raise CatalogError("Unexpected response format from catalog API")

        return self._to_product(data, retailer_id)

    async def _get_product_details(self, product_id: str) -> dict:
        response = await self._get(f"{self.api_url}/{product_id}", params={"fields": PRODUCT_FIELDS})
        if response.status_code >= 400:
            logger.error(f"Failed to fetch product details by id {product_id}: {response.status_code}")
            raise CatalogError("Failed to fetch product details from catalog", response.status_code)
        return response.json()

    @staticmethod
    def _to_product(data: dict, retailer_id: str) -> Product:
        try:
            price = normalize_price(data.get("price"))
        except InvalidPriceError as e:
            logger.error(f"Product {retailer_id} has invalid price in catalog: {data.get('price')!r}")
            raise InvalidPriceError(f"Product {retailer_id} has invalid price in catalog: {data.get('price')}") from e

        return Product(
            id=data.get("id") or retailer_id,
            retailer_id=data.get("retailer_id") or retailer_id,
            name=data.get("name") or "Unknown Product",
            description=data.get("description"),
            price=price,
            currency=data.get("currency") or "NGN",
            image_url=data.get("image_url"),
            availability=data.get("availability") or IN_STOCK,
            category=data.get("category"),
        )

    async def get_products(self, retailer_ids: list[str]) -> ProductLookup:
        """Fetch many products concurrently.

        Ids the catalog does not know, or prices unusably, land in ``missing``.
        Transport failures, server errors and an unconfigured catalog land in
        ``failed`` so callers can tell "gone" from "unknown right now".
        """
        unique_ids = list(dict.fromkeys(retailer_ids))
        results = await asyncio.gather(
            *(self.get_product(rid) for rid in unique_ids),
            return_exceptions=True,
        )

        lookup = ProductLookup(products={}, missing=[], failed=[])
        for retailer_id, result in zip(unique_ids, results):
            if result is None or isinstance(result, InvalidPriceError):
                lookup.missing.append(retailer_id)
            elif isinstance(result, Exception):
                logger.warning(f"Failed to fetch product {retailer_id}: {result}")
                lookup.failed.append(retailer_id)
            else:
                lookup.products[retailer_id] = result
        return lookup

    async def list_products(self, limit: int = 30) -> list[Product]:
        """List purchasable catalog products for the browse menu."""
        if not self.catalog_id:
            raise CatalogError("Catalog is not configured")

        response = await self._get(
            f"{self.api_url}/{self.catalog_id}/products",
            params={"fields": PRODUCT_FIELDS, "limit": limit},
        )
        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(f"Failed to list catalog products: {response.status_code} - {message}")
            raise CatalogError(f"Failed to list catalog products: {message}", response.status_code)

        products = []
        for data in response.json().get("data", []):
            retailer_id = data.get("retailer_id")
            if not retailer_id:
                continue
            try:
                product = self._to_product(data, retailer_id)
            except CatalogError:
                continue
            if product.is_purchasable:
                products.append(product)
        return products
