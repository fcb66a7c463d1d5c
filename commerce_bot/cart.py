"""Cart engine: per-user lines recomputed against the live catalog on every read."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel

from commerce_bot.catalog import CatalogAPI, Product
from commerce_bot.database import CartRepository
from commerce_bot.errors import CatalogError, ProductNotFoundError, ProductUnavailableError

logger = logging.getLogger(__name__)


class CartLine(BaseModel):
    id: Optional[str] = None
    product_retailer_id: str
    quantity: int
    product: Product
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class CartSummary(BaseModel):
    items: list[CartLine] = []
    total_amount: Decimal = Decimal("0")
    item_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.items


def _valid_price(product: Product) -> Optional[Decimal]:
    try:
        price = Decimal(str(product.price))
    except InvalidOperation:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


class CartService:
    def __init__(self, repository: CartRepository = None, catalog: CatalogAPI = None):
        self.repository = repository or CartRepository()
        self.catalog = catalog or CatalogAPI()

    async def get_cart(self, user_id: str) -> CartSummary:
        """Compute the cart summary, dropping lines whose product vanished or has a bad price.

        Dropped lines are deleted from storage so the next read yields the same subset.
        Raises CatalogError, leaving every line in place, when any lookup failed for
        another reason (outage, timeout, unconfigured catalog).
        """
        rows = await self.repository.list_by_user(user_id)
        lookup = await self.catalog.get_products([row["product_retailer_id"] for row in rows])
        if lookup.failed:
            logger.error(f"Catalog lookup failed for {len(lookup.failed)} cart items of user {user_id}")
            raise CatalogError("Could not load your cart items from the catalog. Please try again shortly.")

        summary = CartSummary()
        invalid_ids = []

        for row in rows:
            retailer_id = row["product_retailer_id"]
            product = lookup.products.get(retailer_id)
            if product is None:
                logger.warning(f"Product {retailer_id} not found in catalog, marking for removal")
                invalid_ids.append(retailer_id)
                continue

            price = _valid_price(product)
            if price is None:
                logger.warning(f"Product {retailer_id} has invalid price: {product.price}, marking for removal")
                invalid_ids.append(retailer_id)
                continue

            line = CartLine(
                id=row.get("id"),
                product_retailer_id=retailer_id,
                quantity=int(row["quantity"]),
                product=product,
                unit_price=price,
            )
            summary.items.append(line)
            summary.total_amount += line.subtotal
            summary.item_count += line.quantity

        if invalid_ids:
            logger.info(f"Removing {len(invalid_ids)} invalid cart items for user {user_id}")
            for retailer_id in dict.fromkeys(invalid_ids):
                await self.repository.remove_item(user_id, retailer_id)

        logger.info(
            f"Cart summary: {len(summary.items)} valid items, "
            f"total={summary.total_amount}, count={summary.item_count}"
        )
        return summary

    async def add_item(self, user_id: str, product_retailer_id: str, quantity: int = 1) -> Product:
        """Validate the product against the catalog, then write it to the cart."""
        product = await self.catalog.get_product(product_retailer_id)
        if product is None:
            raise ProductNotFoundError(product_retailer_id)
        if not product.is_purchasable:
            raise ProductUnavailableError(product_retailer_id, product.availability)

        await self.repository.upsert_item(user_id, product_retailer_id, quantity)
        return product

    async def update_item(self, user_id: str, product_retailer_id: str, quantity: int) -> None:
        if quantity <= 0:
            await self.repository.remove_item(user_id, product_retailer_id)
        else:
            await self.repository.update_quantity(user_id, product_retailer_id, quantity)

    async def remove_item(self, user_id: str, product_retailer_id: str) -> None:
        await self.repository.remove_item(user_id, product_retailer_id)

    async def clear(self, user_id: str) -> None:
        await self.repository.clear(user_id)
