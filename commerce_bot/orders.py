"""Order engine: immutable orders snapshotted from the cart."""

import logging
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from commerce_bot.cart import CartService
from commerce_bot.database import OrderRepository
from commerce_bot.errors import EmptyCartError, InvalidCartTotalError

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


def to_amount_string(value: Decimal) -> str:
    return str(Decimal(value).quantize(TWO_PLACES))


class OrderItem(BaseModel):
    id: Optional[str] = None
    product_retailer_id: str
    product_name: str
    product_price: Decimal
    quantity: int
    subtotal: Decimal


class Order(BaseModel):
    id: str
    user_id: str
    total_amount: str
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    delivery_address: Optional[str] = None
    payment_link: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    items: list[OrderItem] = []

    @property
    def total(self) -> Decimal:
        return Decimal(self.total_amount)

    @classmethod
    def from_rows(cls, row: dict, item_rows: list[dict]) -> "Order":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            total_amount=str(row["total_amount"]),
            status=row.get("status") or OrderStatus.PENDING,
            payment_status=row.get("payment_status") or PaymentStatus.PENDING,
            delivery_address=row.get("delivery_address"),
            payment_link=row.get("payment_link"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            items=[
                OrderItem(
                    id=item.get("id"),
                    product_retailer_id=item["product_retailer_id"],
                    product_name=item["product_name"],
                    product_price=Decimal(str(item["product_price"])),
                    quantity=int(item["quantity"]),
                    subtotal=Decimal(str(item["subtotal"])),
                )
                for item in item_rows
            ],
        )


class OrderService:
    def __init__(self, repository: OrderRepository = None, cart_service: CartService = None):
        self.repository = repository or OrderRepository()
        self.cart_service = cart_service or CartService()

    async def create_from_cart(self, user_id: str, delivery_address: str) -> Order:
        """Snapshot the user's valid cart lines into a new order and empty the cart."""
        cart = await self.cart_service.get_cart(user_id)

        if cart.is_empty:
            raise EmptyCartError()
        if not cart.total_amount.is_finite() or cart.total_amount <= 0:
            raise InvalidCartTotalError(cart.total_amount)

        row = await self.repository.create(
            user_id,
            to_amount_string(cart.total_amount),
            delivery_address,
            None,
        )

        try:
            for line in cart.items:
                await self.repository.add_item(
                    row["id"],
                    line.product_retailer_id,
                    line.product.name,
                    to_amount_string(line.unit_price),
                    line.quantity,
                    to_amount_string(line.subtotal),
                )
        except Exception as e:
            # cart is left intact
            logger.error(f"Failed to write items for order {row['id']}, cancelling it: {type(e).__name__}: {e}")
            await self.update_status(row["id"], OrderStatus.CANCELLED)
            raise

        await self.cart_service.clear(user_id)

        order = await self.find_by_id(row["id"])
        logger.info(f"✅ Order {order.id} created from cart: total={order.total_amount}, lines={len(order.items)}")
        return order

    async def find_by_id(self, order_id: str) -> Optional[Order]:
        row = await self.repository.find_by_id(order_id)
        if row is None:
            return None
        items = await self.repository.get_items(order_id)
        return Order.from_rows(row, items)

    async def find_by_user_id(self, user_id: str) -> list[dict]:
        return await self.repository.find_by_user_id(user_id)

    async def update_status(self, order_id: str, status: OrderStatus) -> None:
        await self.repository.update_status(order_id, OrderStatus(status).value)

    async def update_payment_status(self, order_id: str, payment_status: PaymentStatus) -> None:
        await self.repository.update_payment_status(order_id, PaymentStatus(payment_status).value)

    async def update_payment_link(self, order_id: str, payment_link: str) -> None:
        await self.repository.update_payment_link(order_id, payment_link)

    async def mark_paid(self, order_id: str) -> None:
        await self.update_payment_status(order_id, PaymentStatus.PAID)
        await self.update_status(order_id, OrderStatus.CONFIRMED)
