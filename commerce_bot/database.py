"""Supabase repositories for users, cart rows, orders and order items."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from supabase import Client

from commerce_bot.clients import get_supabase

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseRepository:
    """Shared access to the lazily created Supabase client."""

    table_name: str = ""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def db(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def table(self):
        return self.db.table(self.table_name)


# ============================================================
# USERS
# ============================================================
class UserRepository(SupabaseRepository):
    table_name = "users"

    async def find_by_phone(self, phone_number: str) -> Optional[dict]:
        try:
            result = self.table().select("*").eq("phone_number", phone_number).limit(1).execute()
        except Exception as e:
            logger.error(f"Database error while finding user by phone: {type(e).__name__}: {e}")
            raise
        return result.data[0] if result.data else None

    async def find_by_email(self, email: str) -> Optional[dict]:
        try:
            result = self.table().select("id").eq("email", email).limit(1).execute()
        except Exception as e:
            logger.error(f"Database error while finding user by email: {type(e).__name__}: {e}")
            raise
        return result.data[0] if result.data else None

    async def exists_by_phone(self, phone_number: str) -> bool:
        return await self.find_by_phone(phone_number) is not None

    async def create(self, fields: dict) -> dict:
        record = {
            "id": str(uuid.uuid4()),
            "phone_number": fields["phone_number"],
            "business_name": fields["business_name"],
            "contact_person": fields["contact_person"],
            "email": fields["email"],
            "address": fields.get("address"),
            "nature_of_business": fields.get("nature_of_business"),
            "registration_number": fields.get("registration_number"),
            "created_at": _now(),
            "updated_at": _now(),
        }
        try:
            result = self.table().insert(record).execute()
        except Exception as e:
            logger.error(f"Database error while creating user: {type(e).__name__}: {e}")
            raise
        logger.info(f"New user created: {record['phone_number']}")
        return result.data[0] if result.data else record


# ============================================================
# CART
# ============================================================
class CartRepository(SupabaseRepository):
    table_name = "cart"

    async def list_by_user(self, user_id: str) -> list[dict]:
        try:
            result = self.table().select("*").eq("user_id", user_id).execute()
        except Exception as e:
            logger.error(f"Database error while listing cart: {type(e).__name__}: {e}")
            raise
        return result.data or []

    async def upsert_item(self, user_id: str, product_retailer_id: str, quantity: int) -> None:
        """Add quantity to an existing line, or insert a new one."""
        try:
            existing = self.table()\
                .select("id,quantity")\
                .eq("user_id", user_id)\
                .eq("product_retailer_id", product_retailer_id)\
                .limit(1)\
                .execute()
            if existing.data:
                row = existing.data[0]
                self.table().update({
                    "quantity": row["quantity"] + quantity,
                    "updated_at": _now(),
                }).eq("id", row["id"]).execute()
            else:
                self.table().insert({
                    "id": str(uuid.uuid4()),
                    "user_id": user_id,
                    "product_retailer_id": product_retailer_id,
                    "quantity": quantity,
                    "created_at": _now(),
                    "updated_at": _now(),
                }).execute()
        except Exception as e:
            logger.error(f"Database error while adding item to cart: {type(e).__name__}: {e}")
            raise

    async def update_quantity(self, user_id: str, product_retailer_id: str, quantity: int) -> None:
        try:
            self.table().update({"quantity": quantity, "updated_at": _now()})\
                .eq("user_id", user_id)\
                .eq("product_retailer_id", product_retailer_id)\
                .execute()
        except Exception as e:
            logger.error(f"Database error while updating cart item: {type(e).__name__}: {e}")
            raise

    async def remove_item(self, user_id: str, product_retailer_id: str) -> None:
        try:
            self.table().delete()\
                .eq("user_id", user_id)\
                .eq("product_retailer_id", product_retailer_id)\
                .execute()
        except Exception as e:
            logger.error(f"Database error while removing cart item: {type(e).__name__}: {e}")
            raise

    async def clear(self, user_id: str) -> None:
        try:
            self.table().delete().eq("user_id", user_id).execute()
        except Exception as e:
            logger.error(f"Database error while clearing cart: {type(e).__name__}: {e}")
            raise


# ============================================================
# ORDERS
# ============================================================
class OrderRepository(SupabaseRepository):
    table_name = "orders"

    async def create(
        self,
        user_id: str,
        total_amount: str,
        delivery_address: str,
        payment_link: Optional[str] = None,
    ) -> dict:
        record = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "total_amount": total_amount,
            "status": "PENDING",
            "payment_status": "PENDING",
            "delivery_address": delivery_address,
            "payment_link": payment_link,
            "created_at": _now(),
            "updated_at": _now(),
        }
        result = self.table().insert(record).execute()
        order = result.data[0] if result.data else record
        logger.info(f"Order created: {order['id']} for user {user_id}")
        return order

    async def find_by_id(self, order_id: str) -> Optional[dict]:
        result = self.table().select("*").eq("id", order_id).limit(1).execute()
        return result.data[0] if result.data else None

    async def find_by_user_id(self, user_id: str) -> list[dict]:
        result = self.table()\
            .select("*")\
            .eq("user_id", user_id)\
            .order("created_at", desc=True)\
            .execute()
        return result.data or []

    async def add_item(
        self,
        order_id: str,
        product_retailer_id: str,
        product_name: str,
        unit_price: str,
        quantity: int,
        subtotal: str,
    ) -> None:
        self.db.table("order_items").insert({
            "id": str(uuid.uuid4()),
            "order_id": order_id,
            "product_retailer_id": product_retailer_id,
            "product_name": product_name,
            "product_price": unit_price,
            "quantity": quantity,
            "price": unit_price,
            "subtotal": subtotal,
        }).execute()

    async def get_items(self, order_id: str) -> list[dict]:
        result = self.db.table("order_items").select("*").eq("order_id", order_id).execute()
        return result.data or []

    async def _update(self, order_id: str, fields: dict) -> None:
        fields["updated_at"] = _now()
        self.table().update(fields).eq("id", order_id).execute()

    async def update_status(self, order_id: str, status: str) -> None:
        await self._update(order_id, {"status": status})

    async def update_payment_status(self, order_id: str, payment_status: str) -> None:
        await self._update(order_id, {"payment_status": payment_status})

    async def update_payment_link(self, order_id: str, payment_link: str) -> None:
        await self._update(order_id, {"payment_link": payment_link})
