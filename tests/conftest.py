"""Shared fixtures: in-memory stores, a fake catalog and a recording WhatsApp client."""

import base64
import itertools
import json
import os
from typing import Optional

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from commerce_bot.cache import Cache
from commerce_bot.cart import CartService
from commerce_bot.catalog import Product, ProductLookup
from commerce_bot.chatbot import ChatbotService, WebhookProcessor
from commerce_bot.errors import CatalogError, PaymentError
from commerce_bot.flows import CartFlow, OnboardingFlow, OrderFlow
from commerce_bot.orders import OrderService
from commerce_bot.payments import PaymentVerification
from commerce_bot.sessions import SessionStore
from commerce_bot.users import UserService

PHONE = "+2348012345678"


def make_product(retailer_id: str, price: str = "1500.00", name: str = None, availability: str = "in stock") -> Product:
    return Product(
        id=f"fb-{retailer_id}",
        retailer_id=retailer_id,
        name=name or f"Product {retailer_id}",
        price=price,
        availability=availability,
    )


def encrypt_envelope(public_key, payload: dict, aes_key: bytes = None, iv: bytes = None):
    """Build a Flow request envelope the way the WhatsApp client does."""
    aes_key = aes_key or os.urandom(16)
    iv = iv or os.urandom(16)
    wrapped = public_key.encrypt(
        aes_key,
        padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
    )
    body = AESGCM(aes_key).encrypt(iv, json.dumps(payload).encode(), None)
    envelope = {
        "encrypted_aes_key": base64.b64encode(wrapped).decode(),
        "encrypted_flow_data": base64.b64encode(body).decode(),
        "initial_vector": base64.b64encode(iv).decode(),
    }
    return envelope, aes_key, iv


# ============================================================
# FAKE STORES
# ============================================================
class FakeUserRepository:
    def __init__(self):
        self.users: dict[str, dict] = {}
        self._ids = itertools.count(1)
        self.fail_create = False

    async def find_by_phone(self, phone_number: str) -> Optional[dict]:
        return self.users.get(phone_number)

    async def find_by_email(self, email: str) -> Optional[dict]:
        for user in self.users.values():
            if user.get("email") == email:
                return {"id": user["id"]}
        return None

    async def exists_by_phone(self, phone_number: str) -> bool:
        return phone_number in self.users

    async def create(self, fields: dict) -> dict:
        if self.fail_create:
            raise RuntimeError("insert failed")
        user = {"id": f"user-{next(self._ids)}", **fields}
        self.users[fields["phone_number"]] = user
        return user


class FakeCartRepository:
    def __init__(self):
        self.rows: dict[str, dict[str, int]] = {}
        self.removed: list[tuple[str, str]] = []

    async def list_by_user(self, user_id: str) -> list[dict]:
        return [
            {"id": f"{user_id}-{rid}", "user_id": user_id, "product_retailer_id": rid, "quantity": qty}
            for rid, qty in self.rows.get(user_id, {}).items()
        ]

    async def upsert_item(self, user_id: str, product_retailer_id: str, quantity: int) -> None:
        cart = self.rows.setdefault(user_id, {})
        cart[product_retailer_id] = cart.get(product_retailer_id, 0) + quantity

    async def update_quantity(self, user_id: str, product_retailer_id: str, quantity: int) -> None:
        self.rows.setdefault(user_id, {})[product_retailer_id] = quantity

    async def remove_item(self, user_id: str, product_retailer_id: str) -> None:
        self.removed.append((user_id, product_retailer_id))
        self.rows.get(user_id, {}).pop(product_retailer_id, None)

    async def clear(self, user_id: str) -> None:
        self.rows.pop(user_id, None)


class FakeOrderRepository:
    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.items: dict[str, list[dict]] = {}
        self._ids = itertools.count(1)
        self.fail_add_item_after: Optional[int] = None

    async def create(self, user_id, total_amount, delivery_address, payment_link=None) -> dict:
        order_id = f"order-{next(self._ids)}"
        row = {
            "id": order_id,
            "user_id": user_id,
            "total_amount": total_amount,
            "status": "PENDING",
            "payment_status": "PENDING",
            "delivery_address": delivery_address,
            "payment_link": payment_link,
            "created_at": "2026-01-05T10:00:00Z",
        }
        self.orders[order_id] = row
        self.items[order_id] = []
        return row

    async def find_by_id(self, order_id: str) -> Optional[dict]:
        return self.orders.get(order_id)

    async def find_by_user_id(self, user_id: str) -> list[dict]:
        return [row for row in self.orders.values() if row["user_id"] == user_id]

    async def add_item(self, order_id, product_retailer_id, product_name, product_price, quantity, subtotal) -> None:
        if self.fail_add_item_after is not None and len(self.items[order_id]) >= self.fail_add_item_after:
            raise RuntimeError("order item insert failed")
        self.items[order_id].append(
            {
                "product_retailer_id": product_retailer_id,
                "product_name": product_name,
                "product_price": product_price,
                "quantity": quantity,
                "subtotal": subtotal,
            }
        )

    async def get_items(self, order_id: str) -> list[dict]:
        return list(self.items.get(order_id, []))

    async def update_status(self, order_id: str, status: str) -> None:
        self.orders[order_id]["status"] = status

    async def update_payment_status(self, order_id: str, payment_status: str) -> None:
        self.orders[order_id]["payment_status"] = payment_status

    async def update_payment_link(self, order_id: str, payment_link: str) -> None:
        self.orders[order_id]["payment_link"] = payment_link


# ============================================================
# FAKE ADAPTERS
# ============================================================
class FakeCatalog:
    def __init__(self, products: list[Product] = None, catalog_id: str = "catalog-1"):
        self.products = {p.retailer_id: p for p in products or []}
        self.catalog_id = catalog_id
        self.list_error: Optional[Exception] = None
        self.fail_ids: set[str] = set()

    @property
    def is_configured(self) -> bool:
        return bool(self.catalog_id)

    async def get_product(self, retailer_id: str) -> Optional[Product]:
        if retailer_id in self.fail_ids:
            raise CatalogError("Failed to fetch product from catalog: Service Unavailable", 503)
        return self.products.get(retailer_id)

    async def get_products(self, retailer_ids: list[str]) -> ProductLookup:
        lookup = ProductLookup(products={}, missing=[], failed=[])
        for rid in dict.fromkeys(retailer_ids):
            if rid in self.fail_ids:
                lookup.failed.append(rid)
            elif rid in self.products:
                lookup.products[rid] = self.products[rid]
            else:
                lookup.missing.append(rid)
        return lookup

    async def list_products(self, limit: int = 30) -> list[Product]:
        if self.list_error:
            raise self.list_error
        return [p for p in self.products.values() if p.is_purchasable][:limit]


class FakePayments:
    def __init__(self):
        self.links: list[tuple] = []
        self.fail = False
        self.verification = PaymentVerification(amount="1500.00", status="success")

    async def generate_payment_link(self, order_id, amount, email, metadata=None) -> str:
        if self.fail:
            raise PaymentError("Paystack is unavailable")
        self.links.append((order_id, amount, email, metadata))
        return f"https://pay.test/{order_id}"

    async def verify_payment(self, reference: str) -> PaymentVerification:
        return self.verification


class FakeWhatsApp:
    def __init__(self):
        self.sent = []
        self.documents = []
        self.typing = []
        self.fail_documents = False
        self.fail_sends = False

    async def send_message(self, message) -> str:
        if self.fail_sends:
            raise RuntimeError("send failed")
        self.sent.append(message)
        return f"wamid.{len(self.sent)}"

    async def send_document(self, to, filename, content, mime_type="application/pdf", caption=None) -> str:
        if self.fail_documents:
            raise RuntimeError("upload failed")
        self.documents.append({"to": to, "filename": filename, "content": content, "caption": caption})
        return "wamid.doc"

    async def send_typing(self, to, message_id) -> None:
        self.typing.append((to, message_id))


# ============================================================
# FIXTURES
# ============================================================
@pytest.fixture(scope="session")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def user_repo():
    return FakeUserRepository()


@pytest.fixture
def cart_repo():
    return FakeCartRepository()


@pytest.fixture
def order_repo():
    return FakeOrderRepository()


@pytest.fixture
def catalog():
    return FakeCatalog([make_product("abc123", "1500.00", "Rice 50kg"), make_product("def456", "250.50", "Palm Oil")])


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def whatsapp():
    return FakeWhatsApp()


@pytest.fixture
def user_service(user_repo):
    return UserService(user_repo, Cache())


@pytest.fixture
def cart_service(cart_repo, catalog):
    return CartService(cart_repo, catalog)


@pytest.fixture
def order_service(order_repo, cart_service):
    return OrderService(order_repo, cart_service)


@pytest.fixture
def onboarding():
    return OnboardingFlow(flow_id="flow-1", brand_name="Test Store")


@pytest.fixture
def sessions():
    return SessionStore(ttl_minutes=30)


@pytest.fixture
def order_flow(order_service, user_service, payments, whatsapp, onboarding):
    return OrderFlow(order_service, user_service, payments, whatsapp, onboarding)


@pytest.fixture
def chatbot(user_service, cart_service, sessions, onboarding, catalog, order_flow):
    return ChatbotService(
        user_service,
        cart_service,
        sessions,
        onboarding,
        CartFlow(cart_service, catalog),
        order_flow,
        min_address_length=10,
    )


@pytest.fixture
def processor(chatbot, whatsapp):
    return WebhookProcessor(chatbot, whatsapp, Cache())


@pytest.fixture
def registered_user(user_repo):
    user = {
        "id": "user-42",
        "phone_number": PHONE,
        "business_name": "Ada Stores",
        "contact_person": "Ada Obi",
        "email": "ada@example.com",
        "address": None,
    }
    user_repo.users[PHONE] = user
    return user
