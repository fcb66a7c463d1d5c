"""Dialogue controller scenarios: menu, cart buttons, checkout sessions and native orders."""

import pytest

from commerce_bot.chatbot import GENERIC_FAILURE_REPLY
from commerce_bot.errors import CatalogError
from commerce_bot.flows.order import EMPTY_CART_REPLY
from commerce_bot.messages import CatalogMessage, InboundMessage, InteractiveMessage, TextMessage
from commerce_bot.sessions import ConversationState

from conftest import PHONE, make_product


def text_message(body: str, message_id: str = "wamid.text") -> InboundMessage:
    return InboundMessage.model_validate(
        {"from": PHONE, "id": message_id, "type": "text", "text": {"body": body}}
    )


def button_message(reply_id: str, message_id: str = "wamid.button", context: dict = None) -> InboundMessage:
    raw = {
        "from": PHONE,
        "id": message_id,
        "type": "interactive",
        "interactive": {"type": "button_reply", "button_reply": {"id": reply_id, "title": "x"}},
    }
    if context:
        raw["context"] = context
    return InboundMessage.model_validate(raw)


def order_message(*items: tuple[str, int]) -> InboundMessage:
    return InboundMessage.model_validate(
        {
            "from": PHONE,
            "id": "wamid.order",
            "type": "order",
            "order": {
                "catalog_id": "catalog-1",
                "product_items": [
                    {"product_retailer_id": rid, "quantity": qty, "item_price": 1500, "currency": "NGN"}
                    for rid, qty in items
                ],
            },
        }
    )


class TestOnboardingGate:
    """Unknown phone numbers are always sent the onboarding flow."""

    @pytest.mark.asyncio
    async def test_text_from_unknown_user_gets_onboarding_flow(self, chatbot):
        replies = await chatbot.process_message(text_message("hi"), PHONE)

        assert len(replies) == 1
        assert isinstance(replies[0], InteractiveMessage)
        assert replies[0].kind == "flow"

    @pytest.mark.asyncio
    async def test_button_from_unknown_user_gets_onboarding_flow(self, chatbot):
        replies = await chatbot.process_message(button_message("view_cart"), PHONE)
        assert replies[0].kind == "flow"


class TestMainMenu:
    @pytest.mark.asyncio
    async def test_option_one_shows_product_list(self, chatbot, registered_user):
        replies = await chatbot.process_message(text_message("1"), PHONE)

        assert len(replies) == 1
        assert replies[0].kind == "list"

    @pytest.mark.asyncio
    async def test_stub_options_reply_with_coming_soon_and_menu(self, chatbot, registered_user):
        replies = await chatbot.process_message(text_message("2"), PHONE)

        assert len(replies) == 2
        assert "coming soon" in replies[0].body
        assert "Please reply with the number" in replies[1].body

    @pytest.mark.asyncio
    async def test_unrecognised_text_reshows_menu(self, chatbot, registered_user):
        replies = await chatbot.process_message(text_message("hello there"), PHONE)

        assert len(replies) == 1
        assert "*1.* Place your orders quickly" in replies[0].body

    @pytest.mark.asyncio
    async def test_large_catalog_uses_compact_buttons(self, chatbot, catalog, registered_user):
        for i in range(12):
            catalog.products[f"sku{i}"] = make_product(f"sku{i}")

        replies = await chatbot.process_message(text_message("1"), PHONE)

        assert replies[0].kind == "button"
        assert replies[0].button_ids[-1] == "view_all_products"
        assert len(replies[0].button_ids) == 3

    @pytest.mark.asyncio
    async def test_catalog_listing_failure_falls_back_to_catalog_message(self, chatbot, catalog, registered_user):
        catalog.list_error = CatalogError("boom")
        replies = await chatbot.process_message(text_message("1"), PHONE)

        assert isinstance(replies[0], CatalogMessage)


class TestCartButtons:
    @pytest.mark.asyncio
    async def test_product_button_adds_to_cart(self, chatbot, cart_repo, registered_user):
        replies = await chatbot.process_message(button_message("product:abc123"), PHONE)

        assert cart_repo.rows[registered_user["id"]] == {"abc123": 1}
        assert "1x Rice 50kg added to cart" in replies[0].body_text
        assert replies[0].button_ids == ["view_cart", "browse_products"]

    @pytest.mark.asyncio
    async def test_legacy_product_button_id_still_works(self, chatbot, cart_repo, registered_user):
        await chatbot.process_message(button_message("product_abc123"), PHONE)
        assert cart_repo.rows[registered_user["id"]] == {"abc123": 1}

    @pytest.mark.asyncio
    async def test_referred_product_context_adds_that_product(self, chatbot, cart_repo, registered_user):
        context = {"referred_product": {"catalog_id": "catalog-1", "product_retailer_id": "def456"}}
        await chatbot.process_message(button_message("anything", context=context), PHONE)

        assert cart_repo.rows[registered_user["id"]] == {"def456": 1}

    @pytest.mark.asyncio
    async def test_unknown_product_gets_apology(self, chatbot, cart_repo, registered_user):
        replies = await chatbot.process_message(button_message("product:missing"), PHONE)

        assert isinstance(replies[0], TextMessage)
        assert replies[0].body.startswith("Sorry, we couldn't add the item to your cart.")
        assert registered_user["id"] not in cart_repo.rows

    @pytest.mark.asyncio
    async def test_out_of_stock_product_is_refused(self, chatbot, catalog, cart_repo, registered_user):
        catalog.products["gone"] = make_product("gone", availability="out of stock")
        replies = await chatbot.process_message(button_message("product:gone"), PHONE)

        assert "out of stock" in replies[0].body
        assert registered_user["id"] not in cart_repo.rows

    @pytest.mark.asyncio
    async def test_view_cart_shows_lines_and_total(self, chatbot, cart_repo, registered_user):
        cart_repo.rows[registered_user["id"]] = {"abc123": 2, "def456": 1}
        replies = await chatbot.process_message(button_message("view_cart"), PHONE)

        body = replies[0].body_text
        assert "Qty: 2 × ₦1,500.00 = ₦3,000.00" in body
        assert "*Total: ₦3,250.50*" in body
        assert "Items: 3" in body
        assert replies[0].button_ids == ["place_order", "edit_cart", "browse_products"]

    @pytest.mark.asyncio
    async def test_empty_cart_offers_browse(self, chatbot, registered_user):
        replies = await chatbot.process_message(button_message("view_cart"), PHONE)
        assert replies[0].button_ids == ["browse_products", "back_to_menu"]

    @pytest.mark.asyncio
    async def test_unknown_button_is_ignored(self, chatbot, registered_user):
        replies = await chatbot.process_message(button_message("no_such_button"), PHONE)
        assert replies == []


class TestCheckout:
    @pytest.mark.asyncio
    async def test_full_checkout_with_typed_address(
        self, chatbot, sessions, cart_repo, order_repo, whatsapp, registered_user
    ):
        """Browse, add, place order without a saved address, then type the address."""
        replies = await chatbot.process_message(text_message("1"), PHONE)
        assert replies[0].kind == "list"

        await chatbot.process_message(button_message("product_abc123"), PHONE)
        assert cart_repo.rows[registered_user["id"]] == {"abc123": 1}

        replies = await chatbot.process_message(button_message("place_order"), PHONE)
        assert sessions.get(PHONE).state == ConversationState.AWAITING_ADDRESS_INPUT
        assert replies[0].body == "Please provide your delivery address:"

        replies = await chatbot.process_message(text_message("14 Allen Avenue, Ikeja, Lagos"), PHONE)

        assert sessions.get(PHONE) is None
        (order,) = order_repo.orders.values()
        assert order["delivery_address"] == "14 Allen Avenue, Ikeja, Lagos"
        assert order["total_amount"] == "1500.00"
        assert order["payment_link"] == f"https://pay.test/{order['id']}"
        assert replies[0].kind == "cta_url"
        assert replies[0].interactive["action"]["parameters"]["url"] == order["payment_link"]
        assert registered_user["id"] not in cart_repo.rows
        assert whatsapp.documents[0]["filename"] == f"invoice-{order['id']}.pdf"

    @pytest.mark.asyncio
    async def test_short_address_keeps_session(self, chatbot, sessions, cart_repo, order_repo, registered_user):
        cart_repo.rows[registered_user["id"]] = {"abc123": 1}
        await chatbot.process_message(button_message("place_order"), PHONE)

        replies = await chatbot.process_message(text_message("Ikeja"), PHONE)

        assert "too short" in replies[0].body
        assert sessions.get(PHONE).state == ConversationState.AWAITING_ADDRESS_INPUT
        assert order_repo.orders == {}

    @pytest.mark.asyncio
    async def test_saved_address_asks_for_confirmation(self, chatbot, sessions, registered_user):
        registered_user["address"] = "5 Marina Road, Lagos Island"
        replies = await chatbot.process_message(button_message("place_order"), PHONE)

        assert sessions.get(PHONE).state == ConversationState.AWAITING_ADDRESS_CONFIRMATION
        assert replies[0].button_ids == ["use_existing_address", "provide_new_address"]
        assert "5 Marina Road, Lagos Island" in replies[0].body_text

    @pytest.mark.asyncio
    async def test_use_existing_address_places_order(self, chatbot, sessions, cart_repo, order_repo, registered_user):
        registered_user["address"] = "5 Marina Road, Lagos Island"
        cart_repo.rows[registered_user["id"]] = {"def456": 4}
        await chatbot.process_message(button_message("place_order"), PHONE)

        replies = await chatbot.process_message(button_message("use_existing_address"), PHONE)

        (order,) = order_repo.orders.values()
        assert order["delivery_address"] == "5 Marina Road, Lagos Island"
        assert order["total_amount"] == "1002.00"
        assert replies[0].kind == "cta_url"
        assert sessions.get(PHONE) is None

    @pytest.mark.asyncio
    async def test_provide_new_address_switches_to_input(self, chatbot, sessions, registered_user):
        registered_user["address"] = "5 Marina Road, Lagos Island"
        await chatbot.process_message(button_message("place_order"), PHONE)

        replies = await chatbot.process_message(button_message("provide_new_address"), PHONE)

        assert sessions.get(PHONE).state == ConversationState.AWAITING_ADDRESS_INPUT
        assert replies[0].body == "Please provide your delivery address:"

    @pytest.mark.asyncio
    async def test_stray_text_during_confirmation_gets_guidance(self, chatbot, sessions, order_repo, registered_user):
        registered_user["address"] = "5 Marina Road, Lagos Island"
        await chatbot.process_message(button_message("place_order"), PHONE)

        replies = await chatbot.process_message(text_message("1"), PHONE)

        assert "use the buttons" in replies[0].body
        assert sessions.get(PHONE).state == ConversationState.AWAITING_ADDRESS_CONFIRMATION
        assert order_repo.orders == {}

    @pytest.mark.asyncio
    async def test_cancel_clears_session(self, chatbot, sessions, registered_user):
        await chatbot.process_message(button_message("place_order"), PHONE)

        replies = await chatbot.process_message(text_message("Cancel"), PHONE)

        assert sessions.get(PHONE) is None
        assert "cancelled" in replies[0].body

    @pytest.mark.asyncio
    async def test_use_existing_address_without_session(self, chatbot, order_repo, registered_user):
        replies = await chatbot.process_message(button_message("use_existing_address"), PHONE)

        assert "no order waiting" in replies[0].body
        assert order_repo.orders == {}

    @pytest.mark.asyncio
    async def test_empty_cart_checkout_gets_specific_reply(self, chatbot, sessions, order_repo, registered_user):
        await chatbot.process_message(button_message("place_order"), PHONE)

        replies = await chatbot.process_message(text_message("14 Allen Avenue, Ikeja, Lagos"), PHONE)

        assert replies[0].body == EMPTY_CART_REPLY
        assert order_repo.orders == {}
        assert sessions.get(PHONE) is None

    @pytest.mark.asyncio
    async def test_payment_link_failure_offers_retry(self, chatbot, payments, cart_repo, order_repo, registered_user):
        payments.fail = True
        cart_repo.rows[registered_user["id"]] = {"abc123": 1}
        await chatbot.process_message(button_message("place_order"), PHONE)

        replies = await chatbot.process_message(text_message("14 Allen Avenue, Ikeja, Lagos"), PHONE)

        (order,) = order_repo.orders.values()
        assert replies[0].button_ids == [f"payment:{order['id']}"]

    @pytest.mark.asyncio
    async def test_invoice_failure_does_not_fail_order(self, chatbot, whatsapp, cart_repo, order_repo, registered_user):
        whatsapp.fail_documents = True
        cart_repo.rows[registered_user["id"]] = {"abc123": 1}
        await chatbot.process_message(button_message("place_order"), PHONE)

        replies = await chatbot.process_message(text_message("14 Allen Avenue, Ikeja, Lagos"), PHONE)

        assert len(order_repo.orders) == 1
        assert replies[0].kind == "cta_url"


class TestPaymentButton:
    @pytest.mark.asyncio
    async def test_reuses_existing_link(self, chatbot, payments, order_repo, registered_user):
        row = await order_repo.create(registered_user["id"], "1500.00", "somewhere", "https://pay.test/existing")

        replies = await chatbot.process_message(button_message(f"payment:{row['id']}"), PHONE)

        assert "https://pay.test/existing" in replies[0].body
        assert replies[0].preview_url is True
        assert payments.links == []

    @pytest.mark.asyncio
    async def test_generates_link_on_demand(self, chatbot, payments, order_repo, registered_user):
        row = await order_repo.create(registered_user["id"], "1500.00", "somewhere")

        replies = await chatbot.process_message(button_message(f"payment_{row['id']}"), PHONE)

        assert f"https://pay.test/{row['id']}" in replies[0].body
        assert order_repo.orders[row["id"]]["payment_link"] == f"https://pay.test/{row['id']}"

    @pytest.mark.asyncio
    async def test_other_users_order_is_not_found(self, chatbot, order_repo, registered_user):
        row = await order_repo.create("someone-else", "1500.00", "somewhere", "https://pay.test/x")

        replies = await chatbot.process_message(button_message(f"payment:{row['id']}"), PHONE)

        assert "couldn't find your order" in replies[0].body


class TestNativeOrder:
    @pytest.mark.asyncio
    async def test_order_rebuilds_cart_and_starts_checkout(self, chatbot, sessions, cart_repo, registered_user):
        cart_repo.rows[registered_user["id"]] = {"old": 9}

        replies = await chatbot.process_message(order_message(("abc123", 2), ("def456", 1)), PHONE)

        assert cart_repo.rows[registered_user["id"]] == {"abc123": 2, "def456": 1}
        assert sessions.get(PHONE).state == ConversationState.AWAITING_ADDRESS_INPUT
        assert replies[-1].body == "Please provide your delivery address:"

    @pytest.mark.asyncio
    async def test_missing_line_is_skipped_and_reported(
        self, chatbot, sessions, cart_repo, order_repo, registered_user
    ):
        replies = await chatbot.process_message(order_message(("abc123", 1), ("vanished", 3)), PHONE)

        assert cart_repo.rows[registered_user["id"]] == {"abc123": 1}
        assert "vanished" in replies[0].body

        await chatbot.process_message(text_message("14 Allen Avenue, Ikeja, Lagos"), PHONE)
        (order,) = order_repo.orders.values()
        assert order["total_amount"] == "1500.00"

    @pytest.mark.asyncio
    async def test_all_lines_invalid_gets_apology(self, chatbot, sessions, registered_user):
        replies = await chatbot.process_message(order_message(("nope", 1)), PHONE)

        assert "none of the items" in replies[0].body
        assert sessions.get(PHONE) is None

    @pytest.mark.asyncio
    async def test_order_without_items_gets_apology(self, chatbot, registered_user):
        replies = await chatbot.process_message(order_message(), PHONE)
        assert replies[0].body == "Sorry, we couldn't process your order. No items found."


class TestFailureRecovery:
    @pytest.mark.asyncio
    async def test_unexpected_error_clears_session_and_replies(self, chatbot, sessions, user_repo, registered_user):
        sessions.enter(PHONE, registered_user["id"], ConversationState.AWAITING_ADDRESS_CONFIRMATION)

        async def broken(phone_number):
            raise RuntimeError("database down")

        user_repo.find_by_phone = broken
        replies = await chatbot.process_message(button_message("use_existing_address"), PHONE)

        assert [r.body for r in replies] == [GENERIC_FAILURE_REPLY]
        assert sessions.get(PHONE) is None

    @pytest.mark.asyncio
    async def test_unsupported_message_type_is_ignored(self, chatbot, registered_user):
        message = InboundMessage.model_validate({"from": PHONE, "id": "wamid.img", "type": "image"})
        assert await chatbot.process_message(message, PHONE) == []

    @pytest.mark.asyncio
    async def test_one_off_senders_leave_no_locks(self, chatbot, sessions):
        for i in range(500):
            await chatbot.process_message(text_message("hi", f"wamid.{i}"), f"+234800{i:07d}")

        assert sessions.active_locks == 0

    @pytest.mark.asyncio
    async def test_catalog_outage_keeps_cart(self, chatbot, catalog, cart_repo, registered_user):
        cart_repo.rows[registered_user["id"]] = {"abc123": 2}
        catalog.fail_ids.add("abc123")

        replies = await chatbot.process_message(button_message("view_cart"), PHONE)

        assert "error loading your cart" in replies[0].body
        assert cart_repo.rows[registered_user["id"]] == {"abc123": 2}
