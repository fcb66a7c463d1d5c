"""Dialogue controller: routes each inbound message against the sender's conversation session."""

import logging
from typing import Optional

from commerce_bot import messages
from commerce_bot.cache import Cache, cache as default_cache
from commerce_bot.cart import CartService
from commerce_bot.config import config
from commerce_bot.flows import CartFlow, OnboardingFlow, OrderFlow
from commerce_bot.messages import (
    ButtonAction,
    InboundMessage,
    OutboundMessage,
    decode_button_id,
    extract_messages,
)
from commerce_bot.sessions import ConversationState, SessionStore
from commerce_bot.users import UserService
from commerce_bot.whatsapp import WhatsAppAPI

logger = logging.getLogger(__name__)

CANCEL_KEYWORD = "cancel"
PROCESSED_TTL_SECONDS = 3600
GENERIC_FAILURE_REPLY = "Sorry, something went wrong while handling your message. Please try again."


class ChatbotService:
    def __init__(
        self,
        user_service: UserService,
        cart_service: CartService,
        sessions: SessionStore,
        onboarding: OnboardingFlow,
        cart_flow: CartFlow,
        order_flow: OrderFlow,
        min_address_length: int = None,
    ):
        self.user_service = user_service
        self.cart_service = cart_service
        self.sessions = sessions
        self.onboarding = onboarding
        self.cart_flow = cart_flow
        self.order_flow = order_flow
        self.min_address_length = (
            min_address_length if min_address_length is not None else config.MIN_ADDRESS_LENGTH
        )

    async def process_message(self, message: InboundMessage, sender_phone: str) -> list[OutboundMessage]:
        """Handle one message; messages from the same phone number are processed one at a time."""
        logger.info(f"Processing message from {sender_phone}, type: {message.type}")
        async with self.sessions.lock(sender_phone):
            try:
                if message.type == "text":
                    return await self._handle_text(message, sender_phone)
                if message.type == "interactive":
                    return await self._handle_interactive(message, sender_phone)
                if message.type == "order":
                    return await self._handle_order(message, sender_phone)
            except Exception as e:
                logger.exception(f"Error handling message {message.id} from {sender_phone}: {e}")
                self.sessions.clear(sender_phone)
                return [messages.text(sender_phone, GENERIC_FAILURE_REPLY)]

        logger.debug(f"Unhandled message type: {message.type}")
        return []

    # ============================================================
    # CHECKOUT SESSION
    # ============================================================
    def _begin_checkout(self, phone: str, user: dict) -> list[OutboundMessage]:
        address = user.get("address")
        if address:
            self.sessions.enter(phone, user["id"], ConversationState.AWAITING_ADDRESS_CONFIRMATION)
            return [self.order_flow.address_confirmation(phone, address)]
        self.sessions.enter(phone, user["id"], ConversationState.AWAITING_ADDRESS_INPUT)
        return [self.order_flow.request_address(phone)]

    def _no_pending_checkout(self, phone: str) -> list[OutboundMessage]:
        return [
            messages.text(
                phone,
                "There's no order waiting for a delivery address. "
                "Open your cart and tap *Place Order* to check out.",
            )
        ]

    async def _handle_session_text(self, text: str, phone: str, session) -> Optional[list[OutboundMessage]]:
        if text.lower() == CANCEL_KEYWORD:
            self.sessions.clear(phone)
            return [
                messages.text(phone, "Your checkout has been cancelled. Your cart is still saved."),
                self.onboarding.main_menu(phone),
            ]

        if session.state == ConversationState.AWAITING_ADDRESS_CONFIRMATION:
            return [
                messages.text(
                    phone,
                    "Please use the buttons above to confirm your delivery address, "
                    "or reply *cancel* to stop checking out.",
                )
            ]

        if session.state == ConversationState.AWAITING_ADDRESS_INPUT:
            if len(text) < self.min_address_length:
                return [
                    messages.text(
                        phone,
                        "That address looks too short. Please send your full delivery address "
                        f"(at least {self.min_address_length} characters), or reply *cancel* to stop.",
                    )
                ]
            self.sessions.clear(phone)
            return await self.order_flow.handle_place_order(phone, session.user_id, text)

        return None

    # ============================================================
    # TEXT
    # ============================================================
    async def _handle_text(self, message: InboundMessage, phone: str) -> list[OutboundMessage]:
        text = message.text_body.strip()
        if not text:
            return []

        session = self.sessions.get(phone)
        if session is not None:
            replies = await self._handle_session_text(text, phone, session)
            if replies is not None:
                return replies

        user = await self.user_service.find_by_phone(phone)
        if user is None:
            return [self.onboarding.onboarding_message(phone)]

        selection = text.lower()
        if selection == "1":
            return [await self.cart_flow.show_product_catalog(phone)]
        if selection in ("2", "3"):
            return self.onboarding.coming_soon(phone, selection)
        return [self.onboarding.main_menu(phone)]

    # ============================================================
    # BUTTONS & LISTS
    # ============================================================
    async def _handle_interactive(self, message: InboundMessage, phone: str) -> list[OutboundMessage]:
        if message.interactive_type not in ("button_reply", "list_reply"):
            return []
        reply_id = message.reply_id
        if not reply_id:
            logger.warning(f"Interactive reply without id from {phone}")
            return []

        user = await self.user_service.find_by_phone(phone)
        if user is None:
            return [self.onboarding.onboarding_message(phone)]
        user_id = user["id"]

        if message.referred_product_id:
            return [await self.cart_flow.handle_add_to_cart(phone, user_id, message.referred_product_id)]

        button = decode_button_id(reply_id)
        if button is None:
            logger.warning(f"Unknown button id from {phone}: {reply_id}")
            return []
        logger.info(f"Button {button.action.value} clicked by {phone}")

        action = button.action
        if action in (ButtonAction.VIEW_CART, ButtonAction.EDIT_CART):
            return [await self.cart_flow.show_cart(phone, user_id)]

        if action == ButtonAction.BROWSE_PRODUCTS:
            return [await self.cart_flow.show_product_catalog(phone)]

        if action == ButtonAction.VIEW_ALL_PRODUCTS:
            return [self.cart_flow.view_all_products(phone)]

        if action == ButtonAction.ADD_PRODUCT:
            return [await self.cart_flow.handle_add_to_cart(phone, user_id, button.payload)]

        if action == ButtonAction.PLACE_ORDER:
            return self._begin_checkout(phone, user)

        if action == ButtonAction.USE_EXISTING_ADDRESS:
            session = self.sessions.get(phone)
            address = user.get("address")
            if session is None or session.state != ConversationState.AWAITING_ADDRESS_CONFIRMATION:
                logger.warning(f"Use existing address clicked without a pending confirmation: {phone}")
                return self._no_pending_checkout(phone)
            if not address:
                self.sessions.enter(phone, session.user_id, ConversationState.AWAITING_ADDRESS_INPUT)
                return [self.order_flow.request_address(phone)]
            self.sessions.clear(phone)
            return await self.order_flow.handle_place_order(phone, session.user_id, address)

        if action == ButtonAction.PROVIDE_NEW_ADDRESS:
            session = self.sessions.get(phone)
            if session is None:
                return self._no_pending_checkout(phone)
            self.sessions.enter(phone, session.user_id, ConversationState.AWAITING_ADDRESS_INPUT)
            return [self.order_flow.request_address(phone)]

        if action == ButtonAction.PAY_ORDER:
            return [await self.order_flow.handle_payment_button(phone, user, button.payload)]

        if action == ButtonAction.RETRY_ONBOARDING:
            return [self.onboarding.onboarding_message(phone)]

        if action == ButtonAction.BACK_TO_MENU:
            return [self.onboarding.main_menu(phone)]

        return []

    # ============================================================
    # NATIVE CATALOG ORDERS
    # ============================================================
    async def _handle_order(self, message: InboundMessage, phone: str) -> list[OutboundMessage]:
        user = await self.user_service.find_by_phone(phone)
        if user is None:
            return [self.onboarding.onboarding_message(phone)]

        lines = message.order_lines
        if not lines:
            logger.warning(f"Order message from {phone} has no product items")
            return [messages.text(phone, "Sorry, we couldn't process your order. No items found.")]

        logger.info(f"Rebuilding cart for {phone} from {len(lines)} order lines")
        try:
            await self.cart_service.clear(user["id"])
            skipped = []
            for line in lines:
                try:
                    await self.cart_service.add_item(user["id"], line.product_retailer_id, line.quantity or 1)
                except Exception as e:
                    logger.warning(f"⚠️ Skipping order line {line.product_retailer_id} for {phone}: {e}")
                    skipped.append(line.product_retailer_id)
        except Exception as e:
            logger.exception(f"Failed to process order message from {phone}: {e}")
            self.sessions.clear(phone)
            return [messages.text(phone, f"Sorry, we couldn't process your order. {e}")]

        if len(skipped) == len(lines):
            self.sessions.clear(phone)
            return [
                messages.text(
                    phone,
                    "Sorry, none of the items in your order are currently available. "
                    "Please browse the catalog and try again.",
                )
            ]

        replies = []
        if skipped:
            replies.append(
                messages.text(
                    phone,
                    f"Some items are no longer available and were left out: {', '.join(skipped)}",
                )
            )
        return replies + self._begin_checkout(phone, user)


class WebhookProcessor:
    """Consumes raw webhook payloads handed off by the HTTP handler."""

    def __init__(self, chatbot: ChatbotService, whatsapp: WhatsAppAPI, cache: Cache = None):
        self.chatbot = chatbot
        self.whatsapp = whatsapp
        self.cache = cache if cache is not None else default_cache

    def already_processed(self, message_id: str) -> bool:
        return bool(self.cache.get(f"processed:{message_id}"))

    def mark_processed(self, message_id: str) -> None:
        self.cache.set(f"processed:{message_id}", True, PROCESSED_TTL_SECONDS)

    async def process(self, payload: dict) -> int:
        """Process every message in the payload; returns how many were handled."""
        handled = 0
        for message in extract_messages(payload):
            if self.already_processed(message.id):
                logger.debug(f"Duplicate message ignored: {message.id}")
                continue
            self.mark_processed(message.id)

            try:
                replies = await self.chatbot.process_message(message, message.sender)
            except Exception as e:
                logger.exception(f"Failed to process message {message.id}: {e}")
                continue

            sent = 0
            for reply in replies:
                try:
                    await self.whatsapp.send_message(reply)
                    sent += 1
                except Exception as e:
                    logger.error(f"Failed to send {reply.type} reply to {message.sender}: {e}")
            if replies:
                logger.info(f"Sent {sent}/{len(replies)} replies to {message.sender}")
            handled += 1
        return handled
