import logging
from typing import Optional

from commerce_bot import messages
from commerce_bot.documents import PDF_MIME_TYPE, Customer, format_currency, render_invoice, render_receipt
from commerce_bot.errors import EmptyCartError, InvalidCartTotalError, PaymentError
from commerce_bot.flows.onboarding import OnboardingFlow
from commerce_bot.messages import ButtonAction, OutboundMessage, encode_button_id
from commerce_bot.orders import Order, OrderService
from commerce_bot.payments import PaystackClient
from commerce_bot.users import UserService
from commerce_bot.whatsapp import WhatsAppAPI

logger = logging.getLogger(__name__)

EMPTY_CART_REPLY = (
    "Your cart is empty or contains products that are no longer available. "
    "Please browse the catalog and add items to your cart again."
)
INVALID_TOTAL_REPLY = (
    "Your cart contains invalid items. "
    "Please browse the catalog and add items to your cart again."
)
RECEIPT_CAPTION = "🎉 Payment confirmed! Your receipt is attached and your order is being processed."


def placeholder_email(phone_number: str) -> str:
    return f"{phone_number}@whatsapp.local"


def customer_for(user: Optional[dict], phone_number: str, address: str = "") -> Customer:
    user = user or {}
    return Customer(
        name=user.get("business_name") or user.get("contact_person") or phone_number,
        phone_number=phone_number,
        address=address or "",
    )


class OrderFlow:
    """Address negotiation, order placement and payment follow-up."""

    def __init__(
        self,
        order_service: OrderService,
        user_service: UserService,
        payments: PaystackClient,
        whatsapp: WhatsAppAPI,
        onboarding: OnboardingFlow,
    ):
        self.order_service = order_service
        self.user_service = user_service
        self.payments = payments
        self.whatsapp = whatsapp
        self.onboarding = onboarding

    def address_confirmation(self, phone_number: str, address: str) -> OutboundMessage:
        return messages.buttons(
            phone_number,
            f"Your saved address is:\n{address}\n\nWould you like to use this address?",
            [
                (encode_button_id(ButtonAction.USE_EXISTING_ADDRESS), "Use This Address"),
                (encode_button_id(ButtonAction.PROVIDE_NEW_ADDRESS), "Provide New Address"),
            ],
        )

    def request_address(self, phone_number: str) -> OutboundMessage:
        return messages.text(phone_number, "Please provide your delivery address:")

    async def _payment_link_for(self, order: Order, phone_number: str, user: Optional[dict]) -> str:
        email = (user or {}).get("email") or placeholder_email(phone_number)
        link = await self.payments.generate_payment_link(
            order.id,
            order.total,
            email,
            {"userId": order.user_id, "phoneNumber": phone_number},
        )
        await self.order_service.update_payment_link(order.id, link)
        return link

    async def _send_invoice(self, order: Order, user: Optional[dict], phone_number: str, payment_link: str):
        try:
            pdf = render_invoice(order, customer_for(user, phone_number, order.delivery_address), payment_link)
            await self.whatsapp.send_document(phone_number, f"invoice-{order.id}.pdf", pdf, PDF_MIME_TYPE)
            logger.info(f"✅ Invoice sent for order {order.id}")
        except Exception as e:
            logger.warning(f"⚠️ Failed to send invoice for order {order.id}: {type(e).__name__}: {e}")

    def payment_message(self, phone_number: str, order: Order, payment_link: str) -> OutboundMessage:
        return messages.cta_url(
            phone_number,
            "Your order has been created!\n\n"
            f"Order ID: {order.id}\n"
            f"Total: {format_currency(order.total)}\n\n"
            "Tap the button below to complete your payment.",
            "Pay Now",
            payment_link,
            header="Payment",
            footer="Thank you for your purchase",
        )

    async def handle_place_order(self, phone_number: str, user_id: str, address: str) -> list[OutboundMessage]:
        """Cart -> order -> payment link -> invoice (best effort) -> pay-now message."""
        logger.info(f"Placing order for {phone_number}")
        try:
            order = await self.order_service.create_from_cart(user_id, address)
        except EmptyCartError:
            logger.info(f"Order refused for {phone_number}: cart is empty")
            return [messages.text(phone_number, EMPTY_CART_REPLY)]
        except InvalidCartTotalError as e:
            logger.warning(f"⚠️ Order refused for {phone_number}: {e}")
            return [messages.text(phone_number, INVALID_TOTAL_REPLY)]
        except Exception as e:
            logger.exception(f"Failed to create order for {phone_number}: {e}")
            return [messages.text(phone_number, f"Sorry, we couldn't process your order. {e}")]

        try:
            user = await self.user_service.find_by_phone(phone_number)
            payment_link = await self._payment_link_for(order, phone_number, user)
        except PaymentError as e:
            logger.error(f"Payment link failed for order {order.id}: {e}")
            return [
                messages.buttons(
                    phone_number,
                    f"Your order {order.id} has been created, but we couldn't generate a payment "
                    f"link right now. {e}",
                    [(encode_button_id(ButtonAction.PAY_ORDER, order.id), "Retry Payment")],
                )
            ]
        except Exception as e:
            logger.exception(f"Failed to prepare payment for order {order.id}: {e}")
            return [messages.text(phone_number, f"Sorry, we couldn't process your order. {e}")]

        await self._send_invoice(order, user, phone_number, payment_link)
        return [self.payment_message(phone_number, order, payment_link)]

    async def handle_payment_button(self, phone_number: str, user: dict, order_id: str) -> OutboundMessage:
        """Reply with the order's payment link, generating one if it has none yet."""
        try:
            order = await self.order_service.find_by_id(order_id)
            if order is None or order.user_id != user.get("id"):
                logger.warning(f"Order not found for pay click: {order_id}")
                return messages.text(
                    phone_number,
                    "Sorry, we couldn't find your order. Please try again or contact support.",
                )

            payment_link = order.payment_link
            if not payment_link:
                payment_link = await self._payment_link_for(order, phone_number, user)
            else:
                logger.info(f"Using existing payment link for order {order_id}")
        except Exception as e:
            logger.error(f"Failed to get payment link for order {order_id}: {e}")
            return messages.text(
                phone_number,
                f"Sorry, we couldn't generate your payment link. {e}",
            )

        return messages.text(
            phone_number,
            "Please complete your payment using this secure link:\n"
            f"{payment_link}\n\n"
            "After payment, you will receive your receipt here on WhatsApp.",
            preview_url=True,
        )

    async def handle_payment_confirmation(self, phone_number: str, order_id: str) -> list[OutboundMessage]:
        """Mark the order paid, send the receipt PDF and re-present the main menu."""
        try:
            await self.order_service.mark_paid(order_id)
            order = await self.order_service.find_by_id(order_id)
            if order is None:
                raise LookupError(f"Order {order_id} not found")
        except Exception as e:
            logger.error(f"Failed to confirm payment for order {order_id}: {e}")
            return [
                messages.text(
                    phone_number,
                    "Sorry, we couldn't confirm your payment. Please contact support.",
                )
            ]

        logger.info(f"✅ Order {order_id} marked as PAID and CONFIRMED")
        try:
            user = await self.user_service.find_by_phone(phone_number)
            pdf = render_receipt(order, customer_for(user, phone_number, order.delivery_address))
            await self.whatsapp.send_document(
                phone_number,
                f"receipt-{order.id}.pdf",
                pdf,
                PDF_MIME_TYPE,
                caption=RECEIPT_CAPTION,
            )
            logger.info(f"✅ Receipt sent for order {order.id}")
        except Exception as e:
            logger.warning(f"⚠️ Failed to send receipt for order {order.id}: {type(e).__name__}: {e}")

        return [self.onboarding.main_menu(phone_number)]
