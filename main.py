"""
WhatsApp Commerce Bot
FastAPI + Supabase + Meta Catalogue + Paystack + WhatsApp Flows
"""

import asyncio
import html
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from commerce_bot import __version__
from commerce_bot.cache import cache
from commerce_bot.cart import CartService
from commerce_bot.catalog import CatalogAPI
from commerce_bot.chatbot import ChatbotService, WebhookProcessor
from commerce_bot.clients import close_http_client, get_supabase, is_supabase_configured
from commerce_bot.config import config, setup_logging
from commerce_bot.database import CartRepository, OrderRepository, UserRepository
from commerce_bot.documents import format_currency
from commerce_bot.errors import FlowDecryptionFailed, FlowEndpointError
from commerce_bot.flow_endpoint.crypto import FlowCryptoService
from commerce_bot.flow_endpoint.handlers import AdditionalInfoHandler, BasicInfoHandler
from commerce_bot.flow_endpoint.processor import FlowProcessor
from commerce_bot.flows import CartFlow, OnboardingFlow, OrderFlow
from commerce_bot.messages import extract_messages
from commerce_bot.orders import OrderService, PaymentStatus
from commerce_bot.payments import PaystackClient
from commerce_bot.sessions import SessionStore
from commerce_bot.users import UserService
from commerce_bot.whatsapp import WhatsAppAPI

setup_logging()
logger = logging.getLogger("commerce_bot")

APP_NAME = "WhatsApp Commerce Bot"
FLOW_ERROR_BODY = "Failed to process flow request"

# ============================================================
# SERVICES
# ============================================================
whatsapp = WhatsAppAPI()
catalog = CatalogAPI()
payments = PaystackClient()
sessions = SessionStore()

user_service = UserService(UserRepository(), cache)
cart_service = CartService(CartRepository(), catalog)
order_service = OrderService(OrderRepository(), cart_service)

onboarding = OnboardingFlow()
cart_flow = CartFlow(cart_service, catalog)
order_flow = OrderFlow(order_service, user_service, payments, whatsapp, onboarding)

chatbot = ChatbotService(user_service, cart_service, sessions, onboarding, cart_flow, order_flow)
processor = WebhookProcessor(chatbot, whatsapp, cache)

flow_crypto = FlowCryptoService()
flow_processor = FlowProcessor(
    BasicInfoHandler(user_service),
    AdditionalInfoHandler(user_service, whatsapp, onboarding),
)


# ============================================================
# HTML PAGES
# ============================================================
PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <title>{title}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <style>
      body {{ font-family: Arial, sans-serif; text-align: center; padding: 50px; }}
      .error {{ color: #d32f2f; }}
      .success {{ color: #4caf50; }}
    </style>
  </head>
  <body>
    <h1 class="{css_class}">{heading}</h1>
    {body}
  </body>
</html>
"""


def render_page(title: str, heading: str, body: str, success: bool = False) -> str:
    return PAGE_TEMPLATE.format(
        title=title,
        heading=heading,
        body=body,
        css_class="success" if success else "error",
    )


# ============================================================
# HOUSEKEEPING
# ============================================================
def run_housekeeping() -> tuple[int, int]:
    """Evict expired cache entries (user lookups, processed message ids) and sessions."""
    cached = cache.purge_expired()
    expired_sessions = sessions.prune()
    if cached or expired_sessions:
        logger.info(f"Housekeeping: purged {cached} cache entries and {expired_sessions} sessions")
    return cached, expired_sessions


async def housekeeping_loop(interval_seconds: int):
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            run_housekeeping()
        except Exception as e:
            logger.warning(f"⚠️ Housekeeping failed: {type(e).__name__}: {e}")


# ============================================================
# FASTAPI APP
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """App lifespan events."""
    logger.info(f"Starting {APP_NAME}...")

    missing = config.validate()
    if missing:
        logger.warning(f"⚠️ Missing configuration: {', '.join(missing)}")

    if is_supabase_configured():
        try:
            db = get_supabase()
            db.table("users").select("id").limit(1).execute()
            logger.info("✅ Supabase connection established")
        except Exception as e:
            logger.warning(f"⚠️ Supabase connection test failed: {type(e).__name__}")

    housekeeping = asyncio.create_task(housekeeping_loop(config.HOUSEKEEPING_INTERVAL_SECONDS))
    logger.info(f"🚀 {APP_NAME} started in {config.ENVIRONMENT} mode")

    yield

    logger.info(f"{APP_NAME} shutting down")
    housekeeping.cancel()
    await close_http_client()


app = FastAPI(
    title=APP_NAME,
    description="WhatsApp commerce assistant with catalogue ordering, Paystack payments and onboarding Flows",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# ENDPOINTS
# ============================================================
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": APP_NAME,
        "version": __version__,
        "status": "running",
        "features": ["meta_catalogue", "cart", "orders", "paystack_payments", "pdf_documents", "onboarding_flow"],
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": config.ENVIRONMENT,
        "version": __version__,
        "checks": {},
    }

    try:
        db = get_supabase()
        db.table("users").select("id").limit(1).execute()
        health_status["checks"]["database"] = "ok"
    except Exception as e:
        health_status["checks"]["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "degraded"

    if config.WHATSAPP_ACCESS_TOKEN and config.WHATSAPP_PHONE_NUMBER_ID:
        health_status["checks"]["whatsapp_config"] = "ok"
    else:
        health_status["checks"]["whatsapp_config"] = "missing credentials"
        health_status["status"] = "degraded"

    return JSONResponse(health_status, status_code=200)


@app.get("/webhook/whatsapp")
async def verify_webhook(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
):
    """Webhook verification for Meta."""
    challenge = whatsapp.verify_webhook(hub_mode, hub_verify_token, hub_challenge)
    if challenge is not None:
        logger.info("Webhook verified successfully")
        return PlainTextResponse(challenge, status_code=200)

    logger.warning(f"Webhook verification failed: mode={hub_mode}")
    return PlainTextResponse("Verification failed", status_code=403)


@app.post("/webhook/whatsapp")
async def webhook(request: Request, background_tasks: BackgroundTasks):
    """Acknowledge immediately; messages are processed in the background."""
    body = await request.body()

    signature = request.headers.get("X-Hub-Signature-256", "")
    if not whatsapp.verify_signature(body, signature):
        logger.warning("Invalid webhook signature")
        return JSONResponse({"status": "invalid_signature"}, status_code=401)

    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return JSONResponse({"status": "invalid_json"}, status_code=400)
    if not isinstance(data, dict):
        return JSONResponse({"status": "invalid_json"}, status_code=400)

    inbound = extract_messages(data)
    if not inbound:
        return JSONResponse({"status": "ignored"}, status_code=200)

    first = inbound[0]
    try:
        await whatsapp.send_typing(first.sender, first.id)
    except Exception as e:
        logger.debug(f"Typing indicator failed for {first.id}: {type(e).__name__}")

    background_tasks.add_task(processor.process, data)
    logger.info(f"Queued {len(inbound)} message(s) for processing")
    return JSONResponse({"status": "ok"}, status_code=200)


@app.post("/flow")
async def flow_endpoint(request: Request):
    """WhatsApp Flow data exchange: decrypt, run the screen state machine, encrypt."""
    logger.info("Received Flow request")
    try:
        try:
            envelope = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FlowDecryptionFailed("Invalid flow envelope") from e
        if not isinstance(envelope, dict):
            raise FlowDecryptionFailed("Invalid flow envelope")

        decrypted = flow_crypto.decrypt_request(envelope)
        response = await flow_processor.process(decrypted.payload)
        encrypted = flow_crypto.encrypt_response(response, decrypted.aes_key, decrypted.iv)
    except FlowEndpointError as e:
        logger.error(f"Flow endpoint error: {e.message}")
        return PlainTextResponse(FLOW_ERROR_BODY, status_code=e.status_code)
    except Exception as e:
        logger.exception(f"Unexpected error processing flow: {type(e).__name__}")
        return PlainTextResponse(FLOW_ERROR_BODY, status_code=500)

    return PlainTextResponse(encrypted, status_code=200)


def payment_failed(message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        render_page(
            "Payment Verification Failed",
            "❌ Payment Verification Failed",
            message,
        ),
        status_code=status_code,
    )


@app.get("/webhook/payment/verify")
async def verify_payment(reference: Optional[str] = Query(None)):
    """Paystack redirect target: verify the transaction and confirm the order.

    The order is confirmed only when Paystack reports the transaction as
    successful and the amount collected covers the order total.
    """
    logger.info(f"Payment verification callback received: reference={reference}")
    if not reference:
        logger.warning("Payment verification called without reference")
        return payment_failed("<p>Invalid payment reference.</p>", 400)

    try:
        verification = await payments.verify_payment(reference)
        order = await order_service.find_by_id(reference)

        if order is None:
            logger.warning(f"⚠️ Payment callback for unknown order {reference}")
            return payment_failed("<p>We couldn't find an order for this payment.</p>", 404)

        if not verification.is_successful:
            logger.warning(f"⚠️ Transaction {reference} not successful: status={verification.status!r}")
            return payment_failed(
                "<p>Your payment was not completed.</p>"
                "<p>Please use the payment link on WhatsApp to try again.</p>",
                400,
            )

        if verification.amount < order.total:
            logger.error(
                f"Amount mismatch for order {reference}: paid={verification.amount}, expected={order.total}"
            )
            return payment_failed(
                "<p>The amount paid does not match your order total.</p>"
                "<p>Please contact support if you were charged.</p>",
                400,
            )

        phone_number = verification.metadata.get("phoneNumber")
        if order.payment_status == PaymentStatus.PAID:
            logger.info(f"Order {reference} is already PAID, skipping confirmation")
        elif phone_number:
            replies = await order_flow.handle_payment_confirmation(phone_number, reference)
            for reply in replies:
                try:
                    await whatsapp.send_message(reply)
                except Exception as e:
                    logger.warning(f"⚠️ Failed to send payment follow-up to {phone_number}: {e}")
        else:
            await order_service.mark_paid(reference)
            logger.info(f"✅ Order {reference} marked as PAID and CONFIRMED")
    except Exception as e:
        logger.error(f"Payment verification failed for {reference}: {type(e).__name__}: {e}")
        return payment_failed(
            "<p>We couldn't verify your payment.</p>"
            "<p>Please contact support if you were charged.</p>",
            500,
        )

    return HTMLResponse(
        render_page(
            "Payment Successful",
            "✅ Payment Successful!",
            f"<p>Your payment of {format_currency(verification.amount)} has been confirmed.</p>"
            f"<p>Order Reference: <strong>{html.escape(reference)}</strong></p>"
            "<p>You will receive a confirmation message on WhatsApp shortly.</p>",
            success=True,
        ),
        status_code=200,
    )


# ============================================================
# ADMIN
# ============================================================
@app.post("/admin/cache/clear")
async def clear_cache():
    """Clear all cached data and conversation sessions."""
    cache.clear()
    sessions.clear_all()
    return {"status": "cache_cleared", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=config.DEBUG,
    )
