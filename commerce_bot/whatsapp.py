"""WhatsApp Cloud API wrapper (messages, media upload, typing, webhook checks)."""

import hashlib
import hmac
import logging
from typing import Optional

import httpx
from pydantic import TypeAdapter

from commerce_bot.clients import get_http_client
from commerce_bot.config import config
from commerce_bot.errors import WhatsAppAPIError
from commerce_bot.messages import CatalogMessage, DocumentMessage, OutboundMessage

logger = logging.getLogger(__name__)

_outbound = TypeAdapter(OutboundMessage)


class WhatsAppAPI:
    """WhatsApp Cloud API wrapper with connection pooling."""

    def __init__(
        self,
        access_token: str = None,
        phone_number_id: str = None,
        api_url: str = None,
        verify_token: str = None,
        app_secret: str = None,
        catalog_id: str = None,
    ):
        self.access_token = access_token if access_token is not None else config.WHATSAPP_ACCESS_TOKEN
        self.phone_number_id = phone_number_id if phone_number_id is not None else config.WHATSAPP_PHONE_NUMBER_ID
        self.api_url = api_url or config.WHATSAPP_API_URL
        self.verify_token = verify_token if verify_token is not None else config.WHATSAPP_VERIFY_TOKEN
        self.app_secret = app_secret if app_secret is not None else config.META_APP_SECRET
        self.catalog_id = catalog_id if catalog_id is not None else config.WHATSAPP_CATALOG_ID

    def _get_url(self, path: str) -> str:
        return f"{self.api_url}/{self.phone_number_id}/{path}"

    def _auth_headers(self) -> dict:
        if not self.access_token:
            raise WhatsAppAPIError("WHATSAPP_ACCESS_TOKEN is not set")
        return {"Authorization": f"Bearer {self.access_token}"}

    @staticmethod
    def _raise_for_error(response: httpx.Response, action: str):
        if response.status_code < 400:
            return
        try:
            detail = response.json().get("error", {}).get("message") or response.reason_phrase
        except ValueError:
            detail = response.reason_phrase
        logger.error(f"WhatsApp API error ({action}): {response.status_code} - {detail}")
        raise WhatsAppAPIError(f"Failed to {action}: {detail}", response.status_code)

    async def send(self, payload: dict) -> dict:
        """POST a raw payload to the messages endpoint."""
        client = get_http_client()
        try:
            response = await client.post(
                self._get_url("messages"),
                headers={**self._auth_headers(), "Content-Type": "application/json"},
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp request failed: {type(e).__name__}")
            raise WhatsAppAPIError("Failed to send WhatsApp message") from e

        self._raise_for_error(response, "send WhatsApp message")
        return response.json()

    async def send_message(self, message: OutboundMessage) -> Optional[str]:
        """Send one outbound descriptor; returns the WhatsApp message id."""
        message = _outbound.validate_python(message)
        if isinstance(message, CatalogMessage) and not message.catalog_id and self.catalog_id:
            message = message.model_copy(update={"catalog_id": self.catalog_id})

        result = await self.send(message.to_payload())
        message_id = (result.get("messages") or [{}])[0].get("id")
        logger.info(f"Message sent to {message.to}: {message.type} ({message_id})")
        return message_id

    async def upload_media(self, content: bytes, filename: str, mime_type: str) -> str:
        """Upload a file to WhatsApp media storage and return its media id."""
        client = get_http_client()
        try:
            response = await client.post(
                self._get_url("media"),
                headers=self._auth_headers(),
                data={"messaging_product": "whatsapp", "type": mime_type},
                files={"file": (filename, content, mime_type)},
            )
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp media upload failed: {type(e).__name__}")
            raise WhatsAppAPIError("Failed to upload media") from e

        self._raise_for_error(response, "upload media")
        media_id = response.json().get("id")
        if not media_id:
            raise WhatsAppAPIError("Media upload returned no id")
        return media_id

    async def send_document(
        self,
        to: str,
        filename: str,
        content: bytes,
        mime_type: str = "application/pdf",
        caption: str = None,
    ) -> Optional[str]:
        media_id = await self.upload_media(content, filename, mime_type)
        return await self.send_message(
            DocumentMessage(to=to, filename=filename, media_id=media_id, caption=caption)
        )

    async def mark_read(self, message_id: str) -> None:
        await self.send({
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
        })

    async def send_typing(self, to: str, message_id: str) -> None:
        """Mark the message read and show the typing indicator."""
        await self.send({
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
            "typing_indicator": {"type": "text"},
        })
        logger.debug(f"Typing indicator sent to {to}")

    def verify_webhook(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Return the challenge when the subscription request is ours, else None."""
        if mode == "subscribe" and token and token == self.verify_token and challenge:
            logger.info("Webhook verified successfully")
            return challenge
        logger.warning(f"Webhook verification failed: mode={mode}")
        return None

    def verify_signature(self, payload: bytes, signature: str) -> bool:
        """Verify webhook signature from Meta."""
        if not self.app_secret:
            logger.warning("META_APP_SECRET not set, skipping signature verification")
            return True

        expected_signature = hmac.new(
            self.app_secret.encode(),
            payload,
            hashlib.sha256,
        ).hexdigest()

        signature = signature or ""
        if signature.startswith("sha256="):
            signature = signature[7:]

        return hmac.compare_digest(expected_signature, signature)
