"""Inbound webhook messages, outbound message descriptors and button ids.

Outbound messages are a tagged union discriminated on ``type``; each variant
renders its own Cloud API payload. Button ids are built with
``encode_button_id`` and read back with ``decode_button_id`` so handlers match
on an action instead of slicing strings.
"""

import logging
from enum import Enum
from typing import Annotated, Any, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_LIST_ROWS = 10
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72


# ============================================================
# OUTBOUND DESCRIPTORS
# ============================================================
def _envelope(to: str, type_: str) -> dict:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": type_,
    }


class TextMessage(BaseModel):
    type: Literal["text"] = "text"
    to: str
    body: str
    preview_url: bool = False

    def to_payload(self) -> dict:
        payload = _envelope(self.to, "text")
        payload["text"] = {"preview_url": self.preview_url, "body": self.body}
        return payload


class InteractiveMessage(BaseModel):
    type: Literal["interactive"] = "interactive"
    to: str
    interactive: dict[str, Any]

    @property
    def kind(self) -> str:
        return self.interactive.get("type", "")

    @property
    def body_text(self) -> str:
        return self.interactive.get("body", {}).get("text", "")

    @property
    def button_ids(self) -> list[str]:
        buttons = self.interactive.get("action", {}).get("buttons", [])
        return [b["reply"]["id"] for b in buttons]

    def to_payload(self) -> dict:
        payload = _envelope(self.to, "interactive")
        payload["interactive"] = self.interactive
        return payload


class CatalogMessage(BaseModel):
    type: Literal["catalog"] = "catalog"
    to: str
    body: str = "Browse our products:"
    catalog_id: Optional[str] = None
    thumbnail_product_retailer_id: Optional[str] = None

    def to_payload(self) -> dict:
        action: dict[str, Any] = {"name": "catalog_message"}
        if self.thumbnail_product_retailer_id:
            action["parameters"] = {
                "thumbnail_product_retailer_id": self.thumbnail_product_retailer_id,
            }
        if self.catalog_id:
            action["catalog_id"] = self.catalog_id

        payload = _envelope(self.to, "interactive")
        payload["interactive"] = {
            "type": "catalog_message",
            "body": {"text": self.body},
            "action": action,
        }
        return payload


class TemplateMessage(BaseModel):
    type: Literal["template"] = "template"
    to: str
    name: str
    language: str = "en_US"
    components: list[dict[str, Any]] = []

    def to_payload(self) -> dict:
        payload = _envelope(self.to, "template")
        payload["template"] = {"name": self.name, "language": {"code": self.language}}
        if self.components:
            payload["template"]["components"] = self.components
        return payload


class DocumentMessage(BaseModel):
    type: Literal["document"] = "document"
    to: str
    filename: str
    media_id: Optional[str] = None
    link: Optional[str] = None
    caption: Optional[str] = None

    def to_payload(self) -> dict:
        if not (self.media_id or self.link):
            raise ValueError("Document message needs a media id or a link")
        document: dict[str, Any] = {"filename": self.filename}
        if self.media_id:
            document["id"] = self.media_id
        else:
            document["link"] = self.link
        if self.caption:
            document["caption"] = self.caption

        payload = _envelope(self.to, "document")
        payload["document"] = document
        return payload


OutboundMessage = Annotated[
    Union[TextMessage, InteractiveMessage, CatalogMessage, TemplateMessage, DocumentMessage],
    Field(discriminator="type"),
]


# ============================================================
# BUILDERS
# ============================================================
def text(to: str, body: str, preview_url: bool = False) -> TextMessage:
    return TextMessage(to=to, body=body, preview_url=preview_url)


def _header(header: Optional[str]) -> dict:
    return {"header": {"type": "text", "text": header}} if header else {}


def _footer(footer: Optional[str]) -> dict:
    return {"footer": {"text": footer}} if footer else {}


def buttons(
    to: str,
    body: str,
    options: list[tuple[str, str]],
    header: str = None,
    footer: str = None,
) -> InteractiveMessage:
    """Reply-button message; options are (id, title) pairs, at most three."""
    if not options:
        raise ValueError("At least one button is required")
    if len(options) > MAX_BUTTONS:
        logger.warning(f"⚠️ {len(options)} buttons requested, only {MAX_BUTTONS} are sent")

    return InteractiveMessage(
        to=to,
        interactive={
            "type": "button",
            **_header(header),
            "body": {"text": body},
            **_footer(footer),
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": button_id, "title": title[:MAX_BUTTON_TITLE]}}
                    for button_id, title in options[:MAX_BUTTONS]
                ]
            },
        },
    )


def product_list(
    to: str,
    body: str,
    button_text: str,
    rows: list[dict],
    section_title: str = "Products",
    header: str = None,
    footer: str = None,
) -> InteractiveMessage:
    """List message; rows are dicts with id, title and an optional description."""
    section_rows = []
    for row in rows[:MAX_LIST_ROWS]:
        item = {"id": row["id"], "title": row["title"][:MAX_ROW_TITLE]}
        if row.get("description"):
            item["description"] = row["description"][:MAX_ROW_DESCRIPTION]
        section_rows.append(item)

    return InteractiveMessage(
        to=to,
        interactive={
            "type": "list",
            **_header(header),
            "body": {"text": body},
            **_footer(footer),
            "action": {
                "button": button_text[:MAX_BUTTON_TITLE],
                "sections": [{"title": section_title[:MAX_ROW_TITLE], "rows": section_rows}],
            },
        },
    )


def cta_url(
    to: str,
    body: str,
    display_text: str,
    url: str,
    header: str = None,
    footer: str = None,
) -> InteractiveMessage:
    return InteractiveMessage(
        to=to,
        interactive={
            "type": "cta_url",
            **_header(header),
            "body": {"text": body},
            **_footer(footer),
            "action": {
                "name": "cta_url",
                "parameters": {"display_text": display_text, "url": url},
            },
        },
    )


def flow(
    to: str,
    flow_id: str,
    flow_token: str,
    cta: str,
    screen: str,
    body: str,
    header: str = None,
    footer: str = None,
    data: dict = None,
) -> InteractiveMessage:
    action_payload: dict[str, Any] = {"screen": screen}
    if data:
        action_payload["data"] = data

    return InteractiveMessage(
        to=to,
        interactive={
            "type": "flow",
            **_header(header),
            "body": {"text": body},
            **_footer(footer),
            "action": {
                "name": "flow",
                "parameters": {
                    "flow_message_version": "3",
                    "flow_token": flow_token,
                    "flow_id": flow_id,
                    "flow_cta": cta,
                    "flow_action": "navigate",
                    "flow_action_payload": action_payload,
                },
            },
        },
    )


def catalog(to: str, body: str = "Browse our products:", thumbnail: str = None) -> CatalogMessage:
    return CatalogMessage(to=to, body=body, thumbnail_product_retailer_id=thumbnail)


# ============================================================
# BUTTON IDS
# ============================================================
class ButtonAction(str, Enum):
    VIEW_CART = "view_cart"
    EDIT_CART = "edit_cart"
    BROWSE_PRODUCTS = "browse_products"
    VIEW_ALL_PRODUCTS = "view_all_products"
    ADD_PRODUCT = "product"
    PLACE_ORDER = "place_order"
    USE_EXISTING_ADDRESS = "use_existing_address"
    PROVIDE_NEW_ADDRESS = "provide_new_address"
    PAY_ORDER = "payment"
    RETRY_ONBOARDING = "retry_onboarding"
    BACK_TO_MENU = "back_to_menu"


PAYLOAD_ACTIONS = frozenset({ButtonAction.ADD_PRODUCT, ButtonAction.PAY_ORDER})
BUTTON_ID_SEPARATOR = ":"


class ButtonId(NamedTuple):
    action: ButtonAction
    payload: Optional[str] = None


def encode_button_id(action: ButtonAction, payload: str = None) -> str:
    action = ButtonAction(action)
    if action in PAYLOAD_ACTIONS:
        if not payload:
            raise ValueError(f"Button action {action.value} requires a payload")
        return f"{action.value}{BUTTON_ID_SEPARATOR}{payload}"
    return action.value


def decode_button_id(raw: Optional[str]) -> Optional[ButtonId]:
    """Decode a reply id; also reads the older ``product_<id>`` and ``payment_<id>`` forms."""
    if not raw:
        return None

    if BUTTON_ID_SEPARATOR in raw:
        name, payload = raw.split(BUTTON_ID_SEPARATOR, 1)
    else:
        name, payload = raw, None

    try:
        action = ButtonAction(name)
    except ValueError:
        action = None

    if action is not None:
        if action in PAYLOAD_ACTIONS:
            return ButtonId(action, payload) if payload else None
        return ButtonId(action)

    for legacy in PAYLOAD_ACTIONS:
        prefix = f"{legacy.value}_"
        if raw.startswith(prefix) and len(raw) > len(prefix):
            return ButtonId(legacy, raw[len(prefix):])

    return None


# ============================================================
# INBOUND MESSAGES
# ============================================================
class OrderLine(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_retailer_id: str
    quantity: int = 1
    item_price: Optional[float] = None
    currency: Optional[str] = None


class InboundMessage(BaseModel):
    """One entry of ``value.messages[]`` from a Cloud API webhook."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender: str = Field(alias="from")
    id: str
    type: str
    timestamp: Optional[str] = None
    text: Optional[dict[str, Any]] = None
    interactive: Optional[dict[str, Any]] = None
    order: Optional[dict[str, Any]] = None
    context: Optional[dict[str, Any]] = None

    @property
    def text_body(self) -> str:
        return (self.text or {}).get("body", "")

    @property
    def interactive_type(self) -> Optional[str]:
        return (self.interactive or {}).get("type")

    @property
    def reply_id(self) -> Optional[str]:
        if not self.interactive:
            return None
        reply = self.interactive.get("button_reply") or self.interactive.get("list_reply") or {}
        return reply.get("id")

    @property
    def referred_product_id(self) -> Optional[str]:
        referred = (self.context or {}).get("referred_product") or {}
        return referred.get("product_retailer_id")

    @property
    def order_lines(self) -> list[OrderLine]:
        lines = []
        for item in (self.order or {}).get("product_items", []):
            try:
                lines.append(OrderLine.model_validate(item))
            except ValidationError:
                logger.warning(f"⚠️ Skipping malformed order line in message {self.id}")
        return lines


def extract_messages(data: dict) -> list[InboundMessage]:
    """Extract every inbound message from a webhook payload; statuses are ignored."""
    messages = []
    for entry in data.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for raw in value.get("messages") or []:
                if not (raw.get("from") and raw.get("id") and raw.get("type")):
                    continue
                try:
                    messages.append(InboundMessage.model_validate(raw))
                except ValidationError as e:
                    logger.error(f"Error extracting message: {e}")
    return messages
