import logging

from commerce_bot import messages
from commerce_bot.cart import CartService
from commerce_bot.catalog import CatalogAPI, Product
from commerce_bot.documents import format_currency
from commerce_bot.errors import CatalogError
from commerce_bot.messages import ButtonAction, OutboundMessage, encode_button_id

logger = logging.getLogger(__name__)

LIST_LAYOUT_LIMIT = 10
COMPACT_PRODUCT_BUTTONS = 2
COMPACT_PREVIEW_ITEMS = 3


class CartFlow:
    """Browse, view cart and add-to-cart replies."""

    def __init__(self, cart_service: CartService, catalog: CatalogAPI):
        self.cart_service = cart_service
        self.catalog = catalog

    # ============================================================
    # CATALOG
    # ============================================================
    def view_all_products(self, phone_number: str) -> OutboundMessage:
        return messages.catalog(phone_number, "Browse our products:")

    async def show_product_catalog(self, phone_number: str) -> OutboundMessage:
        """Pick a layout by catalog size: a list for up to ten products, buttons beyond that."""
        if not self.catalog.is_configured:
            return self.view_all_products(phone_number)

        try:
            products = await self.catalog.list_products()
        except CatalogError as e:
            logger.warning(f"⚠️ Catalog listing failed, falling back to catalog message: {e}")
            return self.view_all_products(phone_number)

        if not products:
            return self.view_all_products(phone_number)
        if len(products) > LIST_LAYOUT_LIMIT:
            return self._compact_layout(phone_number, products)
        return self._list_layout(phone_number, products)

    def _product_label(self, product: Product) -> str:
        return f"{product.name} - {format_currency(product.price)}"

    def _list_layout(self, phone_number: str, products: list[Product]) -> OutboundMessage:
        rows = [
            {
                "id": encode_button_id(ButtonAction.ADD_PRODUCT, product.retailer_id),
                "title": product.name,
                "description": format_currency(product.price),
            }
            for product in products
        ]
        return messages.product_list(
            phone_number,
            "🛍️ Here are our products. Tap one to add it to your cart.",
            "View Products",
            rows,
        )

    def _compact_layout(self, phone_number: str, products: list[Product]) -> OutboundMessage:
        preview = "\n".join(
            f"• {self._product_label(product)}" for product in products[:COMPACT_PREVIEW_ITEMS]
        )
        body = (
            f"🛍️ We have {len(products)} products available.\n\n"
            f"{preview}\n\n"
            "Tap a product to add it to your cart, or view the full catalog."
        )
        options = [
            (encode_button_id(ButtonAction.ADD_PRODUCT, product.retailer_id), product.name)
            for product in products[:COMPACT_PRODUCT_BUTTONS]
        ]
        options.append((encode_button_id(ButtonAction.VIEW_ALL_PRODUCTS), "View All"))
        return messages.buttons(phone_number, body, options)

    # ============================================================
    # CART
    # ============================================================
    async def show_cart(self, phone_number: str, user_id: str) -> OutboundMessage:
        try:
            cart = await self.cart_service.get_cart(user_id)
        except Exception as e:
            logger.error(f"Failed to show cart for {phone_number}: {e}")
            return messages.text(
                phone_number,
                "Sorry, we encountered an error loading your cart. Please try again later.",
            )

        if cart.is_empty:
            return messages.buttons(
                phone_number,
                "Your cart is empty. Would you like to browse products?",
                [
                    (encode_button_id(ButtonAction.BROWSE_PRODUCTS), "Browse Products"),
                    (encode_button_id(ButtonAction.BACK_TO_MENU), "Back to Menu"),
                ],
            )

        lines = ["🛒 *Your Cart*", ""]
        for item in cart.items:
            lines.append(item.product.name)
            lines.append(
                f"Qty: {item.quantity} × {format_currency(item.unit_price)} = {format_currency(item.subtotal)}"
            )
            lines.append("")
        lines.append(f"*Total: {format_currency(cart.total_amount)}*")
        lines.append(f"Items: {cart.item_count}")

        return messages.buttons(
            phone_number,
            "\n".join(lines),
            [
                (encode_button_id(ButtonAction.PLACE_ORDER), "Place Order"),
                (encode_button_id(ButtonAction.EDIT_CART), "Edit Cart"),
                (encode_button_id(ButtonAction.BROWSE_PRODUCTS), "Add More Items"),
            ],
        )

    async def handle_add_to_cart(
        self,
        phone_number: str,
        user_id: str,
        product_retailer_id: str,
        quantity: int = 1,
    ) -> OutboundMessage:
        try:
            product = await self.cart_service.add_item(user_id, product_retailer_id, quantity)
        except Exception as e:
            logger.error(f"Failed to add {product_retailer_id} to cart for {phone_number}: {e}")
            return messages.text(
                phone_number,
                f"Sorry, we couldn't add the item to your cart. {str(e) or 'Please try again.'}",
            )

        logger.info(f"✅ {quantity}x {product_retailer_id} added to cart for {phone_number}")
        return messages.buttons(
            phone_number,
            f"✅ {quantity}x {product.name} added to cart!\n\nWhat would you like to do next?",
            [
                (encode_button_id(ButtonAction.VIEW_CART), "View Cart"),
                (encode_button_id(ButtonAction.BROWSE_PRODUCTS), "Continue Shopping"),
            ],
        )
