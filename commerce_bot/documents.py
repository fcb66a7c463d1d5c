"""Invoice and receipt PDFs rendered with fpdf2."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fpdf import FPDF
from fpdf.enums import XPos, YPos
from pydantic import BaseModel

from commerce_bot.config import config
from commerce_bot.orders import Order

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
MARGIN = 15
COLUMNS = (95, 25, 30, 30)  # item, qty, unit price, total


class Customer(BaseModel):
    name: str = "Customer"
    phone_number: str
    address: str = ""


def format_currency(amount, symbol: str = None) -> str:
    """Format a major-unit amount, e.g. 1500 -> "₦1,500.00"."""
    symbol = config.CURRENCY_SYMBOL if symbol is None else symbol
    return f"{symbol}{Decimal(str(amount)):,.2f}"


def _latin1(value) -> str:
    # Core PDF fonts only cover latin-1
    return str(value).encode("latin-1", "replace").decode("latin-1")


def _pdf_amount(amount) -> str:
    return f"NGN {Decimal(str(amount)):,.2f}"


def _order_datetime(order: Order) -> datetime:
    if order.created_at:
        try:
            return datetime.fromisoformat(order.created_at.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"⚠️ Unparseable created_at on order {order.id}: {order.created_at}")
    return datetime.now(timezone.utc)


class OrderDocument(FPDF):
    """A4 page with a title, billing block, item table and totals."""

    def __init__(self, title: str):
        super().__init__(orientation="P", unit="mm", format="A4")
        self.title_text = title
        self.set_margins(MARGIN, MARGIN, MARGIN)
        self.set_auto_page_break(auto=True, margin=20)
        self.add_page()

    def header(self):
        self.set_font("Helvetica", "B", 24)
        self.cell(0, 12, _latin1(self.title_text), align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.set_font("Helvetica", "", 9)
        self.cell(0, 5, _latin1(config.BRAND_NAME), align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(4)

    def footer(self):
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.cell(0, 10, f"Page {self.page_no()}", align="C")

    def line_break_rule(self):
        self.ln(2)
        self.line(MARGIN, self.get_y(), self.w - MARGIN, self.get_y())
        self.ln(3)

    def billing_block(self, customer: Customer, details: list[tuple[str, str]]):
        top = self.get_y()
        self.set_font("Helvetica", "B", 11)
        self.cell(90, 6, "BILLED TO:", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.set_font("Helvetica", "", 10)
        for value in (customer.name, customer.phone_number, customer.address):
            if value:
                self.multi_cell(90, 5, _latin1(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        left_bottom = self.get_y()

        self.set_xy(self.w - MARGIN - 85, top)
        for label, value in details:
            self.set_x(self.w - MARGIN - 85)
            self.cell(85, 5, _latin1(f"{label}: {value}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

        self.set_y(max(left_bottom, self.get_y()))
        self.line_break_rule()

    def items_table(self, order: Order):
        self.set_font("Helvetica", "B", 10)
        for width, heading in zip(COLUMNS, ("Item", "Quantity", "Unit Price", "Total")):
            self.cell(width, 7, heading)
        self.ln(7)
        self.line_break_rule()

        self.set_font("Helvetica", "", 10)
        for item in order.items:
            name = item.product_name or item.product_retailer_id or "Item"
            if self.get_string_width(_latin1(name)) > COLUMNS[0] - 2:
                while len(name) > 3 and self.get_string_width(_latin1(name) + "...") > COLUMNS[0] - 2:
                    name = name[:-1]
                name += "..."
            self.cell(COLUMNS[0], 6, _latin1(name))
            self.cell(COLUMNS[1], 6, str(item.quantity))
            self.cell(COLUMNS[2], 6, _pdf_amount(item.product_price))
            self.cell(COLUMNS[3], 6, _pdf_amount(item.subtotal), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

        self.line_break_rule()

    def totals(self, rows: list[tuple[str, str]], bold_last: bool = True):
        label_x = MARGIN + COLUMNS[0] + COLUMNS[1]
        for index, (label, value) in enumerate(rows):
            is_last = index == len(rows) - 1
            self.set_font("Helvetica", "B" if (bold_last and is_last) else "", 10)
            self.set_x(label_x)
            self.cell(COLUMNS[2], 6, _latin1(label))
            self.cell(COLUMNS[3], 6, _latin1(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    def note(self, message: str):
        self.ln(8)
        self.set_font("Helvetica", "B", 11)
        self.multi_cell(0, 6, _latin1(message), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    def to_bytes(self) -> bytes:
        return bytes(self.output())


def render_invoice(order: Order, customer: Customer, payment_link: Optional[str] = None) -> bytes:
    """Invoice issued when the order is placed, before payment."""
    issued = _order_datetime(order)
    pdf = OrderDocument("INVOICE")
    pdf.billing_block(customer, [
        ("Invoice No.", order.id),
        ("Date", issued.strftime("%d/%m/%Y")),
        ("Payment Status", order.payment_status.value),
    ])
    pdf.items_table(order)
    pdf.totals([("Total Due", _pdf_amount(order.total))])
    if order.delivery_address:
        pdf.note(f"Delivery Address: {order.delivery_address}")
    if payment_link:
        pdf.set_font("Helvetica", "", 10)
        pdf.multi_cell(0, 5, _latin1(f"Pay online: {payment_link}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    return pdf.to_bytes()


def render_receipt(order: Order, customer: Customer) -> bytes:
    """Receipt issued once the payment is confirmed."""
    issued = _order_datetime(order)
    pdf = OrderDocument("RECEIPT")
    pdf.billing_block(customer, [
        ("Receipt No.", order.id),
        ("Date", issued.strftime("%d/%m/%Y")),
        ("Time", issued.strftime("%H:%M:%S")),
        ("Payment Status", order.payment_status.value),
    ])
    pdf.items_table(order)
    pdf.totals([
        ("Subtotal", _pdf_amount(order.total)),
        ("Tax (0%)", _pdf_amount(0)),
        ("Total Paid", _pdf_amount(order.total)),
    ])
    pdf.note("Thank you for your purchase!")
    return pdf.to_bytes()
