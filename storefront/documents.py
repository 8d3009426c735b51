"""
PDF documents attached to customer emails: the tax invoice / receipt sent
with the order confirmation and the credit note sent after a refund.

Both are laid out with reportlab's platypus flowables on A4. The built-in
Helvetica fonts carry no rupee glyph, so amounts are written as ``Rs.``.
"""

from datetime import date
from decimal import Decimal
from io import BytesIO
from typing import Any, List, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import (
    Flowable,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from storefront.domain import Address, Order

PDF_CONTENT_TYPE = "application/pdf"
DATE_FORMAT = "%d %b %Y"

_styles = getSampleStyleSheet()
STORE_STYLE = ParagraphStyle(
    "Store", parent=_styles["Title"], fontSize=20, alignment=TA_CENTER
)
HEADING_STYLE = ParagraphStyle(
    "DocumentHeading", parent=_styles["Heading2"], alignment=TA_CENTER
)
BODY_STYLE = _styles["BodyText"]

ITEM_TABLE_STYLE = TableStyle(
    [
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]
)
DETAILS_TABLE_STYLE = TableStyle(
    [
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTNAME", (2, 0), (2, -1), "Helvetica-Bold"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]
)
TOTALS_TABLE_STYLE = TableStyle(
    [
        ("ALIGN", (1, 0), (1, -1), "RIGHT"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (0, -1), (-1, -1), 0.75, colors.black),
    ]
)


def format_rupees(amount: Any) -> str:
    return f"Rs. {Decimal(amount or 0):,.2f}"


def invoice_number(order: Order) -> str:
    return order.order_id.replace("-", "")[:8].upper()


def _paragraph(text: str, style: ParagraphStyle = BODY_STYLE) -> Paragraph:
    return Paragraph(escape(text), style)


def _address_lines(address: Address) -> str:
    lines = [address.full_name, address.address_line1]
    if address.address_line2:
        lines.append(address.address_line2)
    lines.append(f"{address.city}, {address.state} - {address.pincode}")
    lines.append(address.country)
    return "<br/>".join(escape(line) for line in lines)


def _header(store_name: str, gstin: Optional[str], title: str) -> List[Flowable]:
    story: List[Flowable] = [_paragraph(store_name, STORE_STYLE)]
    if gstin:
        story.append(_paragraph(f"GSTIN: {gstin}", HEADING_STYLE))
    story.append(_paragraph(title, HEADING_STYLE))
    story.append(Spacer(1, 12))
    return story


def _details(rows: Sequence[Sequence[str]]) -> Table:
    return Table(
        [list(row) for row in rows],
        colWidths=[90, 160, 90, 155],
        style=DETAILS_TABLE_STYLE,
        hAlign="LEFT",
    )


def _items(order: Order) -> Table:
    rows: List[List[Any]] = [["Item", "HSN", "Qty", "Unit price", "Amount"]]
    for item in order.items:
        rows.append(
            [
                _paragraph(item.product_name),
                item.hsn or "",
                str(item.quantity),
                format_rupees(item.unit_price),
                format_rupees(item.line_total),
            ]
        )
    return Table(
        rows,
        colWidths=[185, 60, 40, 100, 110],
        style=ITEM_TABLE_STYLE,
        repeatRows=1,
    )


def _totals(rows: Sequence[Sequence[str]]) -> Table:
    return Table(
        [list(row) for row in rows],
        colWidths=[385, 110],
        style=TOTALS_TABLE_STYLE,
    )


def _build(story: List[Flowable], title: str, store_name: str) -> bytes:
    buffer = BytesIO()
    document = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=50,
        rightMargin=50,
        topMargin=50,
        bottomMargin=50,
        title=title,
        author=store_name,
        pageCompression=0,
    )
    document.build(story)
    return buffer.getvalue()


def receipt_pdf(
    order: Order,
    store_name: str,
    gstin: Optional[str] = None,
) -> bytes:
    """Tax invoice / receipt for a paid order."""
    ordered_on = order.created_at.strftime(DATE_FORMAT)
    story = _header(store_name, gstin, "TAX INVOICE / RECEIPT")
    story.append(
        _details(
            [
                ["Invoice No", invoice_number(order), "Date", ordered_on],
                [
                    "Order ID",
                    order.order_id,
                    "Payment ID",
                    order.gateway_payment_id or "",
                ],
            ]
        )
    )
    story.append(Spacer(1, 12))
    story.append(
        Table(
            [
                [
                    _paragraph("Bill To", _styles["Heading4"]),
                    _paragraph("Ship To", _styles["Heading4"]),
                ],
                [
                    Paragraph(_address_lines(order.billing_address), BODY_STYLE),
                    Paragraph(_address_lines(order.shipping_address), BODY_STYLE),
                ],
            ],
            colWidths=[250, 245],
            style=TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]),
        )
    )
    story.append(Spacer(1, 12))
    story.append(_items(order))
    story.append(Spacer(1, 12))
    story.append(
        _totals(
            [
                ["Subtotal", format_rupees(order.subtotal)],
                ["Shipping", format_rupees(order.shipping_cost)],
                ["Total paid", format_rupees(order.total_amount)],
            ]
        )
    )
    story.append(Spacer(1, 18))
    story.append(_paragraph(f"Thank you for shopping with {store_name}."))
    return _build(story, f"Receipt {order.order_id}", store_name)


def credit_note_pdf(
    order: Order,
    number: str,
    reason: str,
    issued_on: date,
    store_name: str,
    gstin: Optional[str] = None,
) -> bytes:
    deduction = order.return_deduction_amount or Decimal("0")
    story = _header(store_name, gstin, "CREDIT NOTE")
    rows = [
        ["Credit Note No", number, "Date", issued_on.strftime(DATE_FORMAT)],
        [
            "Against Order",
            invoice_number(order),
            "Original Date",
            order.created_at.strftime(DATE_FORMAT),
        ],
        ["Order ID", order.order_id, "Refund ID", order.refund_id or ""],
        ["Reason", reason, "", ""],
    ]
    story.append(_details(rows))
    story.append(Spacer(1, 12))
    story.append(_paragraph("Credit To", _styles["Heading4"]))
    story.append(Paragraph(_address_lines(order.billing_address), BODY_STYLE))
    story.append(Spacer(1, 12))
    story.append(_items(order))
    story.append(Spacer(1, 12))

    totals = [
        ["Order total", format_rupees(order.total_amount)],
    ]
    if deduction:
        totals.append(["Deductions", format_rupees(deduction)])
    totals.append(["Amount credited", format_rupees(order.refund_amount)])
    story.append(_totals(totals))
    story.append(Spacer(1, 18))
    story.append(
        _paragraph(
            "The credited amount has been refunded to the original payment method."
        )
    )
    return _build(story, f"Credit Note {number}", store_name)
