# Overview: PDF rendering for invoices and reports (reportlab canvas).

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

HEADER_FILL = colors.HexColor("#2c3e50")
STRIPE_FILL = colors.HexColor("#f4f7fb")
TEXT_COLOR = colors.HexColor("#111827")
MUTED_COLOR = colors.HexColor("#374151")

MARGIN = 40
ROW_HEIGHT = 20
HEADER_BAND_HEIGHT = 64
FOOTER_RESERVE = 60


@dataclass(frozen=True)
class Column:
    label: str
    width: float  # fraction of the usable page width
    align: str = "left"


def fmt_money(value: Any) -> str:
    return f"{float(value or 0):.2f}"


class PdfDocument:
    """
    Thin layout helper over a reportlab canvas: header band, key/value lines,
    striped tables that continue on a new page when they run out of room.
    """

    def __init__(self, title: str, company: str):
        self.buffer = io.BytesIO()
        self.canvas = canvas.Canvas(self.buffer, pagesize=A4)
        self.canvas.setTitle(title)
        self.page_width, self.page_height = A4
        self.usable_width = self.page_width - 2 * MARGIN
        self.title = title
        self.company = company
        self.y = self.page_height - MARGIN
        self._header_band()

    def _header_band(self) -> None:
        c = self.canvas
        top = self.page_height - MARGIN
        c.setFillColor(HEADER_FILL)
        c.rect(MARGIN, top - HEADER_BAND_HEIGHT, self.usable_width, HEADER_BAND_HEIGHT, stroke=0, fill=1)
        c.setFillColor(colors.white)
        c.setFont("Helvetica-Bold", 20)
        c.drawCentredString(self.page_width / 2, top - 28, self.company)
        c.setFont("Helvetica", 12)
        c.drawCentredString(self.page_width / 2, top - 48, self.title)
        self.y = top - HEADER_BAND_HEIGHT - 20

    def new_page(self) -> None:
        self.canvas.showPage()
        self.y = self.page_height - MARGIN

    def ensure_room(self, height: float) -> bool:
        """Start a new page if height does not fit; returns True when it did."""
        if self.y - height < MARGIN + FOOTER_RESERVE:
            self.new_page()
            return True
        return False

    def text_line(self, text: str, *, bold: bool = False, size: int = 10, color=MUTED_COLOR) -> None:
        self.ensure_room(size + 6)
        c = self.canvas
        c.setFillColor(color)
        c.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        c.drawString(MARGIN, self.y, text)
        self.y -= size + 6

    def spacer(self, height: float = 10) -> None:
        self.y -= height

    def _draw_cells(self, columns: Sequence[Column], values: Sequence[str], baseline: float) -> None:
        c = self.canvas
        x = MARGIN
        for col, value in zip(columns, values):
            width = col.width * self.usable_width
            text = str(value)
            max_chars = max(int(width / 5.5), 4)
            if len(text) > max_chars:
                text = text[: max_chars - 3] + "..."
            if col.align == "right":
                c.drawRightString(x + width - 6, baseline, text)
            else:
                c.drawString(x + 6, baseline, text)
            x += width

    def _table_header(self, columns: Sequence[Column]) -> None:
        c = self.canvas
        c.setFillColor(HEADER_FILL)
        c.rect(MARGIN, self.y - ROW_HEIGHT, self.usable_width, ROW_HEIGHT, stroke=0, fill=1)
        c.setFillColor(colors.white)
        c.setFont("Helvetica-Bold", 10)
        self._draw_cells(columns, [col.label for col in columns], self.y - ROW_HEIGHT + 6)
        self.y -= ROW_HEIGHT

    def table(self, columns: Sequence[Column], rows: Sequence[Sequence[Any]]) -> None:
        self.ensure_room(ROW_HEIGHT * 2)
        self._table_header(columns)
        c = self.canvas
        for idx, row in enumerate(rows):
            if self.ensure_room(ROW_HEIGHT):
                self._table_header(columns)
            if idx % 2 == 0:
                c.setFillColor(STRIPE_FILL)
                c.rect(MARGIN, self.y - ROW_HEIGHT, self.usable_width, ROW_HEIGHT, stroke=0, fill=1)
            c.setFillColor(TEXT_COLOR)
            c.setFont("Helvetica", 10)
            self._draw_cells(columns, row, self.y - ROW_HEIGHT + 6)
            self.y -= ROW_HEIGHT
        self.spacer(12)

    def totals(self, lines: Sequence[tuple[str, str]], *, emphasize_last: bool = True) -> None:
        c = self.canvas
        right = MARGIN + self.usable_width
        self.ensure_room(len(lines) * 16 + 10)
        for idx, (label, value) in enumerate(lines):
            bold = emphasize_last and idx == len(lines) - 1
            c.setFillColor(TEXT_COLOR)
            c.setFont("Helvetica-Bold" if bold else "Helvetica", 11 if bold else 10)
            c.drawRightString(right - 90, self.y, label)
            c.drawRightString(right - 6, self.y, value)
            self.y -= 16

    def render(self) -> bytes:
        self.canvas.save()
        return self.buffer.getvalue()


def render_table_report(
    *,
    title: str,
    company: str,
    summary: Sequence[str],
    columns: Sequence[Column],
    rows: Sequence[Sequence[Any]],
) -> bytes:
    doc = PdfDocument(title, company)
    for line in summary:
        doc.text_line(line)
    doc.spacer(6)
    doc.table(columns, rows)
    return doc.render()


INVOICE_COLUMNS = (
    Column("Item", 0.46),
    Column("Qty", 0.12, "right"),
    Column("Unit Price", 0.14, "right"),
    Column("Discount", 0.13, "right"),
    Column("Total", 0.15, "right"),
)


def invoice_totals(order: dict) -> list[tuple[str, str]]:
    """Totals block lines. Total is the stored order total, never recomputed."""
    subtotal = sum(float(item.get("total_price") or 0) for item in order.get("items") or [])
    return [
        ("Subtotal", fmt_money(subtotal)),
        ("Discount", f"-{fmt_money(order.get('discount'))}"),
        ("Tax", fmt_money(order.get("tax"))),
        ("Total", fmt_money(order.get("total"))),
    ]


def render_invoice(order: dict, *, company: str) -> bytes:
    """
    Invoice for one order (order dict with items). The total printed is the
    stored order total; subtotal is the sum of the stored line totals.
    """
    doc = PdfDocument(f"Invoice #{order['id']}", company)
    doc.text_line(f"Invoice #: {order['id']}", bold=True, size=11, color=TEXT_COLOR)
    doc.text_line(f"Date: {order.get('created_at') or ''}")
    doc.text_line(f"Status: {str(order.get('status') or '').capitalize()}")
    doc.spacer(6)

    doc.text_line("Billed To", bold=True, size=11, color=TEXT_COLOR)
    doc.text_line(order.get("customer_name") or "Walk-in customer")
    if order.get("customer_phone"):
        doc.text_line(f"Phone: {order['customer_phone']}")
    if order.get("customer_address"):
        doc.text_line(f"Address: {order['customer_address']}")
    doc.spacer(8)

    items = order.get("items") or []
    doc.table(
        INVOICE_COLUMNS,
        [
            (
                item.get("product_name") or "",
                item.get("quantity") or 0,
                fmt_money(item.get("unit_price")),
                fmt_money(item.get("discount")),
                fmt_money(item.get("total_price")),
            )
            for item in items
        ],
    )

    doc.totals(invoice_totals(order))
    return doc.render()
