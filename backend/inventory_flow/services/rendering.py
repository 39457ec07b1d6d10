# Overview: Invoice document rendering; turns frozen invoice data into a stored PDF and returns its reference.

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from typing import Protocol
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle


@dataclass(frozen=True)
class InvoiceLineItem:
    sku: str
    name: str
    order_unit: str
    cases_ordered: int
    pieces_per_case: int
    pieces: int
    unit_price_cents: int
    line_total_cents: int


@dataclass(frozen=True)
class InvoiceDocument:
    """Everything a renderer needs; built from stored snapshots only."""
    invoice_number: str
    order_number: str
    issued_at: datetime
    customer_name: str | None
    payment_method: str
    reference_number: str | None
    subtotal_cents: int
    discount_amount_cents: int
    total_amount_cents: int
    lines: list[InvoiceLineItem] = field(default_factory=list)


class DocumentRenderer(Protocol):
    def render(self, document: InvoiceDocument) -> str:
        """
        Produce the artifact and return a durable reference to it.

        Rendering the same invoice number twice must overwrite, not add,
        the stored artifact.
        """
        ...


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100:,}.{cents % 100:02d}"


class ReportLabInvoiceRenderer:
    """
    One A4 page holding two copies of the invoice (customer and company),
    written to `<storage_dir>/<invoice_number>.pdf`.

    The file is written to a temporary name and moved into place, so a
    reader never sees a half-written PDF and a re-render replaces the
    previous file.
    """

    COPY_LABELS = ("CUSTOMER COPY", "COMPANY COPY")

    def __init__(self, storage_dir: str, company_name: str = "INVENTORY FLOW"):
        self.storage_dir = storage_dir
        self.company_name = company_name

    def _styles(self):
        styles = getSampleStyleSheet()
        styles.add(ParagraphStyle(name="InvTitle", parent=styles["Heading2"], spaceAfter=2))
        styles.add(ParagraphStyle(name="InvSmall", parent=styles["Normal"], fontSize=8, leading=10))
        return styles

    def _copy_flowables(self, document: InvoiceDocument, label: str, styles) -> list:
        elems = [
            Paragraph(f"{self.company_name} INVOICE {document.invoice_number}", styles["InvTitle"]),
            Paragraph(
                f"{label}<br/>"
                f"Order: {document.order_number}<br/>"
                f"Customer: {escape(document.customer_name or '-')}<br/>"
                f"Payment: {document.payment_method}"
                + (f" (ref {document.reference_number})" if document.reference_number else "")
                + f"<br/>Issued: {document.issued_at.strftime('%Y-%m-%d %H:%M')} UTC",
                styles["InvSmall"],
            ),
            Spacer(1, 6),
        ]

        data = [["SKU", "Item", "Qty", "Pieces", "Unit price", "Amount"]]
        for line in document.lines:
            qty = f"{line.cases_ordered} {line.order_unit}{'s' if line.cases_ordered != 1 else ''}"
            if line.order_unit == "case":
                qty += f" x {line.pieces_per_case}"
            data.append([
                line.sku,
                Paragraph(escape(line.name), styles["InvSmall"]),
                qty,
                str(line.pieces),
                format_cents(line.unit_price_cents),
                format_cents(line.line_total_cents),
            ])
        data.append(["", "", "", "", "Subtotal", format_cents(document.subtotal_cents)])
        data.append(["", "", "", "", "Discount", format_cents(-document.discount_amount_cents)])
        data.append(["", "", "", "", "TOTAL", format_cents(document.total_amount_cents)])

        table = Table(data, colWidths=[70, 185, 80, 50, 70, 70], repeatRows=1)
        table.setStyle(TableStyle([
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
            ("GRID", (0, 0), (-1, -4), 0.25, colors.grey),
            ("ALIGN", (2, 1), (-1, -1), "RIGHT"),
            ("FONTNAME", (4, -1), (-1, -1), "Helvetica-Bold"),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]))
        elems.append(table)
        return elems

    def build_pdf(self, document: InvoiceDocument) -> bytes:
        buf = BytesIO()
        doc = SimpleDocTemplate(
            buf, pagesize=A4,
            leftMargin=30, rightMargin=30, topMargin=30, bottomMargin=30,
            title=f"Invoice {document.invoice_number}",
        )
        styles = self._styles()

        elems = []
        for index, label in enumerate(self.COPY_LABELS):
            if index:
                elems.append(Spacer(1, 14))
                elems.append(Paragraph("- " * 70, styles["InvSmall"]))
                elems.append(Spacer(1, 14))
            elems.extend(self._copy_flowables(document, label, styles))

        doc.build(elems)
        return buf.getvalue()

    def render(self, document: InvoiceDocument) -> str:
        os.makedirs(self.storage_dir, exist_ok=True)
        filename = f"{document.invoice_number}.pdf"
        target = os.path.join(self.storage_dir, filename)

        pdf_bytes = self.build_pdf(document)
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(pdf_bytes)
            os.replace(tmp_path, target)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        return f"invoices/{filename}"
