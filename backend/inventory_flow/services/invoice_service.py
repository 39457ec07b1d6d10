# Overview: Service-layer operations for invoices; one idempotent invoice per committed order.

"""
Invoice Issuer

issue_invoice() runs in three steps so that rendering (slow, external, may
fail) never happens while a row lock is held:

1. CLAIM: insert the order's invoice row with a fresh INV- number and the
   totals frozen from the line snapshots. The UNIQUE constraint on
   invoices.order_id decides races; the loser reads the winner's row.
2. RENDER: outside any transaction. The artifact is keyed by invoice
   number, so rendering again overwrites the same stored document.
3. FINALIZE: set document_ref only if it is still empty.

A crash between steps leaves a claimed row without document_ref; the next
call picks it up at step 2. Once document_ref is set, the invoice is
returned unchanged forever.
"""

from __future__ import annotations

import os

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, Order
from .concurrency import lock_for_update, run_in_transaction
from .document_service import INVOICE_PREFIX, next_document_number
from .errors import ConflictError, InvalidStateError, NotFoundError
from .order_service import compute_totals, lock_order
from .rendering import DocumentRenderer, InvoiceDocument, InvoiceLineItem, ReportLabInvoiceRenderer
from . import permission_service


INVOICEABLE_STATUSES = ("confirmed", "delivered")


def get_default_renderer() -> DocumentRenderer:
    storage_dir = current_app.config.get("INVOICE_STORAGE_DIR") or os.path.join(current_app.instance_path, "invoices")
    return ReportLabInvoiceRenderer(
        storage_dir=storage_dir,
        company_name=current_app.config.get("INVOICE_COMPANY_NAME", "INVENTORY FLOW"),
    )


def _require_invoiceable(order: Order) -> None:
    if order.status not in INVOICEABLE_STATUSES:
        raise InvalidStateError(
            f"Cannot invoice an order with status {order.status}",
            details={"order_id": order.id, "status": order.status},
        )


def _find_invoice(order_id: int) -> Invoice | None:
    return db.session.query(Invoice).filter(Invoice.order_id == order_id).one_or_none()


def _claim_invoice(order_id: int, actor_user_id: int | None) -> Invoice:
    def _op():
        order = lock_order(order_id)
        _require_invoiceable(order)

        existing = _find_invoice(order_id)
        if existing is not None:
            return existing

        totals = compute_totals(order)
        invoice = Invoice(
            invoice_number=next_document_number("invoice", INVOICE_PREFIX),
            order_id=order.id,
            subtotal_cents=totals["subtotal_cents"],
            discount_amount_cents=totals["discount_amount_cents"],
            total_amount_cents=totals["total_amount_cents"],
            created_by_user_id=actor_user_id,
        )
        db.session.add(invoice)
        db.session.flush()
        return invoice

    try:
        return run_in_transaction(_op, actor_user_id=actor_user_id)
    except IntegrityError:
        winner = _find_invoice(order_id)
        if winner is None:
            raise ConflictError(
                "Invoice claim conflicted but no invoice exists for the order",
                details={"order_id": order_id},
            )
        return winner


def build_invoice_document(invoice: Invoice) -> InvoiceDocument:
    order = invoice.order
    items = [
        InvoiceLineItem(
            sku=line.product.sku,
            name=line.product.name,
            order_unit=line.order_unit,
            cases_ordered=line.cases_ordered,
            pieces_per_case=line.pieces_per_case_snapshot,
            pieces=line.computed_pieces,
            unit_price_cents=line.unit_price_snapshot_cents,
            line_total_cents=line.line_total_cents,
        )
        for line in order.lines
    ]
    return InvoiceDocument(
        invoice_number=invoice.invoice_number,
        order_number=order.order_number,
        issued_at=invoice.created_at,
        customer_name=order.customer_name,
        payment_method=order.payment_method,
        reference_number=order.reference_number,
        subtotal_cents=invoice.subtotal_cents,
        discount_amount_cents=invoice.discount_amount_cents,
        total_amount_cents=invoice.total_amount_cents,
        lines=items,
    )


def _finalize_invoice(invoice_id: int, document_ref: str, actor_user_id: int | None) -> Invoice:
    def _op():
        invoice = (
            lock_for_update(db.session.query(Invoice).filter(Invoice.id == invoice_id))
            .populate_existing()
            .one()
        )
        if invoice.document_ref is None:
            invoice.document_ref = document_ref
        return invoice

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def issue_invoice(order_id: int, actor_user_id: int | None, renderer: DocumentRenderer | None = None) -> Invoice:
    """
    Return the order's invoice, creating and rendering it if needed.

    Idempotent: repeated or concurrent calls for one order yield the same
    invoice row and the same document_ref.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    _require_invoiceable(order)
    permission_service.require_owner_or_admin(actor_user_id, order.created_by_user_id)

    invoice = _find_invoice(order_id)
    if invoice is not None and invoice.is_rendered:
        return invoice

    if invoice is None:
        invoice = _claim_invoice(order_id, actor_user_id)
        if invoice.is_rendered:
            return invoice

    document = build_invoice_document(invoice)
    invoice_id = invoice.id
    # Release the read transaction; rendering must not hold the database
    db.session.rollback()

    renderer = renderer or get_default_renderer()
    try:
        document_ref = renderer.render(document)
    except Exception:
        current_app.logger.exception("Rendering invoice %s failed", document.invoice_number)
        raise

    return _finalize_invoice(invoice_id, document_ref, actor_user_id)


# =============================================================================
# READS
# =============================================================================


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def get_invoice_for_order(order_id: int) -> Invoice:
    invoice = _find_invoice(order_id)
    if invoice is None:
        raise NotFoundError("Order has no invoice", details={"order_id": order_id})
    return invoice


def list_invoices(*, limit: int = 200) -> list[Invoice]:
    limit = max(1, min(int(limit), 1000))
    return db.session.query(Invoice).order_by(Invoice.id.desc()).limit(limit).all()
