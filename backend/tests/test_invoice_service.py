"""
Invoice issuer tests.

Verifies:
- One invoice per order; repeated calls return it unchanged
- Totals are frozen from the order at issue time
- A rendering failure leaves a claimed invoice that a retry completes
- Drafts and cancelled orders cannot be invoiced
- The ReportLab renderer writes a PDF under the storage directory
"""

import os
import re

import pytest

from conftest import RecordingRenderer

from inventory_flow.extensions import db
from inventory_flow.models import Invoice
from inventory_flow.services import invoice_service, order_service, products_service
from inventory_flow.services.errors import ForbiddenError, InvalidStateError, NotFoundError
from inventory_flow.services.rendering import ReportLabInvoiceRenderer, format_cents


@pytest.fixture
def confirmed_order(soda, chips, staff):
    order = order_service.create_draft(
        staff.id,
        [
            {"product_id": soda.id, "quantity": 1, "unit": "case"},
            {"product_id": chips.id, "quantity": 3, "unit": "piece"},
        ],
        discount_kind="percent",
        discount_value=1000,
        customer_name="Sari-sari Store <Main>",
    )
    return order_service.confirm_order(order.id, staff.id)


class TestIssueInvoice:

    def test_issue_freezes_totals(self, confirmed_order, staff, renderer):
        invoice = invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=renderer)

        assert re.fullmatch(r"INV-\d{4}-00001", invoice.invoice_number)
        assert invoice.subtotal_cents == 5 * 250 + 3 * 100
        assert invoice.discount_amount_cents == 155
        assert invoice.total_amount_cents == 1550 - 155
        assert invoice.document_ref == f"invoices/{invoice.invoice_number}.pdf"
        assert renderer.calls == [invoice.invoice_number]

    def test_repeated_issue_is_idempotent(self, confirmed_order, staff, renderer):
        first = invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=renderer)
        second = invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=renderer)

        assert second.id == first.id
        assert second.document_ref == first.document_ref
        assert len(renderer.calls) == 1
        assert db.session.query(Invoice).count() == 1

    def test_render_failure_then_retry(self, confirmed_order, staff):
        failing = RecordingRenderer(fail_times=1)

        with pytest.raises(OSError):
            invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=failing)

        claimed = invoice_service.get_invoice_for_order(confirmed_order.id)
        assert claimed.document_ref is None
        assert claimed.to_dict()["is_rendered"] is False
        claimed_number = claimed.invoice_number

        invoice = invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=failing)
        assert invoice.invoice_number == claimed_number
        assert invoice.document_ref == f"invoices/{claimed_number}.pdf"
        assert invoice.to_dict()["is_rendered"] is True
        assert failing.calls == [claimed_number, claimed_number]
        assert db.session.query(Invoice).count() == 1

    def test_delivered_order_can_be_invoiced(self, confirmed_order, staff, renderer):
        order_service.deliver_order(confirmed_order.id, staff.id)
        invoice = invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=renderer)
        assert invoice.is_rendered

    def test_invoice_totals_ignore_later_price_edits(self, confirmed_order, soda, staff, admin, renderer):
        products_service.update_product(
            product_id=soda.id, payload={"price_per_piece_cents": 1}, actor_user_id=admin.id
        )
        invoice = invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=renderer)
        assert invoice.subtotal_cents == 1550

    def test_draft_cannot_be_invoiced(self, soda, staff, renderer):
        order = order_service.create_draft(staff.id, [{"product_id": soda.id, "quantity": 1, "unit": "case"}])
        with pytest.raises(InvalidStateError):
            invoice_service.issue_invoice(order.id, staff.id, renderer=renderer)
        assert renderer.calls == []

    def test_cancelled_order_cannot_be_invoiced(self, confirmed_order, staff, renderer):
        order_service.cancel_order(confirmed_order.id, staff.id)
        with pytest.raises(InvalidStateError):
            invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=renderer)

    def test_other_staff_cannot_issue(self, confirmed_order, other_staff, renderer):
        with pytest.raises(ForbiddenError):
            invoice_service.issue_invoice(confirmed_order.id, other_staff.id, renderer=renderer)

    def test_unknown_order(self, staff, renderer):
        with pytest.raises(NotFoundError):
            invoice_service.issue_invoice(404, staff.id, renderer=renderer)

    def test_numbers_are_sequential_across_orders(self, soda, staff, renderer):
        numbers = []
        for _ in range(2):
            order = order_service.create_draft(staff.id, [{"product_id": soda.id, "quantity": 1, "unit": "piece"}])
            order_service.confirm_order(order.id, staff.id)
            numbers.append(invoice_service.issue_invoice(order.id, staff.id, renderer=renderer).invoice_number)
        assert numbers[0].endswith("-00001")
        assert numbers[1].endswith("-00002")


class TestReportLabRenderer:

    def test_default_renderer_writes_pdf(self, app, confirmed_order, staff):
        invoice = invoice_service.issue_invoice(confirmed_order.id, staff.id)

        path = os.path.join(app.config["INVOICE_STORAGE_DIR"], f"{invoice.invoice_number}.pdf")
        assert invoice.document_ref == f"invoices/{invoice.invoice_number}.pdf"
        assert os.path.exists(path)
        with open(path, "rb") as fh:
            assert fh.read(5) == b"%PDF-"

    def test_rerender_overwrites_same_file(self, tmp_path, confirmed_order, staff, renderer):
        invoice = invoice_service.issue_invoice(confirmed_order.id, staff.id, renderer=renderer)
        document = invoice_service.build_invoice_document(invoice)
        pdf_renderer = ReportLabInvoiceRenderer(storage_dir=str(tmp_path / "out"))

        first = pdf_renderer.render(document)
        second = pdf_renderer.render(document)

        assert first == second
        assert os.listdir(tmp_path / "out") == [f"{invoice.invoice_number}.pdf"]

    def test_format_cents(self):
        assert format_cents(123456) == "1,234.56"
        assert format_cents(5) == "0.05"
        assert format_cents(-155) == "-1.55"
