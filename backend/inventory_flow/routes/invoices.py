# Overview: Flask API routes for invoices; read access to issued invoices.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth
from ..services import invoice_service
from ..services.errors import DomainError

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    order_id = request.args.get("order_id", type=int)
    try:
        if order_id is not None:
            invoices = [invoice_service.get_invoice_for_order(order_id)]
        else:
            invoices = invoice_service.list_invoices(limit=request.args.get("limit", 200, type=int))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"invoices": [i.to_dict() for i in invoices]})


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"invoice": invoice.to_dict()})
