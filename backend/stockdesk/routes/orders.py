# Overview: Flask API routes for orders; placement, cancel/refund, invoices, import/export.

# backend/stockdesk/routes/orders.py
"""Order API routes"""

import io

from flask import Blueprint, request, send_file, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..services import order_service
from ..services.order_service import OrderError
from ..services.pdf_service import render_invoice
from ..services.tabular_service import read_upload_rows
from ..validation import ValidationError, NotFoundError
from .catalog import send_export, storage_error


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
def list_orders_route():
    """List orders, newest first (without items)."""
    try:
        return order_service.list_orders()
    except SQLAlchemyError as e:
        return storage_error(e, "list orders")


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except SQLAlchemyError as e:
        return storage_error(e, "load order")
    return order.to_dict(include_items=True)


@orders_bp.post("")
def create_order_route():
    """
    Place an order.

    Body: customer_name, customer_phone, customer_address, tax, discount,
    items: [{product_id?, quantity, unit_price?, discount?, product_name?}]
    """
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.create_order(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except OrderError as e:
        return {"error": str(e), "details": e.details}, 400
    except SQLAlchemyError as e:
        return storage_error(e, "create order")

    current_app.logger.info("Order %s created: total=%s items=%s", order.id, order.total, len(order.items))
    return {
        "id": order.id,
        "message": "Order created successfully",
        "order": order.to_dict(include_items=True),
    }, 201


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    """Delete an order and its items. Stock is not restored (use cancel for that)."""
    try:
        order_service.delete_order(order_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except SQLAlchemyError as e:
        return storage_error(e, "delete order")
    return {"message": "Order deleted successfully"}


@orders_bp.route("/delete-all", methods=["DELETE", "POST"])
def delete_all_orders_route():
    try:
        deleted = order_service.delete_all_orders()
    except SQLAlchemyError as e:
        return storage_error(e, "delete all orders")
    return {"message": f"Deleted {deleted} orders", "deleted": deleted}


def _close_order(order_id: int, action, verb: str):
    try:
        order = action(order_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except OrderError as e:
        return {"error": str(e), "details": e.details}, 400
    except SQLAlchemyError as e:
        return storage_error(e, f"{verb} order")
    return {"message": f"Order {order.status} successfully", "order": order.to_dict(include_items=True)}


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    """Cancel a pending order and put its stock back."""
    return _close_order(order_id, order_service.cancel_order, "cancel")


@orders_bp.post("/<int:order_id>/refund")
def refund_order_route(order_id: int):
    """Refund an order; stock is put back if the order was still pending."""
    return _close_order(order_id, order_service.refund_order, "refund")


@orders_bp.get("/<int:order_id>/invoice/pdf")
def invoice_pdf_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        pdf = render_invoice(order.to_dict(include_items=True), company=current_app.config["COMPANY_NAME"])
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except SQLAlchemyError as e:
        return storage_error(e, "render invoice")
    return send_file(
        io.BytesIO(pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"invoice-{order_id}.pdf",
    )


@orders_bp.get("/export")
def export_orders_route():
    try:
        export = order_service.export_orders(request.args.get("format"))
    except ValidationError as e:
        return {"error": str(e)}, 400
    except SQLAlchemyError as e:
        return storage_error(e, "export orders")
    return send_export(export)


@orders_bp.post("/import")
def import_orders_route():
    try:
        rows = read_upload_rows(request.files.get("file"))
    except ValidationError as e:
        return {"error": str(e)}, 400
    try:
        summary = order_service.import_orders(rows)
    except SQLAlchemyError as e:
        return storage_error(e, "import orders")
    current_app.logger.info("Imported orders: %s created, %s errors", summary["created"], summary["errors"])
    return summary
