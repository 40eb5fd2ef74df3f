# Overview: Service-layer operations for orders; pricing, stock movement, cancel/refund, import/export.

"""
Order Service

Order placement prices each line from the catalog (respecting product-level
discount), persists the order with its items and decrements stock, all in one
transaction. Cancel and refund put stock back; delete never does.
"""

from __future__ import annotations

import json
import math
from typing import Any

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import (
    Order,
    OrderItem,
    Product,
    ORDER_STATUSES,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CANCELED,
    ORDER_STATUS_REFUNDED,
)
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, NotFoundError
from .tabular_service import ExportFile, build_export


class OrderError(Exception):
    """Raised for order operation errors (400)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


ORDER_EXPORT_COLUMNS = [
    "id",
    "customer_name",
    "customer_phone",
    "customer_address",
    "status",
    "tax",
    "discount",
    "total",
    "created_at",
    "items",
]

ITEM_EXPORT_FIELDS = ("product_id", "product_name", "quantity", "unit_price", "discount", "total_price")


def _money(value: float) -> float:
    return round(float(value), 2)


def _number(value: Any, field: str, *, default: float | None = 0.0) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number")
    return number


def _quantity(value: Any, position: int) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"items[{position}].quantity must be an integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f"items[{position}].quantity must be an integer")
    if value < 1:
        raise ValidationError(f"items[{position}].quantity must be >= 1")
    return value


def _optional_id(value: Any, field: str) -> int | None:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if value is None or value == "" or value == 0:
        return None
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer")
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, int):
        return value
    raise ValidationError(f"{field} must be an integer")


def price_item(item: dict, product: Product | None) -> tuple[float, float]:
    """
    Effective (unit_price, discount) for one order line.

    Catalog items: a positive caller-supplied unit_price wins; otherwise
    product.price minus the effective discount (caller's discount if given,
    else the product's). Ad hoc items: unit_price minus discount.
    Negative results clamp to zero.
    """
    supplied_price = _number(item.get("unit_price"), "unit_price", default=None)
    supplied_discount = _number(item.get("discount"), "discount", default=None)

    if product is not None:
        discount = supplied_discount if supplied_discount is not None else (product.discount or 0.0)
        if supplied_price is not None and supplied_price > 0:
            return _money(supplied_price), _money(discount)
        return _money(max(0.0, (product.price or 0.0) - discount)), _money(discount)

    discount = supplied_discount or 0.0
    return _money(max(0.0, (supplied_price or 0.0) - discount)), _money(discount)


def list_orders() -> list[dict]:
    orders = db.session.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).all()
    return [o.to_dict() for o in orders]


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def create_order(payload: dict) -> Order:
    """
    Place an order. Items are priced and applied in request order; the order,
    its items and every stock decrement commit together or not at all.
    """
    payload = payload or {}
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item")

    tax = _number(payload.get("tax"), "tax")
    order_discount = _number(payload.get("discount"), "discount")

    order = Order(
        customer_name=payload.get("customer_name"),
        customer_phone=payload.get("customer_phone"),
        customer_address=payload.get("customer_address"),
        tax=_money(tax),
        discount=_money(order_discount),
        status=ORDER_STATUS_PENDING,
        total=0.0,
    )

    allow_negative = current_app.config.get("ALLOW_NEGATIVE_STOCK", True)
    requested: dict[int, int] = {}
    products: dict[int, Product] = {}

    try:
        db.session.add(order)
        db.session.flush()

        subtotal = 0.0
        for position, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError(f"items[{position}] must be an object")
            quantity = _quantity(item.get("quantity"), position)
            product_id = _optional_id(item.get("product_id"), f"items[{position}].product_id")

            product = None
            if product_id is not None:
                product = products.get(product_id) or db.session.get(Product, product_id)
                if product is None:
                    raise OrderError(
                        f"Product {product_id} not found",
                        details={"product_id": product_id},
                    )
                products[product_id] = product

            unit_price, discount = price_item(item, product)
            line_total = _money(quantity * unit_price)
            subtotal += line_total

            db.session.add(OrderItem(
                order_id=order.id,
                product_id=product_id,
                product_name=product.name if product is not None else (item.get("product_name") or item.get("name") or ""),
                quantity=quantity,
                unit_price=unit_price,
                discount=discount,
                total_price=line_total,
            ))

            if product is not None:
                requested[product_id] = requested.get(product_id, 0) + quantity

        if not allow_negative:
            _check_stock(products, requested)

        for product_id, quantity in requested.items():
            _adjust_stock(product_id, -quantity)

        order.total = _money(subtotal - order.discount + order.tax)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(order)
    return order


def _check_stock(products: dict[int, Product], requested: dict[int, int]) -> None:
    insufficient = []
    for product_id, qty in requested.items():
        on_hand = products[product_id].quantity or 0
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })
    if insufficient:
        raise OrderError("Insufficient stock to place order", details={"items": insufficient})


def _adjust_stock(product_id: int, delta: int) -> int:
    """Relative stock update in SQL; returns the number of rows touched."""
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(quantity=Product.quantity + delta)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def _restore_stock(order: Order) -> int:
    restored = 0
    for item in order.items:
        if item.product_id is None:
            continue
        try:
            touched = _adjust_stock(item.product_id, item.quantity)
        except SQLAlchemyError:
            current_app.logger.exception(
                "Failed to restore stock for product %s (order %s)", item.product_id, order.id
            )
            continue
        if not touched:
            current_app.logger.warning(
                "Product %s no longer exists; stock for order %s item %s not restored",
                item.product_id, order.id, item.id,
            )
            continue
        restored += 1
    return restored


def _close_order(order_id: int, status: str) -> Order:
    order = get_order(order_id)
    if order.status == status:
        raise OrderError(f"Order is already {status}")

    # Only a pending order still holds stock; canceled <-> refunded just relabels.
    if order.status == ORDER_STATUS_PENDING:
        _restore_stock(order)

    order.status = status
    db.session.commit()
    return order


def cancel_order(order_id: int) -> Order:
    return _close_order(order_id, ORDER_STATUS_CANCELED)


def refund_order(order_id: int) -> Order:
    return _close_order(order_id, ORDER_STATUS_REFUNDED)


def delete_order(order_id: int) -> None:
    """Remove the order and its items. Stock is left as it is."""
    order = get_order(order_id)
    db.session.delete(order)
    db.session.commit()


def delete_all_orders() -> int:
    db.session.query(OrderItem).delete()
    deleted = db.session.query(Order).delete()
    db.session.commit()
    return deleted


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------

def _export_row(order: Order) -> dict:
    row = order.to_dict()
    row["items"] = json.dumps(
        [{k: item.to_dict()[k] for k in ITEM_EXPORT_FIELDS} for item in order.items],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return row


def export_orders(fmt: str | None) -> ExportFile:
    orders = db.session.query(Order).order_by(Order.id.asc()).all()
    rows = [_export_row(o) for o in orders]
    return build_export(resource="orders", columns=ORDER_EXPORT_COLUMNS, rows=rows, fmt=fmt)


def _parse_items(raw: Any) -> list[dict]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("items must be a JSON array")
    if not isinstance(raw, list) or not all(isinstance(i, dict) for i in raw):
        raise ValidationError("items must be a JSON array of objects")
    return raw


def _build_imported_order(raw: dict) -> Order:
    row = {str(k).strip().lower(): v for k, v in raw.items() if k is not None}
    items = _parse_items(row.get("items"))

    tax = _money(_number(row.get("tax"), "tax"))
    discount = _money(_number(row.get("discount"), "discount"))

    status = str(row.get("status") or ORDER_STATUS_PENDING).strip().lower()
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status: {status}")

    created_at = row.get("created_at")
    if created_at is not None and not hasattr(created_at, "year"):
        try:
            created_at = parse_iso_datetime(str(created_at))
        except ValueError:
            raise ValidationError("created_at must be an ISO-8601 datetime")

    order = Order(
        customer_name=row.get("customer_name"),
        customer_phone=None if row.get("customer_phone") is None else str(row.get("customer_phone")),
        customer_address=row.get("customer_address"),
        tax=tax,
        discount=discount,
        status=status,
    )
    if created_at is not None:
        order.created_at = created_at

    subtotal = 0.0
    for position, item in enumerate(items):
        quantity = _quantity(item.get("quantity"), position)
        unit_price = _money(_number(item.get("unit_price"), "unit_price"))
        product_id = _optional_id(item.get("product_id"), f"items[{position}].product_id")
        if product_id is not None and db.session.get(Product, product_id) is None:
            product_id = None
        line_total = _money(quantity * unit_price)
        subtotal += line_total
        order.items.append(OrderItem(
            product_id=product_id,
            product_name=item.get("product_name") or item.get("name") or "",
            quantity=quantity,
            unit_price=unit_price,
            discount=_money(_number(item.get("discount"), "discount")),
            total_price=line_total,
        ))

    if subtotal > 0:
        order.total = _money(subtotal - discount + tax)
    else:
        order.total = _money(_number(row.get("total"), "total"))
    return order


def import_orders(rows: list[dict]) -> dict:
    """
    Re-create orders from exported rows. Every row becomes a new order; stock
    is not touched. Bad rows are counted in errors and skipped.
    """
    created = 0
    error_details: list[dict] = []

    for idx, raw in enumerate(rows, start=2):
        try:
            order = _build_imported_order(raw if isinstance(raw, dict) else {})
            db.session.add(order)
            db.session.commit()
        except ValidationError as e:
            db.session.rollback()
            error_details.append({"row": idx, "error": str(e)})
            continue
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.warning("Order import row %s failed: %s", idx, e)
            error_details.append({"row": idx, "error": str(getattr(e, "orig", None) or e)})
            continue
        created += 1

    return {
        "created": created,
        "updated": 0,
        "errors": len(error_details),
        "error_details": error_details,
    }


def order_export_rows() -> tuple[list[dict], list[dict]]:
    """Flat order and order-item rows for the spreadsheet backup bundle."""
    orders = db.session.query(Order).order_by(Order.id.asc()).all()
    order_rows = [o.to_dict() for o in orders]
    item_rows = [item.to_dict() for o in orders for item in o.items]
    return order_rows, item_rows

