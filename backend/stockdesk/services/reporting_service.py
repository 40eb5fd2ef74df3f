# Overview: Read-only aggregate queries for reports and the dashboard, plus their PDF renderings.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Brand, Category, Supplier, Product, Order, ORDER_STATUS_PENDING
from ..time_utils import parse_iso_datetime, to_utc_z
from .pdf_service import Column, fmt_money, render_table_report


class ReportError(ValueError):
    """Raised for invalid report parameters."""


def _parse_bound(value: str | None, name: str):
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ReportError(f"{name} must be an ISO-8601 datetime")


def dashboard_stats() -> dict:
    inventory_value = db.session.query(
        func.coalesce(func.sum(Product.quantity * Product.price), 0.0)
    ).scalar()
    return {
        "totalProducts": db.session.query(func.count(Product.id)).scalar(),
        "totalBrands": db.session.query(func.count(Brand.id)).scalar(),
        "totalCategories": db.session.query(func.count(Category.id)).scalar(),
        "totalSuppliers": db.session.query(func.count(Supplier.id)).scalar(),
        "lowStockItems": (
            db.session.query(func.count(Product.id))
            .filter(Product.quantity <= Product.reorder_level)
            .scalar()
        ),
        "totalInventoryValue": round(float(inventory_value or 0), 2),
        "totalOrders": db.session.query(func.count(Order.id)).scalar(),
        "pendingOrders": (
            db.session.query(func.count(Order.id))
            .filter(Order.status == ORDER_STATUS_PENDING)
            .scalar()
        ),
    }


def inventory_report() -> dict:
    products = db.session.query(Product).order_by(Product.name.asc(), Product.id.asc()).all()
    total_quantity = sum(p.quantity or 0 for p in products)
    stock_value = sum((p.quantity or 0) * (p.price or 0) for p in products)
    return {
        "items": [
            {
                "id": p.id,
                "name": p.name,
                "sku": p.sku,
                "quantity": p.quantity,
                "price": p.price,
                "reorder_level": p.reorder_level,
                "low_stock": p.is_low_stock,
                "stock_value": round((p.quantity or 0) * (p.price or 0), 2),
            }
            for p in products
        ],
        "totals": {
            "products": len(products),
            "total_quantity": total_quantity,
            "stock_value": round(stock_value, 2),
            "low_stock_items": sum(1 for p in products if p.is_low_stock),
        },
    }


def sales_report(*, start: str | None = None, end: str | None = None) -> dict:
    start_dt = _parse_bound(start, "start")
    end_dt = _parse_bound(end, "end")
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("start must be before end")

    query = db.session.query(Order)
    if start_dt:
        query = query.filter(Order.created_at >= start_dt)
    if end_dt:
        query = query.filter(Order.created_at <= end_dt)
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    by_status: dict[str, int] = {}
    for o in orders:
        by_status[o.status] = by_status.get(o.status, 0) + 1

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "items": [o.to_dict() for o in orders],
        "totals": {
            "orders": len(orders),
            "total_sales": round(sum(o.total or 0 for o in orders), 2),
            "by_status": by_status,
        },
    }


def suppliers_report() -> dict:
    rows = (
        db.session.query(
            Supplier,
            func.count(Product.id).label("product_count"),
            func.coalesce(func.sum(Product.quantity * Product.price), 0.0).label("total_value"),
        )
        .outerjoin(Product, Product.supplier_id == Supplier.id)
        .group_by(Supplier.id)
        .order_by(Supplier.name.asc(), Supplier.id.asc())
        .all()
    )
    items = [
        {
            **supplier.to_dict(),
            "product_count": int(product_count or 0),
            "total_value": round(float(total_value or 0), 2),
        }
        for supplier, product_count, total_value in rows
    ]
    return {
        "items": items,
        "totals": {
            "suppliers": len(items),
            "total_value": round(sum(i["total_value"] for i in items), 2),
        },
    }


# ---------------------------------------------------------------------------
# PDF renderings
# ---------------------------------------------------------------------------

def inventory_report_pdf(company: str) -> bytes:
    report = inventory_report()
    totals = report["totals"]
    return render_table_report(
        title="Inventory Report",
        company=company,
        summary=[
            f"Products: {totals['products']}   Total Items: {totals['total_quantity']}   "
            f"Stock Value: {fmt_money(totals['stock_value'])}",
            f"Low stock items: {totals['low_stock_items']}",
        ],
        columns=(
            Column("Product", 0.45),
            Column("SKU", 0.2),
            Column("Qty", 0.15, "right"),
            Column("Price", 0.2, "right"),
        ),
        rows=[
            (p["name"] or "", p["sku"] or "", p["quantity"] or 0, fmt_money(p["price"]))
            for p in report["items"]
        ],
    )


def sales_report_pdf(company: str, *, start: str | None = None, end: str | None = None) -> bytes:
    report = sales_report(start=start, end=end)
    totals = report["totals"]
    return render_table_report(
        title="Sales Report",
        company=company,
        summary=[
            f"Orders: {totals['orders']}   Total Sales: {fmt_money(totals['total_sales'])}",
        ],
        columns=(
            Column("Order #", 0.14),
            Column("Date", 0.26),
            Column("Customer", 0.32),
            Column("Status", 0.13),
            Column("Total", 0.15, "right"),
        ),
        rows=[
            (o["id"], o["created_at"] or "", o["customer_name"] or "", o["status"], fmt_money(o["total"]))
            for o in report["items"]
        ],
    )


def suppliers_report_pdf(company: str) -> bytes:
    report = suppliers_report()
    return render_table_report(
        title="Suppliers Report",
        company=company,
        summary=[
            f"Suppliers: {report['totals']['suppliers']}   "
            f"Stock Value: {fmt_money(report['totals']['total_value'])}",
        ],
        columns=(
            Column("Supplier", 0.6),
            Column("Products", 0.2, "right"),
            Column("Stock Value", 0.2, "right"),
        ),
        rows=[
            (s["name"] or "", s["product_count"], fmt_money(s["total_value"]))
            for s in report["items"]
        ],
    )
