from __future__ import annotations

from ..extensions import db
from stockdesk.time_utils import to_utc_z

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_CANCELED = "canceled"
ORDER_STATUS_REFUNDED = "refunded"
ORDER_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_CANCELED, ORDER_STATUS_REFUNDED)


class Order(db.Model):
    """
    Customer order.

    total is stored, not recomputed on read: subtotal - discount + tax at the
    time the order was placed (or imported).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    total = db.Column(db.Float, nullable=False, default=0.0, server_default="0")
    tax = db.Column(db.Float, nullable=False, default=0.0, server_default="0")
    discount = db.Column(db.Float, nullable=False, default=0.0, server_default="0")

    status = db.Column(
        db.String(16), nullable=False, default=ORDER_STATUS_PENDING, server_default=ORDER_STATUS_PENDING, index=True
    )
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total={self.total}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "total": self.total,
            "tax": self.tax,
            "discount": self.discount,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line item; product_name and unit_price are snapshots taken at order time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    # Ad hoc items carry no product reference
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False, default=0.0, server_default="0")
    discount = db.Column(db.Float, nullable=False, default=0.0, server_default="0")
    total_price = db.Column(db.Float, nullable=False, default=0.0, server_default="0")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "discount": self.discount,
            "total_price": self.total_price,
        }
