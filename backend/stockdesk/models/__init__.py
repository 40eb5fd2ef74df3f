from .catalog import Brand, Category, Supplier, Product, InventoryTransaction
from .orders import (
    Order,
    OrderItem,
    ORDER_STATUSES,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CANCELED,
    ORDER_STATUS_REFUNDED,
)

# Foreign-key-safe order: parents before children.
TABLE_ORDER = (
    "brands",
    "categories",
    "suppliers",
    "products",
    "inventory_transactions",
    "orders",
    "order_items",
)

__all__ = [
    'Brand', 'Category', 'Supplier', 'Product', 'InventoryTransaction',
    'Order', 'OrderItem',
    'ORDER_STATUSES', 'ORDER_STATUS_PENDING', 'ORDER_STATUS_CANCELED', 'ORDER_STATUS_REFUNDED',
    'TABLE_ORDER',
]
