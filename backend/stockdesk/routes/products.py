# Overview: Flask API routes for products; the shared catalog endpoints plus low-stock listing.

# backend/stockdesk/routes/products.py
"""
Product routes.

Products use the common catalog endpoints (see routes/catalog.py). Product
imports additionally resolve brand / category / supplier names, creating
missing ones.
"""
from sqlalchemy.exc import SQLAlchemyError

from ..services import catalog_service
from .catalog import build_catalog_blueprint, storage_error

products_bp = build_catalog_blueprint(catalog_service.PRODUCTS)


@products_bp.get("/low-stock")
def low_stock_route():
    """Products whose quantity is at or below their reorder level."""
    try:
        return catalog_service.low_stock_products()
    except SQLAlchemyError as e:
        return storage_error(e, "list low-stock products")
