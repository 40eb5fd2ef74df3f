from flask import Blueprint
from sqlalchemy.exc import SQLAlchemyError

from ..services import reporting_service
from .catalog import storage_error


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/stats")
def dashboard_stats():
    """Entity counts, low-stock count and total inventory value."""
    try:
        return reporting_service.dashboard_stats()
    except SQLAlchemyError as e:
        return storage_error(e, "load dashboard stats")
