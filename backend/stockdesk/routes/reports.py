import io

from flask import Blueprint, current_app, request, send_file
from sqlalchemy.exc import SQLAlchemyError

from ..services import reporting_service
from .catalog import storage_error


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _pdf(content: bytes, filename: str):
    return send_file(
        io.BytesIO(content),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=filename,
    )


@reports_bp.get("/inventory")
def inventory_report():
    try:
        return reporting_service.inventory_report()
    except SQLAlchemyError as e:
        return storage_error(e, "build inventory report")


@reports_bp.get("/inventory/pdf")
def inventory_report_pdf():
    try:
        content = reporting_service.inventory_report_pdf(current_app.config["COMPANY_NAME"])
    except SQLAlchemyError as e:
        return storage_error(e, "build inventory report")
    return _pdf(content, "inventory-report.pdf")


@reports_bp.get("/sales")
def sales_report():
    try:
        return reporting_service.sales_report(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except reporting_service.ReportError as exc:
        return {"error": str(exc)}, 400
    except SQLAlchemyError as e:
        return storage_error(e, "build sales report")


@reports_bp.get("/sales/pdf")
def sales_report_pdf():
    try:
        content = reporting_service.sales_report_pdf(
            current_app.config["COMPANY_NAME"],
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except reporting_service.ReportError as exc:
        return {"error": str(exc)}, 400
    except SQLAlchemyError as e:
        return storage_error(e, "build sales report")
    return _pdf(content, "sales-report.pdf")


@reports_bp.get("/suppliers")
def suppliers_report():
    try:
        return reporting_service.suppliers_report()
    except SQLAlchemyError as e:
        return storage_error(e, "build suppliers report")


@reports_bp.get("/suppliers/pdf")
def suppliers_report_pdf():
    try:
        content = reporting_service.suppliers_report_pdf(current_app.config["COMPANY_NAME"])
    except SQLAlchemyError as e:
        return storage_error(e, "build suppliers report")
    return _pdf(content, "suppliers-report.pdf")
