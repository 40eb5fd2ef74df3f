# Overview: Flask API routes for brands, categories, suppliers and products; parses input and returns JSON responses.

"""
Catalog routes.

Every catalog resource exposes the same endpoints, so the blueprints are
built from one factory:

    GET    /api/<resource>                 list (sorted by name)
    GET    /api/<resource>/<id>            get
    POST   /api/<resource>                 create
    PUT    /api/<resource>/<id>            full-row update
    DELETE /api/<resource>/<id>            delete
    DELETE /api/<resource>/delete-all      delete everything
    GET    /api/<resource>/export          ?format=csv|xlsx
    POST   /api/<resource>/import          multipart "file"
"""
import io

from flask import Blueprint, current_app, request, send_file
from sqlalchemy.exc import SQLAlchemyError

from ..services import catalog_service
from ..services.catalog_service import CatalogResource
from ..services.tabular_service import read_upload_rows
from ..validation import ValidationError, ConflictError, NotFoundError


def storage_error(e: SQLAlchemyError, action: str):
    current_app.logger.exception("Failed to %s", action)
    return {"error": str(getattr(e, "orig", None) or e)}, 500


def send_export(export):
    return send_file(
        io.BytesIO(export.content),
        mimetype=export.mimetype,
        as_attachment=True,
        download_name=export.filename,
    )


def build_catalog_blueprint(resource: CatalogResource) -> Blueprint:
    bp = Blueprint(resource.name, __name__, url_prefix=f"/api/{resource.name}")
    label = resource.label

    @bp.get("")
    def list_route():
        try:
            return catalog_service.list_entities(resource)
        except SQLAlchemyError as e:
            return storage_error(e, f"list {resource.name}")

    @bp.get("/<int:entity_id>")
    def get_route(entity_id: int):
        try:
            return catalog_service.get_entity(resource, entity_id)
        except NotFoundError as e:
            return {"error": str(e)}, 404
        except SQLAlchemyError as e:
            return storage_error(e, f"load {label.lower()}")

    @bp.post("")
    def create_route():
        payload = request.get_json(silent=True) or {}
        try:
            created = catalog_service.create_entity(resource, payload)
        except ValidationError as e:
            return {"error": str(e)}, 400
        except ConflictError as e:
            return {"error": str(e)}, 409
        except SQLAlchemyError as e:
            return storage_error(e, f"create {label.lower()}")
        return created, 201

    @bp.put("/<int:entity_id>")
    def update_route(entity_id: int):
        payload = request.get_json(silent=True) or {}
        try:
            return catalog_service.update_entity(resource, entity_id, payload)
        except NotFoundError as e:
            return {"error": str(e)}, 404
        except ValidationError as e:
            return {"error": str(e)}, 400
        except ConflictError as e:
            return {"error": str(e)}, 409
        except SQLAlchemyError as e:
            return storage_error(e, f"update {label.lower()}")

    @bp.delete("/<int:entity_id>")
    def delete_route(entity_id: int):
        try:
            catalog_service.delete_entity(resource, entity_id)
        except NotFoundError as e:
            return {"error": str(e)}, 404
        except SQLAlchemyError as e:
            return storage_error(e, f"delete {label.lower()}")
        return {"message": f"{label} deleted successfully"}

    @bp.route("/delete-all", methods=["DELETE", "POST"])
    def delete_all_route():
        try:
            deleted = catalog_service.delete_all(resource)
        except SQLAlchemyError as e:
            return storage_error(e, f"delete all {resource.name}")
        return {"message": f"Deleted {deleted} {resource.name}", "deleted": deleted}

    @bp.get("/export")
    def export_route():
        try:
            export = catalog_service.export_entities(resource, request.args.get("format"))
        except ValidationError as e:
            return {"error": str(e)}, 400
        except SQLAlchemyError as e:
            return storage_error(e, f"export {resource.name}")
        return send_export(export)

    @bp.post("/import")
    def import_route():
        try:
            rows = read_upload_rows(request.files.get("file"))
        except ValidationError as e:
            return {"error": str(e)}, 400
        summary = catalog_service.import_entities(resource, rows)
        current_app.logger.info(
            "Imported %s: %s created, %s updated, %s errors",
            resource.name, summary["created"], summary["updated"], summary["errors"],
        )
        return summary

    return bp


brands_bp = build_catalog_blueprint(catalog_service.BRANDS)
categories_bp = build_catalog_blueprint(catalog_service.CATEGORIES)
suppliers_bp = build_catalog_blueprint(catalog_service.SUPPLIERS)
