# Overview: Flask API routes for database backup, restore and spreadsheet export.

import io
import os

from flask import Blueprint, Response, request, send_file, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..services import backup_service
from ..services.backup_service import BackupError, RESTORE_STAGED
from ..time_utils import file_stamp
from .catalog import storage_error


backup_bp = Blueprint("backup", __name__, url_prefix="/api/backup")


def _stream_file(path: str, chunk_size: int = 64 * 1024):
    with open(path, "rb") as fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            yield chunk


def _backup_error(e: BackupError):
    body = {"error": str(e)}
    body.update(e.details)
    return body, e.status_code


@backup_bp.get("/download")
def download_backup_route():
    """Stream a consistent snapshot of the database; the temp file goes away afterwards."""
    try:
        snapshot_path = backup_service.create_snapshot()
    except BackupError as e:
        if e.status_code >= 500:
            current_app.logger.error("Backup download failed: %s", e)
        return _backup_error(e)

    response = Response(
        _stream_file(snapshot_path),
        mimetype="application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename={backup_service.backup_filename()}",
            "Content-Length": str(os.path.getsize(snapshot_path)),
            "Cache-Control": "no-cache",
        },
    )
    # Runs on close even when the body is never iterated (HEAD)
    response.call_on_close(lambda: backup_service.discard_snapshot(snapshot_path))
    return response


@backup_bp.post("/restore")
def restore_backup_route():
    """
    Restore from an uploaded database file.

    Accepts the raw file as the request body (application/octet-stream) or as
    a multipart "file" field. The response says which strategy applied and
    whether a restart is required.
    """
    upload = request.files.get("file")
    payload = upload.read() if upload is not None else request.get_data()

    try:
        result = backup_service.restore_database(payload)
    except BackupError as e:
        if e.status_code >= 500:
            current_app.logger.error("Restore failed: %s", e)
        return _backup_error(e)

    status = 202 if result.strategy == RESTORE_STAGED else 200
    return result.to_dict(), status


@backup_bp.get("/export-excel")
def export_excel_route():
    """ZIP of one spreadsheet per resource."""
    try:
        content = backup_service.export_excel_bundle()
    except SQLAlchemyError as e:
        return storage_error(e, "export spreadsheets")
    return send_file(
        io.BytesIO(content),
        mimetype="application/zip",
        as_attachment=True,
        download_name=f"inventory-export-{file_stamp()}.zip",
    )
