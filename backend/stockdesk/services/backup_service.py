# Overview: Database snapshot, restore and spreadsheet bundle for backups.

"""
Backup Service

Snapshot (download):
1. PRAGMA wal_checkpoint(FULL) then VACUUM INTO a staging file.
2. Fallback: checkpoint, BEGIN IMMEDIATE (no writer can interleave), copy the
   raw file and its WAL together, COMMIT on success / ROLLBACK on failure, then
   fold the copied WAL into the copy.

Restore (upload): the payload is always staged under BACKUP_DIR first.
1. Import: ATTACH the staged file and, in one transaction with foreign keys
   off, replace every known table's rows with the uploaded rows.
2. Replace: keep a safety copy of the live file, then rename the staged file
   over it (restart required).
3. Staged: leave the upload in BACKUP_DIR and report where it is so an
   operator can swap it in after a restart.
"""

from __future__ import annotations

import io
import os
import shutil
import sqlite3
import uuid
import zipfile
from dataclasses import dataclass, asdict

from flask import current_app

from ..extensions import db
from ..models import TABLE_ORDER
from ..time_utils import file_stamp
from . import catalog_service, order_service
from .tabular_service import rows_to_xlsx

SQLITE_HEADER = b"SQLite format 3\x00"

RESTORE_IMPORT = "import"
RESTORE_REPLACE = "replace"
RESTORE_STAGED = "staged"


class BackupError(Exception):
    """Raised when a snapshot or restore cannot be completed."""
    def __init__(self, message: str, status_code: int = 500, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


@dataclass
class RestoreResult:
    strategy: str
    restart_required: bool
    message: str
    saved_path: str | None = None
    safety_copy_path: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def database_path() -> str:
    """Absolute path of the live SQLite file, or BackupError(404) if not file-backed."""
    url = db.engine.url
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        raise BackupError("Database file not found", status_code=404)
    path = os.path.abspath(url.database)
    if not os.path.exists(path):
        raise BackupError("Database file not found", status_code=404)
    return path


def backup_dir() -> str:
    path = current_app.config.get("BACKUP_DIR") or os.path.join(current_app.instance_path, "backups")
    os.makedirs(path, exist_ok=True)
    return path


def backup_filename() -> str:
    prefix = current_app.config.get("BACKUP_FILENAME_PREFIX", "inventory-backup")
    return f"{prefix}-{file_stamp()}.db"


def _connect(path: str) -> sqlite3.Connection:
    timeout = current_app.config.get("SQLITE_TIMEOUT_SECONDS", 30)
    return sqlite3.connect(path, timeout=timeout, isolation_level=None)


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def discard_snapshot(path: str) -> None:
    """Remove a snapshot written by create_snapshot (and its WAL copy, if any)."""
    _discard(path)
    _discard(path + "-wal")


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

def _vacuum_into(live_path: str, dest: str) -> None:
    conn = _connect(live_path)
    try:
        conn.execute("PRAGMA wal_checkpoint(FULL)")
        conn.execute("VACUUM INTO ?", (dest,))
    finally:
        conn.close()


def _locked_copy(live_path: str, dest: str) -> None:
    conn = _connect(live_path)
    try:
        conn.execute("PRAGMA wal_checkpoint(FULL)")
        conn.execute("BEGIN IMMEDIATE")
        try:
            shutil.copy2(live_path, dest)
            if os.path.exists(live_path + "-wal"):
                shutil.copy2(live_path + "-wal", dest + "-wal")
        except OSError:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()
    _fold_wal(dest)


def _fold_wal(path: str) -> None:
    """
    Merge a copied WAL into its database file so the snapshot is one
    self-contained file. Commits that landed in the WAL after the pre-lock
    checkpoint are only present in the copied WAL.
    """
    if not os.path.exists(path + "-wal"):
        return
    conn = _connect(path)
    try:
        conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        conn.execute("PRAGMA journal_mode=DELETE")
    finally:
        conn.close()
    _discard(path + "-wal")
    _discard(path + "-shm")


def create_snapshot(dest_dir: str | None = None) -> str:
    """
    Write a consistent copy of the live database and return its path.
    The caller owns the file (the download route deletes it after streaming).
    """
    live_path = database_path()
    target_dir = dest_dir or backup_dir()
    os.makedirs(target_dir, exist_ok=True)
    dest = os.path.join(target_dir, f"snapshot-{file_stamp()}-{uuid.uuid4().hex[:8]}.db")

    # Let pooled connections go so nothing holds a read lock during the copy.
    db.session.remove()

    try:
        _vacuum_into(live_path, dest)
        return dest
    except sqlite3.Error as e:
        current_app.logger.warning("VACUUM INTO snapshot failed (%s); falling back to locked copy", e)
        _discard(dest)

    try:
        _locked_copy(live_path, dest)
    except (sqlite3.Error, OSError) as e:
        _discard(dest)
        _discard(dest + "-wal")
        raise BackupError(f"Failed to create database snapshot: {e}")
    return dest


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

def _stage_upload(payload: bytes) -> str:
    path = os.path.join(backup_dir(), f"restore-{file_stamp()}-{uuid.uuid4().hex[:8]}.db")
    with open(path, "wb") as fh:
        fh.write(payload)
    return path


def _table_columns(conn: sqlite3.Connection, schema: str, table: str) -> list[str]:
    rows = conn.execute(f'PRAGMA {schema}.table_info("{table}")').fetchall()
    return [r[1] for r in rows]


def _known_tables(path: str) -> list[str]:
    conn = sqlite3.connect(path)
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    finally:
        conn.close()
    names = {r[0] for r in rows}
    return [t for t in TABLE_ORDER if t in names]


def import_tables(live_path: str, staged_path: str) -> dict[str, int]:
    """
    Replace the rows of every known table with the rows of the staged file,
    in one transaction. Returns the number of rows copied per table.
    """
    conn = _connect(live_path)
    copied: dict[str, int] = {}
    try:
        conn.execute("PRAGMA foreign_keys = OFF")
        conn.execute("ATTACH DATABASE ? AS restore_src", (staged_path,))
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for table in reversed(TABLE_ORDER):
                    conn.execute(f'DELETE FROM main."{table}"')
                for table in TABLE_ORDER:
                    src_cols = set(_table_columns(conn, "restore_src", table))
                    if not src_cols:
                        copied[table] = 0
                        continue
                    cols = [c for c in _table_columns(conn, "main", table) if c in src_cols]
                    col_list = ", ".join(f'"{c}"' for c in cols)
                    cur = conn.execute(
                        f'INSERT INTO main."{table}" ({col_list}) '
                        f'SELECT {col_list} FROM restore_src."{table}"'
                    )
                    copied[table] = cur.rowcount
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.execute("DETACH DATABASE restore_src")
    finally:
        conn.close()
    return copied


def _replace_file(live_path: str, staged_path: str) -> str:
    safety = os.path.join(backup_dir(), f"before-restore-{file_stamp()}.db")
    shutil.copy2(live_path, safety)
    db.session.remove()
    db.engine.dispose()
    os.replace(staged_path, live_path)
    return safety


def _staged_result(staged_path: str) -> RestoreResult:
    return RestoreResult(
        strategy=RESTORE_STAGED,
        restart_required=True,
        saved_path=staged_path,
        message=(
            f"Backup uploaded and saved to {staged_path}. To apply it, stop the "
            "backend, replace the database file with this file, then restart."
        ),
    )


def restore_database(payload: bytes) -> RestoreResult:
    if not payload:
        raise BackupError("No file uploaded", status_code=400)
    if not payload.startswith(SQLITE_HEADER):
        raise BackupError("Uploaded file is not a SQLite database", status_code=400)

    live_path = database_path()

    try:
        staged_path = _stage_upload(payload)
    except OSError as e:
        raise BackupError(f"Failed to save uploaded backup: {e}")

    try:
        tables = _known_tables(staged_path)
    except sqlite3.Error as e:
        raise BackupError(
            f"Uploaded database cannot be read: {e}",
            status_code=400,
            details={"saved_path": staged_path},
        )
    if not tables:
        raise BackupError(
            "Uploaded database contains none of the inventory tables",
            status_code=400,
            details={"saved_path": staged_path},
        )

    db.session.remove()

    try:
        copied = import_tables(live_path, staged_path)
    except sqlite3.Error as e:
        current_app.logger.warning("Table import failed during restore (%s); replacing database file", e)
    else:
        db.engine.dispose()
        _discard(staged_path)
        current_app.logger.info("Database restored by table import: %s", copied)
        return RestoreResult(
            strategy=RESTORE_IMPORT,
            restart_required=False,
            message="Database restored successfully.",
        )

    # A file missing any table would leave the app without it once swapped in.
    missing = [t for t in TABLE_ORDER if t not in tables]
    if missing:
        current_app.logger.warning(
            "Uploaded database lacks tables %s; not replacing the live file, upload kept at %s",
            missing, staged_path,
        )
        return _staged_result(staged_path)

    try:
        safety = _replace_file(live_path, staged_path)
    except OSError as e:
        current_app.logger.warning("Replacing database file failed (%s); upload kept at %s", e, staged_path)
        return _staged_result(staged_path)

    return RestoreResult(
        strategy=RESTORE_REPLACE,
        restart_required=True,
        safety_copy_path=safety,
        message="Database file replaced. Restart the application to ensure changes are applied.",
    )


# ---------------------------------------------------------------------------
# Spreadsheet bundle
# ---------------------------------------------------------------------------

def export_excel_bundle() -> bytes:
    """ZIP archive holding one XLSX workbook per resource."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, resource in catalog_service.RESOURCES.items():
            columns = list(resource.export_columns)
            rows = catalog_service.list_entities(resource)
            archive.writestr(f"{name}.xlsx", rows_to_xlsx(columns, rows, sheet_title=name))

        order_rows, item_rows = order_service.order_export_rows()
        order_columns = [c for c in order_service.ORDER_EXPORT_COLUMNS if c != "items"]
        archive.writestr("orders.xlsx", rows_to_xlsx(order_columns, order_rows, sheet_title="orders"))
        item_columns = ["id", "order_id", *order_service.ITEM_EXPORT_FIELDS]
        archive.writestr("order_items.xlsx", rows_to_xlsx(item_columns, item_rows, sheet_title="order_items"))
    return buffer.getvalue()
