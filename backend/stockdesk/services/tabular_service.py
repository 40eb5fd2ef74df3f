# Overview: CSV / XLSX reading and writing shared by catalog, order and backup exports.

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import Any, Iterable

from openpyxl import Workbook, load_workbook

from ..validation import ValidationError

EXPORT_FORMATS = {"csv", "xlsx"}

CSV_MIMETYPE = "text/csv"
XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass
class ExportFile:
    content: bytes
    mimetype: str
    filename: str


def _cell(value: Any) -> Any:
    if isinstance(value, (list, dict)):
        raise TypeError("nested values must be serialized before export")
    return "" if value is None else value


def rows_to_csv(columns: list[str], rows: Iterable[dict]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_cell(row.get(c)) for c in columns])
    return buffer.getvalue().encode("utf-8")


def rows_to_xlsx(columns: list[str], rows: Iterable[dict], *, sheet_title: str = "Sheet1") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title[:31]
    ws.append(columns)
    for row in rows:
        ws.append([row.get(c) for c in columns])
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def build_export(*, resource: str, columns: list[str], rows: list[dict], fmt: str | None) -> ExportFile:
    fmt = (fmt or "csv").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError("format must be csv or xlsx")
    if fmt == "csv":
        return ExportFile(rows_to_csv(columns, rows), CSV_MIMETYPE, f"{resource}.csv")
    return ExportFile(
        rows_to_xlsx(columns, rows, sheet_title=resource),
        XLSX_MIMETYPE,
        f"{resource}.xlsx",
    )


def _normalize_header(value: Any) -> str:
    return str(value).strip().lower() if value is not None else ""


def read_upload_rows(file_storage) -> list[dict[str, Any]]:
    """
    Parse an uploaded CSV or XLSX file into a list of dicts keyed by the
    (lower-cased, stripped) header row. Empty rows are dropped.
    """
    if file_storage is None:
        raise ValidationError("file is required")

    filename = file_storage.filename or ""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""

    if ext == "csv":
        try:
            text = file_storage.stream.read().decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("CSV file must be UTF-8 encoded")
        reader = csv.DictReader(io.StringIO(text))
        rows = []
        for raw in reader:
            row = {_normalize_header(k): v for k, v in raw.items() if k is not None}
            if any(str(v).strip() for v in row.values() if v is not None):
                rows.append(row)
        return rows

    if ext in {"xlsx", "xlsm", "xltx", "xltm"}:
        try:
            wb = load_workbook(file_storage.stream, data_only=True, read_only=True)
        except Exception as exc:
            raise ValidationError(f"Could not read spreadsheet: {exc}")
        sheet = wb.active
        data = list(sheet.values)
        wb.close()
        if not data:
            return []
        headers = [_normalize_header(h) for h in data[0]]
        rows = []
        for values in data[1:]:
            if values is None or all(v is None or str(v).strip() == "" for v in values):
                continue
            rows.append({
                headers[i]: values[i]
                for i in range(min(len(headers), len(values)))
                if headers[i]
            })
        return rows

    raise ValidationError("Unsupported file format (expected .csv or .xlsx)")
