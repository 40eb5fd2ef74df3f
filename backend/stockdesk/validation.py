from __future__ import annotations
import math
from datetime import datetime
from stockdesk.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Float, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU or brand name)."""


class NotFoundError(LookupError):
    """404-level: an id-scoped read or write matched no row."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST and full-row PUT
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers: accept ints, integral floats (spreadsheet cells) and plain digit strings
    if isinstance(coltype, Integer):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return None
            try:
                return int(stripped)
            except ValueError:
                try:
                    as_float = float(stripped)
                except ValueError:
                    raise ValidationError(f"{col.key} must be an integer")
                if not as_float.is_integer():
                    raise ValidationError(f"{col.key} must be an integer, not a decimal")
                return int(as_float)
        raise ValidationError(f"{col.key} must be an integer")

    # Money and other real columns
    if isinstance(coltype, (Float, Numeric)):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return None
            try:
                number = float(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be a number")
        else:
            raise ValidationError(f"{col.key} must be a number")
        if not math.isfinite(number):
            raise ValidationError(f"{col.key} must be a finite number")
        return number

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
    ignore_unknown: bool = False,
) -> dict:
    """
    Validates + normalizes incoming data against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    ignore_unknown=True drops extra keys instead of rejecting them; imports use
    it because exported files carry read-only columns such as id.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    cols = _columns_by_key(model)

    for k in list(payload.keys()):
        if k not in policy.writable_fields or k not in cols:
            if ignore_unknown:
                continue
            if k not in cols:
                raise ValidationError(f"Unknown field: {k}")
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            continue
        col = cols[k]

        val = _coerce_value(col, raw)

        if val is None:
            if not col.nullable and col.default is None:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if patch.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    return patch


def full_row_patch(*, model: DeclarativeMeta, patch: dict, policy: ModelValidationPolicy) -> dict:
    """
    Expand a validated patch into a full-row overwrite: every writable column the
    caller left out is reset to its scalar column default, or None.
    """
    cols = _columns_by_key(model)
    row: dict = {}
    for k in policy.writable_fields:
        if k in patch and patch[k] is not None:
            row[k] = patch[k]
            continue
        col = cols[k]
        default = col.default.arg if col.default is not None and col.default.is_scalar else None
        row[k] = default
    return row


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Quantity is deliberately unchecked: stock on hand may be negative.
    """
    for field in ("price", "cost", "discount"):
        value = patch.get(field)
        if value is not None and value < 0:
            raise ValidationError(f"{field} must be >= 0")
    if patch.get("reorder_level") is not None and patch["reorder_level"] < 0:
        raise ValidationError("reorder_level must be >= 0")
