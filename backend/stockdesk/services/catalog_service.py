# Overview: Service-layer CRUD, import and export for brands, categories, suppliers and products.

"""
Catalog Service

Brands, categories, suppliers and products share one contract:
list (by name), get, create, full-row update, delete, delete-all,
export (CSV/XLSX) and import with per-row upsert.

Import match keys:
- brands / categories / suppliers: name
- products: sku (rows without a SKU are always inserted)

Product imports resolve brand/category/supplier by name and create the
referenced row when it does not exist yet (find-or-create).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Brand, Category, Supplier, Product
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    ConflictError,
    NotFoundError,
    validate_payload,
    full_row_patch,
    enforce_rules_product,
)
from .tabular_service import ExportFile, build_export


@dataclass(frozen=True)
class CatalogResource:
    name: str
    label: str
    model: Any
    policy: ModelValidationPolicy
    match_field: str
    unique_fields: tuple[str, ...] = ()
    export_columns: tuple[str, ...] = ()
    reference_fields: dict[str, tuple[str, ...]] = field(default_factory=dict)


BRANDS = CatalogResource(
    name="brands",
    label="Brand",
    model=Brand,
    policy=ModelValidationPolicy(
        writable_fields={"name", "description"},
        required_on_create={"name"},
    ),
    match_field="name",
    unique_fields=("name",),
    export_columns=("id", "name", "description", "created_at"),
)

CATEGORIES = CatalogResource(
    name="categories",
    label="Category",
    model=Category,
    policy=ModelValidationPolicy(
        writable_fields={"name", "description"},
        required_on_create={"name"},
    ),
    match_field="name",
    unique_fields=("name",),
    export_columns=("id", "name", "description", "created_at"),
)

SUPPLIERS = CatalogResource(
    name="suppliers",
    label="Supplier",
    model=Supplier,
    policy=ModelValidationPolicy(
        writable_fields={"name", "contact_person", "email", "phone", "address"},
        required_on_create={"name"},
    ),
    match_field="name",
    export_columns=("id", "name", "contact_person", "email", "phone", "address", "created_at"),
)

PRODUCTS = CatalogResource(
    name="products",
    label="Product",
    model=Product,
    policy=ModelValidationPolicy(
        writable_fields={
            "name", "sku", "description", "quantity", "price", "discount", "cost",
            "brand_id", "category_id", "supplier_id", "reorder_level", "unit",
        },
        required_on_create={"name"},
    ),
    match_field="sku",
    unique_fields=("sku",),
    export_columns=(
        "id", "name", "sku", "description", "quantity", "price", "discount", "cost",
        "brand_id", "category_id", "supplier_id", "brand_name", "category_name",
        "supplier_name", "reorder_level", "unit", "created_at", "updated_at",
    ),
    # import column aliases that name a referenced row
    reference_fields={
        "brand_id": ("brand_name", "brand"),
        "category_id": ("category_name", "category"),
        "supplier_id": ("supplier_name", "supplier"),
    },
)

RESOURCES: dict[str, CatalogResource] = {
    r.name: r for r in (BRANDS, CATEGORIES, SUPPLIERS, PRODUCTS)
}

_REFERENCE_MODELS = {
    "brand_id": Brand,
    "category_id": Category,
    "supplier_id": Supplier,
}


def _validate(resource: CatalogResource, payload: dict, *, ignore_unknown: bool = False) -> dict:
    patch = validate_payload(
        model=resource.model,
        payload=payload,
        policy=resource.policy,
        partial=False,
        ignore_unknown=ignore_unknown,
    )
    if resource.model is Product:
        enforce_rules_product(patch)
    return patch


def _check_unique(resource: CatalogResource, values: dict, *, exclude_id: int | None = None) -> None:
    for column in resource.unique_fields:
        value = values.get(column)
        if value is None:
            continue
        query = db.session.query(resource.model).filter(getattr(resource.model, column) == value)
        if exclude_id is not None:
            query = query.filter(resource.model.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"{resource.label} with {column} '{value}' already exists.")


def _get_or_404(resource: CatalogResource, entity_id: int):
    obj = db.session.get(resource.model, entity_id)
    if obj is None:
        raise NotFoundError(f"{resource.label} not found")
    return obj


def list_entities(resource: CatalogResource) -> list[dict]:
    rows = (
        db.session.query(resource.model)
        .order_by(resource.model.name.asc(), resource.model.id.asc())
        .all()
    )
    return [r.to_dict() for r in rows]


def get_entity(resource: CatalogResource, entity_id: int) -> dict:
    return _get_or_404(resource, entity_id).to_dict()


def create_entity(resource: CatalogResource, payload: dict) -> dict:
    patch = _validate(resource, payload)
    row = full_row_patch(model=resource.model, patch=patch, policy=resource.policy)
    _check_unique(resource, row)

    obj = resource.model(**row)
    db.session.add(obj)
    db.session.commit()
    return obj.to_dict()


def update_entity(resource: CatalogResource, entity_id: int, payload: dict) -> dict:
    """Full-row overwrite: writable fields missing from payload fall back to defaults."""
    obj = _get_or_404(resource, entity_id)
    patch = _validate(resource, payload)
    row = full_row_patch(model=resource.model, patch=patch, policy=resource.policy)
    _check_unique(resource, row, exclude_id=obj.id)

    for k, v in row.items():
        setattr(obj, k, v)
    db.session.commit()
    return obj.to_dict()


def delete_entity(resource: CatalogResource, entity_id: int) -> None:
    # Referencing products keep their (now orphaned) ids.
    deleted = db.session.query(resource.model).filter(resource.model.id == entity_id).delete()
    if not deleted:
        db.session.rollback()
        raise NotFoundError(f"{resource.label} not found")
    db.session.commit()


def delete_all(resource: CatalogResource) -> int:
    deleted = db.session.query(resource.model).delete()
    db.session.commit()
    return deleted


def low_stock_products() -> list[dict]:
    rows = (
        db.session.query(Product)
        .filter(Product.quantity <= Product.reorder_level)
        .order_by(Product.quantity.asc(), Product.name.asc())
        .all()
    )
    return [p.to_dict() for p in rows]


def export_entities(resource: CatalogResource, fmt: str | None) -> ExportFile:
    columns = list(resource.export_columns)
    rows = [
        {c: v for c, v in item.items() if c in columns}
        for item in list_entities(resource)
    ]
    return build_export(resource=resource.name, columns=columns, rows=rows, fmt=fmt)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def _clean_row(raw: dict) -> dict:
    """Strip strings and drop blank cells so they read as 'not provided'."""
    cleaned = {}
    for k, v in raw.items():
        if k is None:
            continue
        key = str(k).strip().lower()
        if isinstance(v, str):
            v = v.strip()
            if v == "":
                continue
        if v is None:
            continue
        cleaned[key] = v
    return cleaned


def find_or_create(model, name: str):
    """Return the first row of model with this name, inserting one if absent."""
    name = str(name).strip()
    obj = db.session.query(model).filter(model.name == name).order_by(model.id.asc()).first()
    if obj is None:
        obj = model(name=name)
        db.session.add(obj)
        db.session.flush()
    return obj


def _resolve_references(resource: CatalogResource, data: dict) -> None:
    for fk, aliases in resource.reference_fields.items():
        ref_name = next((data[a] for a in aliases if data.get(a) not in (None, "")), None)
        for alias in aliases:
            data.pop(alias, None)
        if ref_name is None:
            continue
        data[fk] = find_or_create(_REFERENCE_MODELS[fk], ref_name).id


def _find_match(resource: CatalogResource, data: dict):
    key = data.get(resource.match_field)
    if key in (None, ""):
        return None
    column = getattr(resource.model, resource.match_field)
    return (
        db.session.query(resource.model)
        .filter(column == str(key).strip())
        .order_by(resource.model.id.asc())
        .first()
    )


def _import_row(resource: CatalogResource, raw: dict) -> str:
    data = _clean_row(raw)
    if not data.get("name"):
        raise ValidationError("name is required")

    _resolve_references(resource, data)
    existing = _find_match(resource, data)

    if existing is not None:
        patch = validate_payload(
            model=resource.model,
            payload=data,
            policy=resource.policy,
            partial=True,
            ignore_unknown=True,
        )
        if resource.model is Product:
            enforce_rules_product(patch)
        _check_unique(resource, patch, exclude_id=existing.id)
        for k, v in patch.items():
            setattr(existing, k, v)
        return "updated"

    patch = _validate(resource, data, ignore_unknown=True)
    row = full_row_patch(model=resource.model, patch=patch, policy=resource.policy)
    _check_unique(resource, row)
    db.session.add(resource.model(**row))
    return "created"


def import_entities(resource: CatalogResource, rows: list[dict]) -> dict:
    """
    Upsert every row; a bad row is counted in errors and never aborts the batch.

    Each row commits on its own so a failure only rolls back that row.
    Row numbers in error_details are spreadsheet rows (header is row 1).
    """
    created = updated = 0
    error_details: list[dict] = []

    for idx, raw in enumerate(rows, start=2):
        try:
            outcome = _import_row(resource, raw if isinstance(raw, dict) else {})
            db.session.commit()
        except (ValidationError, ConflictError) as e:
            db.session.rollback()
            error_details.append({"row": idx, "error": str(e)})
            continue
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.warning("Import of %s row %s failed: %s", resource.name, idx, e)
            error_details.append({"row": idx, "error": str(getattr(e, "orig", None) or e)})
            continue

        if outcome == "created":
            created += 1
        else:
            updated += 1

    return {
        "created": created,
        "updated": updated,
        "errors": len(error_details),
        "error_details": error_details,
    }
