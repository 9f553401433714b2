# Overview: Read-only lookups against the warehouse, product and user directories.

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, User, Warehouse


def _require(model, entity_type: str, entity_id: int):
    if entity_id is None:
        raise ValidationError(f"{entity_type.lower()}_id is required")
    record = db.session.get(model, entity_id)
    if record is None:
        raise NotFoundError(entity_type, entity_id)
    if not record.is_active:
        raise ValidationError(f"{entity_type} {entity_id} is inactive")
    return record


def require_warehouse(warehouse_id: int) -> Warehouse:
    return _require(Warehouse, "Warehouse", warehouse_id)


def require_product(product_id: int) -> Product:
    return _require(Product, "Product", product_id)


def require_user(user_id: int) -> User:
    return _require(User, "User", user_id)
