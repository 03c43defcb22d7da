"""
quotedesk/blueprints/suppliers/routes.py

Supplier directory (JSON CRUD).

- Any logged-in user may read the directory.
- Create / update / delete are admin-only.
- Contact persons are sent as a full list; an update replaces the list.
- At most one contact person may be primary.
- A supplier referenced by quotes cannot be deleted (409).
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from ...audit import log_action, serialize_model
from ...errors import ConflictError, NotFoundError, ValidationError
from ...extensions import db
from ...models import ContactPerson, Quote, Supplier
from ...security import admin_required
from ...utils import json_body, parse_bool, parse_string_list

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/suppliers")


def load_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError("Supplier not found", code="SUPPLIER_NOT_FOUND")
    return supplier


def _clean(value) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def parse_contact_persons(raw) -> list[ContactPerson]:
    """Validate the contact person payload and build (unsaved) ContactPerson rows."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("'contact_persons' must be a list.")

    persons = []
    for idx, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Contact person #{idx} must be an object.")
        name = _clean(item.get("name"))
        if not name:
            raise ValidationError(f"Contact person #{idx} needs a name.")
        email = _clean(item.get("email"))
        if email and "@" not in email:
            raise ValidationError(f"Contact person #{idx} has an invalid email.")
        persons.append(
            ContactPerson(
                name=name,
                email=email,
                role=_clean(item.get("role")),
                phone=_clean(item.get("phone")),
                is_primary=parse_bool(item.get("is_primary")),
                is_cc=parse_bool(item.get("is_cc")),
                is_bcc=parse_bool(item.get("is_bcc")),
            )
        )

    if sum(1 for p in persons if p.is_primary) > 1:
        raise ValidationError("Only one contact person can be primary.")
    return persons


def _apply_fields(supplier: Supplier, data: dict, *, partial: bool) -> None:
    if not partial or "name" in data:
        name = _clean(data.get("name"))
        if not name:
            raise ValidationError("'name' is required.")
        supplier.name = name
    if not partial or "contact_email" in data:
        email = _clean(data.get("contact_email"))
        if email and "@" not in email:
            raise ValidationError("'contact_email' is not a valid email.")
        supplier.contact_email = email
    if not partial or "service_categories" in data:
        supplier.service_categories = parse_string_list(data.get("service_categories"), "service_categories")
    if not partial or "cities_served" in data:
        supplier.cities_served = parse_string_list(data.get("cities_served"), "cities_served")
    if not partial or "address" in data:
        supplier.address = _clean(data.get("address"))


# ----------------------------------------------------------------------
# READ
# ----------------------------------------------------------------------
@suppliers_bp.route("", methods=["GET"])
@login_required
def list_suppliers():
    """List suppliers; optional ?category= filter (case-insensitive substring)."""
    suppliers = Supplier.query.order_by(Supplier.name.asc()).all()

    category = (request.args.get("category") or "").strip().lower()
    if category:
        suppliers = [
            s for s in suppliers
            if any(category in (c or "").lower() for c in s.service_categories or [])
        ]
    return jsonify({"success": True, "suppliers": [s.to_dict() for s in suppliers]})


@suppliers_bp.route("/<int:supplier_id>", methods=["GET"])
@login_required
def get_supplier(supplier_id: int):
    return jsonify({"success": True, "supplier": load_supplier(supplier_id).to_dict()})


# ----------------------------------------------------------------------
# WRITE (admin only)
# ----------------------------------------------------------------------
@suppliers_bp.route("", methods=["POST"])
@login_required
@admin_required
def create_supplier():
    data = json_body(request)

    supplier = Supplier()
    _apply_fields(supplier, data, partial=False)
    supplier.contact_persons = parse_contact_persons(data.get("contact_persons"))

    db.session.add(supplier)
    db.session.flush()

    log_action(supplier, "CREATE", after=serialize_model(supplier))
    db.session.commit()

    return jsonify({"success": True, "supplier": supplier.to_dict()}), 201


@suppliers_bp.route("/<int:supplier_id>", methods=["PATCH"])
@login_required
@admin_required
def update_supplier(supplier_id: int):
    supplier = load_supplier(supplier_id)
    data = json_body(request)
    before = serialize_model(supplier)

    _apply_fields(supplier, data, partial=True)
    if "contact_persons" in data:
        supplier.contact_persons = parse_contact_persons(data.get("contact_persons"))

    db.session.flush()
    log_action(supplier, "UPDATE", before=before, after=serialize_model(supplier))
    db.session.commit()

    return jsonify({"success": True, "supplier": supplier.to_dict()})


@suppliers_bp.route("/<int:supplier_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_supplier(supplier_id: int):
    supplier = load_supplier(supplier_id)

    quote_count = Quote.query.filter_by(supplier_id=supplier.id).count()
    if quote_count:
        raise ConflictError(
            f"Supplier has {quote_count} quote(s) and cannot be deleted.",
            code="SUPPLIER_HAS_QUOTES",
        )

    before = serialize_model(supplier)
    db.session.delete(supplier)
    db.session.flush()

    log_action(supplier, "DELETE", before=before)
    db.session.commit()

    return jsonify({"success": True})
