"""
quotedesk/blueprints/projects/routes.py

Projects and their assets (JSON CRUD).

Includes:
- /projects                      list / create
- /projects/<id>                 read / update / delete
- /projects/<id>/assets          list / create
- /assets/<id>                   read / update / delete

IMPORTANT:
- Producers see and edit only their own projects; admins see everything; viewers read.
- Asset.assigned_supplier_id is NOT editable here. Only quote acceptance sets it.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...errors import NotFoundError, ValidationError
from ...extensions import db
from ...models import Asset, AssetStatus, Project, ProjectStatus
from ...security import can_manage, is_admin, manager_required, project_access_required, project_edit_required
from ...utils import json_body, parse_date, parse_optional_int, parse_string_list

projects_bp = Blueprint("projects", __name__)


# ---------------------------------------------------------------------
# Loaders (used by the access decorators)
# ---------------------------------------------------------------------
def load_project(project_id: int, **_: object) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found", code="PROJECT_NOT_FOUND")
    return project


def load_asset(asset_id: int, **_: object) -> Asset:
    asset = db.session.get(Asset, asset_id)
    if asset is None:
        raise NotFoundError("Asset not found", code="ASSET_NOT_FOUND")
    return asset


def _asset_project(asset_id: int, **_: object) -> Project:
    return load_asset(asset_id).project


def _text(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    return str(value).strip() or None


def _check_status(value: str, allowed: tuple, label: str) -> str:
    if value not in allowed:
        raise ValidationError(f"Invalid {label} status '{value}'. Use one of: {', '.join(allowed)}.")
    return value


# ---------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------
@projects_bp.route("/projects", methods=["GET"])
@login_required
def list_projects():
    """Projects visible to the current user, newest first; optional ?status= filter."""
    query = Project.query
    if can_manage() and not is_admin():
        query = query.filter(Project.producer_id == current_user.id)

    status = (request.args.get("status") or "").strip()
    if status:
        query = query.filter(Project.status == status)

    projects = query.order_by(Project.created_at.desc(), Project.id.desc()).all()
    return jsonify({"success": True, "projects": [p.to_dict() for p in projects]})


@projects_bp.route("/projects", methods=["POST"])
@login_required
@manager_required
def create_project():
    data = json_body(request)

    project_name = _text(data, "project_name")
    if not project_name:
        raise ValidationError("'project_name' is required.")

    project = Project(
        project_name=project_name,
        client_name=_text(data, "client_name"),
        brief_description=_text(data, "brief_description"),
        deadline=parse_date(data.get("deadline"), "deadline"),
        status=_check_status(data.get("status") or ProjectStatus.NEW, ProjectStatus.ALL, "project"),
        producer_id=current_user.id,
    )
    db.session.add(project)
    db.session.flush()

    log_action(project, "CREATE", after=serialize_model(project))
    db.session.commit()

    return jsonify({"success": True, "project": project.to_dict()}), 201


@projects_bp.route("/projects/<int:project_id>", methods=["GET"])
@login_required
@project_access_required(load_project)
def get_project(project_id: int):
    project = load_project(project_id)
    data = project.to_dict()
    data["assets"] = [a.to_dict() for a in project.assets]
    return jsonify({"success": True, "project": data})


@projects_bp.route("/projects/<int:project_id>", methods=["PATCH"])
@login_required
@project_edit_required(load_project)
def update_project(project_id: int):
    project = load_project(project_id)
    data = json_body(request)
    before = serialize_model(project)

    if "project_name" in data:
        name = _text(data, "project_name")
        if not name:
            raise ValidationError("'project_name' cannot be empty.")
        project.project_name = name
    if "client_name" in data:
        project.client_name = _text(data, "client_name")
    if "brief_description" in data:
        project.brief_description = _text(data, "brief_description")
    if "deadline" in data:
        project.deadline = parse_date(data.get("deadline"), "deadline")
    if "status" in data:
        project.status = _check_status(data.get("status"), ProjectStatus.ALL, "project")

    db.session.flush()
    log_action(project, "UPDATE", before=before, after=serialize_model(project))
    db.session.commit()

    return jsonify({"success": True, "project": project.to_dict()})


@projects_bp.route("/projects/<int:project_id>", methods=["DELETE"])
@login_required
@project_edit_required(load_project)
def delete_project(project_id: int):
    """Delete a project with its assets and their quotes."""
    project = load_project(project_id)
    before = serialize_model(project)

    db.session.delete(project)
    db.session.flush()

    log_action(project, "DELETE", before=before)
    db.session.commit()

    return jsonify({"success": True})


# ---------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------
@projects_bp.route("/projects/<int:project_id>/assets", methods=["GET"])
@login_required
@project_access_required(load_project)
def list_assets(project_id: int):
    project = load_project(project_id)
    return jsonify({"success": True, "assets": [a.to_dict() for a in project.assets]})


@projects_bp.route("/projects/<int:project_id>/assets", methods=["POST"])
@login_required
@project_edit_required(load_project)
def create_asset(project_id: int):
    project = load_project(project_id)
    data = json_body(request)

    name = _text(data, "name")
    if not name:
        raise ValidationError("'name' is required.")

    quantity = parse_optional_int(data.get("quantity"), "quantity")
    if quantity is not None and quantity < 1:
        raise ValidationError("'quantity' must be at least 1.")

    asset = Asset(
        project_id=project.id,
        name=name,
        specifications=_text(data, "specifications"),
        timeline=parse_date(data.get("timeline"), "timeline"),
        status=_check_status(data.get("status") or AssetStatus.PENDING, AssetStatus.ALL, "asset"),
        quantity=quantity,
        tags=parse_string_list(data.get("tags"), "tags"),
    )
    db.session.add(asset)
    db.session.flush()

    log_action(asset, "CREATE", after=serialize_model(asset))
    db.session.commit()

    return jsonify({"success": True, "asset": asset.to_dict()}), 201


@projects_bp.route("/assets/<int:asset_id>", methods=["GET"])
@login_required
@project_access_required(_asset_project)
def get_asset(asset_id: int):
    asset = load_asset(asset_id)
    data = asset.to_dict()
    data["assigned_supplier"] = asset.assigned_supplier.to_dict() if asset.assigned_supplier else None
    return jsonify({"success": True, "asset": data})


@projects_bp.route("/assets/<int:asset_id>", methods=["PATCH"])
@login_required
@project_edit_required(_asset_project)
def update_asset(asset_id: int):
    asset = load_asset(asset_id)
    data = json_body(request)
    before = serialize_model(asset)

    if "assigned_supplier_id" in data:
        raise ValidationError("The assigned supplier is set by accepting a quote.")

    if "name" in data:
        name = _text(data, "name")
        if not name:
            raise ValidationError("'name' cannot be empty.")
        asset.name = name
    if "specifications" in data:
        asset.specifications = _text(data, "specifications")
    if "timeline" in data:
        asset.timeline = parse_date(data.get("timeline"), "timeline")
    if "quantity" in data:
        quantity = parse_optional_int(data.get("quantity"), "quantity")
        if quantity is not None and quantity < 1:
            raise ValidationError("'quantity' must be at least 1.")
        asset.quantity = quantity
    if "tags" in data:
        asset.tags = parse_string_list(data.get("tags"), "tags")
    if "status" in data:
        asset.status = _check_status(data.get("status"), AssetStatus.ALL, "asset")

    db.session.flush()
    log_action(asset, "UPDATE", before=before, after=serialize_model(asset))
    db.session.commit()

    return jsonify({"success": True, "asset": asset.to_dict()})


@projects_bp.route("/assets/<int:asset_id>", methods=["DELETE"])
@login_required
@project_edit_required(_asset_project)
def delete_asset(asset_id: int):
    asset = load_asset(asset_id)
    before = serialize_model(asset)

    db.session.delete(asset)
    db.session.flush()

    log_action(asset, "DELETE", before=before)
    db.session.commit()

    return jsonify({"success": True})
