"""
quotedesk/security.py

Access control helpers for QuoteDesk.

Key rules:
- Clients are never trusted; all permission checks are server-side.
- Admin: full access, including the supplier directory.
- Producer: full access to their OWN projects (and the assets / quotes under them).
- Viewer: read-only across all projects (no mutating requests).

This module also provides a global safety net:
- viewer_readonly_guard() blocks POST/PUT/PATCH/DELETE for Viewers.
  Wired via app.before_request in the app factory.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
- Loader functions passed to the decorator factories raise NotFoundError for missing
  records; the app-level error handler renders that as a JSON 404.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Optional, Tuple

from flask import jsonify, request
from flask_login import current_user

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _forbidden(message: str = "You do not have permission to perform this action.") -> Tuple[Any, int]:
    """Consistent JSON 403."""
    return jsonify({"success": False, "error": {"code": "FORBIDDEN", "message": message}}), 403


def is_admin() -> bool:
    """Return True if current user is authenticated and admin."""
    return bool(current_user.is_authenticated and getattr(current_user, "is_admin", False))


def can_manage() -> bool:
    """Admin or producer (User.can_manage())."""
    if not current_user.is_authenticated:
        return False
    manage = getattr(current_user, "can_manage", None)
    return bool(callable(manage) and manage())


def can_view_project(project) -> bool:
    if not current_user.is_authenticated:
        return False
    if is_admin() or not can_manage():
        # admins and viewers read everything
        return True
    return project.producer_id == current_user.id


def can_edit_project(project) -> bool:
    if is_admin():
        return True
    return can_manage() and project.producer_id == current_user.id


def viewer_readonly_guard() -> Optional[Tuple[Any, int]]:
    """
    Global guard: Viewers cannot mutate data.

    Blocks POST/PUT/PATCH/DELETE for users who are:
    - authenticated
    - NOT admin
    - NOT producer

    Allow-list for safe self-service mutating endpoints:
    - auth.logout
    """
    if request.method not in MUTATING_METHODS:
        return None

    if not current_user.is_authenticated:
        return None

    if can_manage():
        return None

    endpoint = (request.endpoint or "").strip()
    if endpoint in {"auth.logout"}:
        return None

    return _forbidden("Viewers have read-only access.")


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def manager_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: producer or admin."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not can_manage():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def project_access_required(get_project_func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator factory: VIEW permission for the project owning the requested record.

    Usage:
        @project_access_required(lambda asset_id: load_asset(asset_id).project)
        def view(asset_id): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            project = get_project_func(**kwargs)
            if not can_view_project(project):
                return _forbidden()
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def project_edit_required(get_project_func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator factory: EDIT permission for the project owning the requested record.

    Admin: always allowed.
    Producer: only for projects they own.
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            project = get_project_func(**kwargs)
            if not can_edit_project(project):
                return _forbidden()
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
