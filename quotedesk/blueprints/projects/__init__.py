"""
quotedesk/blueprints/projects/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose projects_bp for app factory registration.
"""

from __future__ import annotations

from .routes import projects_bp  # noqa: F401
