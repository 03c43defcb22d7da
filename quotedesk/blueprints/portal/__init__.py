"""
quotedesk/blueprints/portal/__init__.py

Blueprint package export.
"""

from __future__ import annotations

from .routes import portal_bp  # noqa: F401
