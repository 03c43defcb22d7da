"""
quotedesk/blueprints/suppliers/__init__.py

Blueprint package export.
"""

from __future__ import annotations

from .routes import suppliers_bp  # noqa: F401
