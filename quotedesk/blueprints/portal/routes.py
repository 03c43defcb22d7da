"""
quotedesk/blueprints/portal/routes.py

Supplier response portal.

The quote request email links to <FRONTEND_URL>/quote/<token>; the frontend calls:
- GET  /portal/quotes/<token>   what is being quoted + the current response
- POST /portal/quotes/<token>   submit or revise pricing

IMPORTANT:
- No login: the unguessable quote token is the credential.
- Only Pending / Submitted quotes accept submissions. Decided quotes return 409.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...errors import NotFoundError
from ...models import QuoteStatus
from ...repository import SqlQuoteRepository
from ...services.acceptance import submit_quote
from ...utils import json_body, parse_date, parse_decimal, quote_badge

portal_bp = Blueprint("portal", __name__, url_prefix="/portal")


def _portal_view(quote) -> dict:
    asset = quote.asset
    project = asset.project if asset else None
    return {
        "quote": {
            **quote.to_dict(),
            "badge": quote_badge(quote),
            "can_submit": quote.status in (QuoteStatus.PENDING, QuoteStatus.SUBMITTED),
        },
        "asset": {
            "name": asset.name,
            "specifications": asset.specifications,
            "timeline": asset.timeline.isoformat() if asset.timeline else None,
            "quantity": asset.quantity,
        },
        "project": {
            "project_name": project.project_name if project else None,
            "client_name": project.client_name if project else None,
        },
        "supplier": {"id": quote.supplier_id, "name": quote.supplier.name if quote.supplier else None},
    }


@portal_bp.route("/quotes/<token>", methods=["GET"])
def view_quote(token: str):
    quote = SqlQuoteRepository().get_quote_by_token(token)
    if quote is None:
        raise NotFoundError("Quote not found", code="QUOTE_NOT_FOUND")
    return jsonify({"success": True, **_portal_view(quote)})


@portal_bp.route("/quotes/<token>", methods=["POST"])
def submit(token: str):
    """
    Body: {"cost": 1250.00, "notes": "...", "document_url": "...",
           "valid_until": "2026-12-31", "cost_breakdown": {"labour": 800, ...}}
    """
    data = json_body(request)
    quote = submit_quote(
        SqlQuoteRepository(),
        token,
        cost=parse_decimal(data.get("cost"), "cost"),
        notes=str(data.get("notes") or "").strip() or None,
        document_url=str(data.get("document_url") or "").strip() or None,
        valid_until=parse_date(data.get("valid_until"), "valid_until"),
        cost_breakdown=data.get("cost_breakdown"),
    )
    return jsonify({"success": True, **_portal_view(quote)})
