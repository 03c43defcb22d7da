"""
quotedesk/blueprints/quotes/routes.py

Quote workflow endpoints for producers.

Includes:
- quote list with status badges and the "compare" flag
- comparison (ranked quotes + metrics) and summary
- supplier suggestions, email previews and the quote request fan-out
- accept / reject and the quote status history

IMPORTANT:
- All business rules live in quotedesk.services; routes only parse input, check access
  and render JSON.
"""

from __future__ import annotations

import binascii

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from ...errors import NotFoundError, ValidationError
from ...extensions import db
from ...models import Asset, Quote
from ...repository import SqlQuoteRepository
from ...security import project_access_required, project_edit_required
from ...services import acceptance
from ...services.comparison import can_compare, compare_quotes, sort_quotes, summarize_quotes
from ...services.email import EmailAttachment
from ...services.quote_requests import CustomizedEmail, QuoteRequestOrchestrator, Sender
from ...utils import json_body, parse_bool, parse_id_list, parse_optional_int, quote_badge

quotes_bp = Blueprint("quotes", __name__)

_ABSENT = object()


# ---------------------------------------------------------------------
# Loaders / service wiring
# ---------------------------------------------------------------------
def _asset_project(asset_id: int, **_: object):
    asset = db.session.get(Asset, asset_id)
    if asset is None:
        raise NotFoundError("Asset not found", code="ASSET_NOT_FOUND")
    return asset.project


def _quote_project(quote_id: int, **_: object):
    quote = db.session.get(Quote, quote_id)
    if quote is None:
        raise NotFoundError("Quote not found", code="QUOTE_NOT_FOUND")
    return quote.asset.project


def _orchestrator(repository: SqlQuoteRepository) -> QuoteRequestOrchestrator:
    config = current_app.config
    return QuoteRequestOrchestrator(
        repository,
        current_app.extensions["quotedesk_email_sender"],
        frontend_url=config["FRONTEND_URL"],
        default_sender=Sender(name=config["EMAIL_FROM_NAME"], email=config["EMAIL_FROM_ADDRESS"]),
    )


def _sender_from(data: dict) -> Sender:
    config = current_app.config
    name = str(data.get("from_name") or "").strip() or current_user.display_name or config["EMAIL_FROM_NAME"]
    email = str(data.get("from_email") or "").strip() or current_user.email or config["EMAIL_FROM_ADDRESS"]
    return Sender(name=name, email=email)


def quote_payload(quote: Quote) -> dict:
    data = quote.to_dict()
    data["supplier_name"] = quote.supplier.name if quote.supplier else None
    data["badge"] = quote_badge(quote)
    return data


def _parse_attachments(raw, supplier_id: int) -> list[EmailAttachment]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"Attachments for supplier {supplier_id} must be a list.")
    attachments = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("filename") or not item.get("content"):
            raise ValidationError("Each attachment needs 'filename' and base64 'content'.")
        try:
            attachments.append(
                EmailAttachment.from_base64(item["filename"], item["content"], item.get("content_type"))
            )
        except (binascii.Error, ValueError):
            raise ValidationError(f"Attachment '{item['filename']}' is not valid base64.")
    return attachments


def _parse_string_or_none(value, field: str) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError(f"'{field}' must be a list of email addresses.")
    return [str(v).strip() for v in value if str(v).strip()]


def parse_customized_emails(raw) -> list[CustomizedEmail]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("'customized_emails' must be a list.")
    result = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("Each customized email must be an object.")
        supplier_id = parse_optional_int(item.get("supplier_id"), "supplier_id")
        if supplier_id is None:
            raise ValidationError("Each customized email needs a 'supplier_id'.")
        result.append(
            CustomizedEmail(
                supplier_id=supplier_id,
                subject=(item.get("subject") or None),
                body=(item.get("body") or None),
                cc=_parse_string_or_none(item.get("cc"), "cc"),
                bcc=_parse_string_or_none(item.get("bcc"), "bcc"),
                attachments=_parse_attachments(item.get("attachments"), supplier_id),
            )
        )
    return result


# ---------------------------------------------------------------------
# Quote list / comparison
# ---------------------------------------------------------------------
@quotes_bp.route("/assets/<int:asset_id>/quotes", methods=["GET"])
@login_required
@project_access_required(_asset_project)
def list_quotes(asset_id: int):
    quotes = SqlQuoteRepository().list_quotes_for_asset(asset_id)
    return jsonify(
        {
            "success": True,
            "quotes": [quote_payload(q) for q in quotes],
            "can_compare": can_compare(quotes),
        }
    )


@quotes_bp.route("/assets/<int:asset_id>/quotes/compare", methods=["GET"])
@login_required
@project_access_required(_asset_project)
def compare(asset_id: int):
    """
    Ranked comparison.

    Query:
    - sort: cost | response_time | validity (default cost)
    - order: asc | desc (default asc)
    - all: compare every quote, not only Submitted ones with a price
    """
    quotes = SqlQuoteRepository().list_quotes_for_asset(asset_id)
    result = compare_quotes(quotes, include_all=parse_bool(request.args.get("all")))
    ordered = sort_quotes(
        result.quotes,
        key=(request.args.get("sort") or "cost").strip(),
        order=(request.args.get("order") or "asc").strip().lower(),
    )

    rows = []
    for ranked in ordered:
        row = ranked.to_dict()
        row["supplier_name"] = ranked.quote.supplier.name if ranked.quote.supplier else None
        row["badge"] = quote_badge(ranked.quote)
        rows.append(row)

    return jsonify(
        {
            "success": True,
            "asset_id": asset_id,
            "comparison_metrics": result.metrics.to_dict(),
            "quotes": rows,
        }
    )


@quotes_bp.route("/assets/<int:asset_id>/quotes/summary", methods=["GET"])
@login_required
@project_access_required(_asset_project)
def summary(asset_id: int):
    quotes = SqlQuoteRepository().list_quotes_for_asset(asset_id)
    return jsonify({"success": True, "asset_id": asset_id, "summary": summarize_quotes(quotes)})


# ---------------------------------------------------------------------
# Quote requests
# ---------------------------------------------------------------------
@quotes_bp.route("/assets/<int:asset_id>/suggested-suppliers", methods=["GET"])
@login_required
@project_access_required(_asset_project)
def suggested_suppliers(asset_id: int):
    suggestions = _orchestrator(SqlQuoteRepository()).suggest_suppliers(asset_id)
    return jsonify(
        {
            "success": True,
            "suppliers": [
                {**s["supplier"].to_dict(), "already_contacted": s["already_contacted"]}
                for s in suggestions
            ],
        }
    )


@quotes_bp.route("/assets/<int:asset_id>/quote-requests/preview", methods=["POST"])
@login_required
@project_edit_required(_asset_project)
def preview_quote_requests(asset_id: int):
    data = json_body(request)
    supplier_ids = parse_id_list(data.get("supplier_ids"), "supplier_ids")
    drafts = _orchestrator(SqlQuoteRepository()).preview(asset_id, supplier_ids, _sender_from(data))
    return jsonify({"success": True, "emails": [d.to_dict() for d in drafts]})


@quotes_bp.route("/assets/<int:asset_id>/quote-requests", methods=["POST"])
@login_required
@project_edit_required(_asset_project)
def send_quote_requests(asset_id: int):
    """
    Create quotes and email the selected suppliers.

    Always 200 when the batch ran, even if some emails failed; the body reports
    sent / failed counts and per-supplier errors.
    """
    data = json_body(request)
    supplier_ids = parse_id_list(data.get("supplier_ids"), "supplier_ids")
    customized = parse_customized_emails(data.get("customized_emails"))

    batch = _orchestrator(SqlQuoteRepository()).send(
        asset_id,
        supplier_ids,
        customized_emails=customized,
        sender=_sender_from(data),
    )
    payload = batch.to_dict()
    payload["success"] = True
    return jsonify(payload)


# ---------------------------------------------------------------------
# Acceptance workflow
# ---------------------------------------------------------------------
@quotes_bp.route("/quotes/<int:quote_id>/accept", methods=["POST"])
@login_required
@project_edit_required(_quote_project)
def accept(quote_id: int):
    """
    Accept a quote; every competing quote for the asset is rejected.

    Body (optional): {"asset_status": "Approved" | ... | null}. Omitted -> Approved,
    null -> the asset status is left unchanged. The winning supplier is emailed,
    signed with from_name / from_email when given.
    """
    data = json_body(request)
    asset_status = data.get("asset_status", _ABSENT)
    notify = {
        "email_sender": current_app.extensions["quotedesk_email_sender"],
        "sender": _sender_from(data),
    }

    if asset_status is _ABSENT:
        outcome = acceptance.accept_quote(SqlQuoteRepository(), quote_id, **notify)
    else:
        outcome = acceptance.accept_quote(SqlQuoteRepository(), quote_id, asset_status=asset_status, **notify)

    return jsonify(
        {
            "success": True,
            "quote": quote_payload(outcome["quote"]),
            "rejected_quote_ids": outcome["rejected_quote_ids"],
            "asset": outcome["asset"].to_dict(),
            "supplier_notified": outcome["supplier_notified"],
        }
    )


@quotes_bp.route("/quotes/<int:quote_id>/reject", methods=["POST"])
@login_required
@project_edit_required(_quote_project)
def reject(quote_id: int):
    quote = acceptance.reject_quote(SqlQuoteRepository(), quote_id)
    return jsonify({"success": True, "quote": quote_payload(quote)})


@quotes_bp.route("/quotes/<int:quote_id>/history", methods=["GET"])
@login_required
@project_access_required(_quote_project)
def history(quote_id: int):
    return jsonify({"success": True, "history": acceptance.quote_history(SqlQuoteRepository(), quote_id)})
