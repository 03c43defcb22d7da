"""
Utility functions shared across the app. This includes:
- quote_badge: status badge (label, CSS class, awaiting flag) for a quote.
- format_cost: USD display string.
- request parsing helpers (decimal, int, date, string lists).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation

from .errors import ValidationError
from .models import QuoteStatus, _money, _to_decimal, is_awaiting_response


def format_cost(cost) -> str:
    """$1,234.50 style display."""
    value = _money(_to_decimal(cost))
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def quote_badge(quote) -> dict:
    """
    Compute the status badge for a quote.

    Priority:
    1) Pending, or Submitted with cost 0 -> "Pending Response" (no cost shown)
    2) Submitted -> "Quote Submitted" (cost shown)
    3) Accepted -> "Accepted"
    4) Rejected -> "Rejected"
    """
    status = quote.status

    if is_awaiting_response(status, quote.cost):
        return {
            "text": "Pending Response",
            "css_class": "badge-pending",
            "awaiting_response": True,
            "cost_display": None,
        }

    cost_display = format_cost(quote.cost)
    if status == QuoteStatus.SUBMITTED:
        return {"text": "Quote Submitted", "css_class": "badge-submitted", "awaiting_response": False, "cost_display": cost_display}
    if status == QuoteStatus.ACCEPTED:
        return {"text": "Accepted", "css_class": "badge-accepted", "awaiting_response": False, "cost_display": cost_display}
    if status == QuoteStatus.REJECTED:
        return {"text": "Rejected", "css_class": "badge-rejected", "awaiting_response": False, "cost_display": cost_display}

    return {"text": status, "css_class": "badge-unknown", "awaiting_response": False, "cost_display": cost_display}


# ---------------------------------------------------------------------
# Parsing helpers (JSON payloads / query strings)
# ---------------------------------------------------------------------
def parse_decimal(value, field: str) -> Decimal | None:
    """Parse decimal from user input (accepts comma or dot). Empty -> None."""
    if value is None:
        return None
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        parsed = Decimal(raw)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"'{field}' must be a number.")
    if not parsed.is_finite():
        raise ValidationError(f"'{field}' must be a number.")
    return parsed


def parse_optional_int(value, field: str) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be an integer.")


def parse_date(value, field: str) -> date | None:
    """ISO date (YYYY-MM-DD). Timestamps are cut to their date part."""
    if value is None or str(value).strip() == "":
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"'{field}' must be an ISO date (YYYY-MM-DD).")


def parse_string_list(value, field: str) -> list[str]:
    """Accept a JSON list or a comma-separated string; drop blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ValidationError(f"'{field}' must be a list of strings.")
    return [str(v).strip() for v in items if str(v).strip()]


def parse_id_list(value, field: str) -> list[int]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"'{field}' must be a list of ids.")
    ids = []
    for raw in value:
        parsed = parse_optional_int(raw, field)
        if parsed is None:
            raise ValidationError(f"'{field}' contains an empty id.")
        ids.append(parsed)
    return ids


def json_body(request) -> dict:
    """The request's JSON object; empty dict when there is no body."""
    data = request.get_json(silent=True)
    if data is None:
        if request.data:
            raise ValidationError("Request body must be valid JSON.")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def parse_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
