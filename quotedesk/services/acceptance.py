"""
quotedesk/services/acceptance.py

Quote acceptance workflow and supplier responses.

accept_quote():
- the quote must be Submitted (or already Accepted: re-running is a no-op for the quote)
- no other quote of the asset may already be Accepted
- the winner is Accepted, every sibling quote of the asset is Rejected and the asset is
  assigned to the winning supplier, all in ONE transaction (repository.accept_quote)
- a database failure rolls everything back and surfaces as BackendError
- when an email sender is given, the winning supplier is told by email once the
  transaction has committed; a failed notification is logged and never undoes acceptance

reject_quote() is a plain status change with no sibling or asset side effects.

submit_quote() is the supplier side: the response link carries the quote token.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from decimal import Decimal

from jinja2 import Environment, StrictUndefined

from ..errors import EmailDeliveryError, InvalidTransitionError, NotFoundError, ValidationError
from ..models import AssetStatus, QuoteStatus, _money, check_transition
from ..repository import QuoteRepository
from .email import EmailMessage, EmailSender

logger = logging.getLogger("quotedesk.acceptance")

_MISSING = object()

_jinja = Environment(undefined=StrictUndefined, autoescape=False)

ACCEPTED_SUBJECT = "Your Quote was Accepted"

ACCEPTED_BODY_TEMPLATE = _jinja.from_string(
    """Good news, {{ contact_name }}!

Your quote "{{ asset.name }}" has been accepted.
The producer will be in touch shortly.

Best regards,
{{ sender.name }}
{{ sender.email }}"""
)


def _load_quote(repository: QuoteRepository, quote_id: int):
    quote = repository.get_quote(quote_id)
    if quote is None:
        raise NotFoundError("Quote not found", code="QUOTE_NOT_FOUND")
    return quote


def accept_quote(
    repository: QuoteRepository,
    quote_id: int,
    asset_status=_MISSING,
    *,
    email_sender: EmailSender | None = None,
    sender=None,
) -> dict:
    """
    Accept a quote and reject its competitors.

    asset_status: new status for the asset (default Approved); None leaves it unchanged.
    email_sender / sender: notify the winning supplier (skipped when re-accepting).

    Returns {"quote", "rejected_quote_ids", "asset", "supplier_notified"}.
    """
    if asset_status is _MISSING:
        asset_status = AssetStatus.APPROVED
    if asset_status is not None and asset_status not in AssetStatus.ALL:
        raise ValidationError(f"Unknown asset status: {asset_status}")

    quote = _load_quote(repository, quote_id)
    newly_accepted = quote.status != QuoteStatus.ACCEPTED
    if newly_accepted:
        check_transition(quote.status, QuoteStatus.ACCEPTED)

    for sibling in repository.list_quotes_for_asset(quote.asset_id):
        if sibling.id != quote.id and sibling.status == QuoteStatus.ACCEPTED:
            raise InvalidTransitionError(
                f"Quote {sibling.id} is already accepted for this asset; it cannot be replaced."
            )

    rejected = repository.accept_quote(quote, asset_status)
    asset = repository.get_asset(quote.asset_id)

    logger.info(
        "Quote %s accepted for asset %s; %d competing quote(s) rejected",
        quote.id,
        quote.asset_id,
        len(rejected),
    )

    notified = False
    if newly_accepted and email_sender is not None and sender is not None:
        notified = notify_quote_accepted(repository, email_sender, quote, asset, sender)

    return {
        "quote": quote,
        "rejected_quote_ids": [q.id for q in rejected],
        "asset": asset,
        "supplier_notified": notified,
    }


def notify_quote_accepted(repository: QuoteRepository, email_sender: EmailSender, quote, asset, sender) -> bool:
    """
    Email the winning supplier (primary contact, else the supplier's contact_email).

    Returns True when the message was handed to the sender. Never raises for delivery
    problems. Runs its own event loop, so it must not be called from inside one.
    """
    suppliers = repository.get_suppliers([quote.supplier_id])
    supplier = suppliers[0] if suppliers else None
    recipient = supplier.recipient_email if supplier else None
    if not recipient:
        logger.warning("No supplier email for accepted quote %s; acceptance email skipped", quote.id)
        return False

    contact = supplier.primary_contact
    message = EmailMessage(
        to=recipient,
        subject=ACCEPTED_SUBJECT,
        body=ACCEPTED_BODY_TEMPLATE.render(
            contact_name=contact.name if contact and contact.name else supplier.name,
            asset=asset,
            sender=sender,
        ),
        from_address=sender.email,
        from_name=sender.name,
    )

    try:
        asyncio.run(email_sender.send(message))
    except EmailDeliveryError as exc:
        logger.error("Acceptance email for quote %s failed: %s", quote.id, exc.message)
        return False
    except Exception:
        logger.exception("Unexpected error sending acceptance email for quote %s", quote.id)
        return False

    logger.info("Acceptance email for quote %s sent to %s", quote.id, recipient)
    return True


def reject_quote(repository: QuoteRepository, quote_id: int):
    quote = _load_quote(repository, quote_id)
    check_transition(quote.status, QuoteStatus.REJECTED)
    if quote.status == QuoteStatus.REJECTED:
        return quote

    repository.set_quote_status(quote, QuoteStatus.REJECTED)
    logger.info("Quote %s rejected", quote.id)
    return quote


def response_hours(created_at: datetime | None, submitted_at: datetime) -> int | None:
    """Whole hours (rounded up, minimum 0) between the request and the first submission."""
    if created_at is None:
        return None
    seconds = (submitted_at - created_at).total_seconds()
    return max(0, math.ceil(seconds / 3600))


def submit_quote(
    repository: QuoteRepository,
    token: str,
    *,
    cost: Decimal | None,
    notes: str | None = None,
    document_url: str | None = None,
    valid_until=None,
    cost_breakdown: dict | None = None,
    now: datetime | None = None,
):
    """Supplier submits (or revises) pricing through the quote response link."""
    quote = repository.get_quote_by_token(token)
    if quote is None:
        raise NotFoundError("Quote not found", code="QUOTE_NOT_FOUND")

    if cost is None:
        raise ValidationError("'cost' is required.")
    if cost < 0:
        raise ValidationError("'cost' must not be negative.")
    if cost_breakdown is not None and not isinstance(cost_breakdown, dict):
        raise ValidationError("'cost_breakdown' must be an object.")

    cost = _money(cost)
    check_transition(quote.status, QuoteStatus.SUBMITTED)

    hours = None
    if quote.response_time_hours is None:
        hours = response_hours(quote.created_at, now or datetime.utcnow())

    repository.save_submission(
        quote,
        cost=cost,
        notes=notes,
        document_url=document_url,
        valid_until=valid_until,
        cost_breakdown=cost_breakdown,
        response_time_hours=hours,
    )
    logger.info("Quote %s submitted by supplier %s (cost=%s)", quote.id, quote.supplier_id, cost)
    return quote


def quote_history(repository: QuoteRepository, quote_id: int) -> list[dict]:
    _load_quote(repository, quote_id)
    return repository.quote_history(quote_id)
