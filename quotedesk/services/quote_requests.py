"""
quotedesk/services/quote_requests.py

Quote request orchestrator.

For one asset and a selection of suppliers:
1) skip suppliers that already hold a quote for the asset ("already contacted")
2) create one Pending quote row (cost 0) per remaining supplier, committed on its own
3) send every request email concurrently and wait for ALL of them (all-settled)
4) report per-recipient outcomes plus sent / failed counts

IMPORTANT:
- A quote is "requested" once its row exists. Email failures never roll back rows.
- Every email is attempted even if others fail; nothing is retried automatically.
- The email text comes from a deterministic template; callers may override subject,
  body, CC, BCC and attachments per supplier. The supplier's response link is always
  appended when the body does not already contain it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from jinja2 import Environment, StrictUndefined

from ..errors import BackendError, EmailDeliveryError, NotFoundError, ValidationError
from ..models import AssetStatus
from ..repository import QuoteRepository, new_quote_token
from .email import EmailAttachment, EmailMessage, EmailSender

logger = logging.getLogger("quotedesk.quote_requests")

_jinja = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=False)

SUBJECT_TEMPLATE = _jinja.from_string("Quote Request: {{ asset.name }}")

BODY_TEMPLATE = _jinja.from_string(
    """Dear {{ contact_name }},

We would like to request a quote for the following asset:

Asset: {{ asset.name }}
Specifications: {{ asset.specifications or 'See project brief for details' }}
Timeline: {{ asset.timeline.isoformat() if asset.timeline else 'To be discussed' }}
{%- if asset.quantity %}
Quantity: {{ asset.quantity }}
{%- endif %}
{%- if project %}
Project: {{ project.project_name }}{% if project.client_name %} (client: {{ project.client_name }}){% endif %}
{%- endif %}

Please provide your quote by visiting the link below and submitting your proposal.

Thank you for your time and we look forward to working with you.

Best regards,
{{ sender.name }}
{{ sender.email }}"""
)


@dataclass(frozen=True)
class Sender:
    name: str
    email: str


@dataclass
class CustomizedEmail:
    """Per-supplier overrides; any field left as None keeps the template value."""

    supplier_id: int
    subject: Optional[str] = None
    body: Optional[str] = None
    cc: Optional[list[str]] = None
    bcc: Optional[list[str]] = None
    attachments: list[EmailAttachment] = field(default_factory=list)


@dataclass
class EmailDraft:
    supplier_id: int
    supplier_name: str
    to: Optional[str]
    cc: list[str]
    bcc: list[str]
    subject: str
    body: str

    def to_dict(self) -> dict:
        return {
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "to": self.to,
            "cc": list(self.cc),
            "bcc": list(self.bcc),
            "subject": self.subject,
            "body": self.body,
        }


@dataclass
class RecipientOutcome:
    supplier_id: int
    supplier_name: str
    quote_id: Optional[int] = None
    recipient: Optional[str] = None
    email_sent: bool = False
    email_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "quote_id": self.quote_id,
            "recipient": self.recipient,
            "email_sent": self.email_sent,
            "email_error": self.email_error,
        }


@dataclass
class QuoteRequestBatch:
    asset_id: int
    total_requests: int
    results: list[RecipientOutcome] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def requested(self) -> int:
        return sum(1 for r in self.results if r.quote_id is not None)

    @property
    def sent(self) -> int:
        return sum(1 for r in self.results if r.email_sent)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.email_sent)

    @property
    def message(self) -> str:
        text = f"{self.sent} quote request(s) sent, {self.failed} failed"
        if self.skipped:
            text += f", {len(self.skipped)} supplier(s) already contacted"
        return text + "."

    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "total_requests": self.total_requests,
            "requested": self.requested,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": list(self.skipped),
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
            "message": self.message,
        }


def contact_name_for(supplier) -> str:
    contact = supplier.primary_contact
    return contact.name if contact and contact.name else supplier.name


def matches_categories(supplier, terms: Iterable[str]) -> bool:
    """Case-insensitive substring match between service categories and terms (either way)."""
    categories = [c.lower() for c in (supplier.service_categories or []) if c]
    for term in terms:
        t = (term or "").strip().lower()
        if not t:
            continue
        if any(t in c or c in t for c in categories):
            return True
    return False


class QuoteRequestOrchestrator:
    """Creates quote rows for selected suppliers and dispatches the request emails."""

    def __init__(
        self,
        repository: QuoteRepository,
        email_sender: EmailSender,
        *,
        frontend_url: str,
        default_sender: Sender,
    ):
        self.repository = repository
        self.email_sender = email_sender
        self.frontend_url = frontend_url.rstrip("/")
        self.default_sender = default_sender

    # -----------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------
    def _load_asset(self, asset_id: int):
        asset = self.repository.get_asset(asset_id)
        if asset is None:
            raise NotFoundError("Asset not found", code="ASSET_NOT_FOUND")
        return asset

    def _load_suppliers(self, supplier_ids: Sequence[int]):
        if not supplier_ids:
            raise ValidationError("Supplier IDs array is required and cannot be empty.")

        unique_ids = list(dict.fromkeys(supplier_ids))
        suppliers = self.repository.get_suppliers(unique_ids)
        if len(suppliers) != len(unique_ids):
            found = {s.id for s in suppliers}
            missing = [i for i in unique_ids if i not in found]
            raise ValidationError(f"Supplier(s) not found: {', '.join(str(i) for i in missing)}")
        return suppliers

    def quote_link(self, token: str) -> str:
        return f"{self.frontend_url}/quote/{token}"

    # -----------------------------------------------------------------
    # Suggestions
    # -----------------------------------------------------------------
    def suggest_suppliers(self, asset_id: int) -> list[dict]:
        """
        Suppliers whose categories match the asset (name or tags), flagged already_contacted.

        Falls back to the full directory when nothing matches.
        """
        asset = self._load_asset(asset_id)
        suppliers = self.repository.list_suppliers()
        terms = [asset.name, *(asset.tags or [])]

        relevant = [s for s in suppliers if matches_categories(s, terms)] or suppliers
        contacted = self.repository.contacted_supplier_ids(asset.id)

        return [
            {"supplier": s, "already_contacted": s.id in contacted}
            for s in relevant
        ]

    # -----------------------------------------------------------------
    # Drafts
    # -----------------------------------------------------------------
    def build_draft(self, asset, project, supplier, sender: Sender) -> EmailDraft:
        persons = list(supplier.contact_persons or [])
        return EmailDraft(
            supplier_id=supplier.id,
            supplier_name=supplier.name,
            to=supplier.recipient_email,
            cc=[p.email for p in persons if p.is_cc and p.email],
            bcc=[p.email for p in persons if p.is_bcc and p.email],
            subject=SUBJECT_TEMPLATE.render(asset=asset),
            body=BODY_TEMPLATE.render(
                asset=asset,
                project=project,
                contact_name=contact_name_for(supplier),
                sender=sender,
            ),
        )

    def preview(self, asset_id: int, supplier_ids: Sequence[int], sender: Sender | None = None) -> list[EmailDraft]:
        asset = self._load_asset(asset_id)
        suppliers = self._load_suppliers(supplier_ids)
        project = self.repository.get_project(asset.project_id)
        sender = sender or self.default_sender
        return [self.build_draft(asset, project, s, sender) for s in suppliers]

    @staticmethod
    def apply_customization(draft: EmailDraft, custom: CustomizedEmail | None) -> tuple[EmailDraft, list[EmailAttachment]]:
        if custom is None:
            return draft, []
        return (
            EmailDraft(
                supplier_id=draft.supplier_id,
                supplier_name=draft.supplier_name,
                to=draft.to,
                cc=list(custom.cc) if custom.cc is not None else draft.cc,
                bcc=list(custom.bcc) if custom.bcc is not None else draft.bcc,
                subject=custom.subject if custom.subject else draft.subject,
                body=custom.body if custom.body else draft.body,
            ),
            list(custom.attachments),
        )

    def _with_link(self, body: str, token: str) -> str:
        link = self.quote_link(token)
        if link in body:
            return body
        return f"{body}\n\nPlease provide your quote by visiting: {link}"

    # -----------------------------------------------------------------
    # Send
    # -----------------------------------------------------------------
    def send(
        self,
        asset_id: int,
        supplier_ids: Sequence[int],
        customized_emails: Sequence[CustomizedEmail] | None = None,
        sender: Sender | None = None,
    ) -> QuoteRequestBatch:
        """
        Blocking entry point for request handlers and CLI commands.

        Starts its own event loop, so it raises RuntimeError inside a running loop;
        await send_async() there instead.
        """
        return asyncio.run(self.send_async(asset_id, supplier_ids, customized_emails, sender))

    async def send_async(
        self,
        asset_id: int,
        supplier_ids: Sequence[int],
        customized_emails: Sequence[CustomizedEmail] | None = None,
        sender: Sender | None = None,
    ) -> QuoteRequestBatch:
        asset = self._load_asset(asset_id)
        suppliers = self._load_suppliers(supplier_ids)
        project = self.repository.get_project(asset.project_id)
        sender = sender or self.default_sender
        custom_by_supplier = {c.supplier_id: c for c in customized_emails or []}

        contacted = self.repository.contacted_supplier_ids(asset.id)
        batch = QuoteRequestBatch(asset_id=asset.id, total_requests=len(suppliers))

        outgoing: list[tuple[RecipientOutcome, EmailMessage]] = []

        for supplier in suppliers:
            if supplier.id in contacted:
                logger.info("Supplier %s already contacted for asset %s; skipped", supplier.id, asset.id)
                batch.skipped.append(supplier.id)
                batch.total_requests -= 1
                continue

            draft, attachments = self.apply_customization(
                self.build_draft(asset, project, supplier, sender),
                custom_by_supplier.get(supplier.id),
            )
            token = new_quote_token()
            body = self._with_link(draft.body, token)
            outcome = RecipientOutcome(supplier_id=supplier.id, supplier_name=supplier.name, recipient=draft.to)
            batch.results.append(outcome)

            try:
                quote = self.repository.create_quote(
                    asset.id,
                    supplier.id,
                    quote_token=token,
                    request_subject=draft.subject,
                    request_body=body,
                )
            except BackendError as exc:
                logger.error("Failed to create quote for supplier %s: %s", supplier.id, exc.message)
                outcome.email_error = "Quote was not created; email not sent"
                batch.errors.append(
                    {"supplier_id": supplier.id, "supplier_name": supplier.name, "stage": "create", "error": exc.message}
                )
                continue

            outcome.quote_id = quote.id
            logger.info("Quote %s requested from %s for asset %s", quote.id, supplier.name, asset.id)

            if not draft.to:
                outcome.email_error = "Supplier has no contact email"
                batch.errors.append(
                    {"supplier_id": supplier.id, "supplier_name": supplier.name, "stage": "email", "error": outcome.email_error}
                )
                continue

            outgoing.append(
                (
                    outcome,
                    EmailMessage(
                        to=draft.to,
                        cc=draft.cc,
                        bcc=draft.bcc,
                        subject=draft.subject,
                        body=body,
                        from_address=sender.email,
                        from_name=sender.name,
                        attachments=attachments,
                    ),
                )
            )

        if outgoing:
            settled = await self._dispatch([message for _, message in outgoing])
            for (outcome, _), result in zip(outgoing, settled):
                if isinstance(result, BaseException):
                    outcome.email_error = result.message if isinstance(result, EmailDeliveryError) else str(result)
                    batch.errors.append(
                        {
                            "supplier_id": outcome.supplier_id,
                            "supplier_name": outcome.supplier_name,
                            "stage": "email",
                            "error": outcome.email_error,
                        }
                    )
                else:
                    outcome.email_sent = True

        if batch.requested and asset.status == AssetStatus.PENDING:
            try:
                self.repository.set_asset_status(asset, AssetStatus.QUOTING)
            except BackendError as exc:
                logger.error("Quotes requested but asset %s status not updated: %s", asset.id, exc.message)

        logger.info("Quote requests for asset %s: %s", asset.id, batch.message)
        return batch

    async def _dispatch(self, messages: list[EmailMessage]) -> list:
        """Send all messages concurrently; exceptions are returned in place of results."""

        async def _send_one(message: EmailMessage):
            try:
                await self.email_sender.send(message)
            except EmailDeliveryError as exc:
                logger.warning("Email to %s failed: %s", message.to, exc.message)
                raise
            except Exception:
                logger.exception("Unexpected error sending email to %s", message.to)
                raise
            logger.info("Email sent to %s", message.to)

        return await asyncio.gather(*(_send_one(m) for m in messages), return_exceptions=True)
