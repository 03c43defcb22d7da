"""
quotedesk/repository.py

Backend boundary for the quote workflow.

The services (orchestrator, acceptance workflow, comparison) never touch db.session
directly: they receive a QuoteRepository. SqlQuoteRepository is the Flask-SQLAlchemy
implementation used by the app; tests substitute an in-memory fake.

IMPORTANT:
- Each mutating method is its own transaction: it commits on success and rolls back
  and raises BackendError on any SQLAlchemyError.
- accept_quote() accepts the winner, rejects every sibling and assigns the supplier to
  the asset in ONE transaction. Rejecting an already-rejected sibling is skipped, so
  re-running acceptance is idempotent. A sibling that is already Accepted blocks the
  whole operation with InvalidTransitionError.
"""

from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError

from .audit import audit_entry_to_dict, log_action, serialize_model
from .errors import BackendError
from .extensions import db
from .models import Asset, AuditLog, Project, Quote, QuoteStatus, Supplier, check_transition

logger = logging.getLogger("quotedesk.repository")


# audit action recorded for each quote status change
_STATUS_ACTIONS = {
    QuoteStatus.SUBMITTED: "SUBMIT",
    QuoteStatus.ACCEPTED: "ACCEPT",
    QuoteStatus.REJECTED: "REJECT",
}


def new_quote_token() -> str:
    return secrets.token_urlsafe(24)


class QuoteRepository(ABC):
    """Record access used by the quote services."""

    # -- reads ---------------------------------------------------------
    @abstractmethod
    def get_asset(self, asset_id: int) -> Optional[Asset]: ...

    @abstractmethod
    def get_project(self, project_id: int) -> Optional[Project]: ...

    @abstractmethod
    def get_suppliers(self, supplier_ids: Iterable[int]) -> list[Supplier]:
        """Suppliers for the given ids, in the order requested; unknown ids are dropped."""

    @abstractmethod
    def list_suppliers(self) -> list[Supplier]: ...

    @abstractmethod
    def list_quotes_for_asset(self, asset_id: int) -> list[Quote]:
        """All quotes of an asset in creation order."""

    @abstractmethod
    def contacted_supplier_ids(self, asset_id: int) -> set[int]: ...

    @abstractmethod
    def get_quote(self, quote_id: int) -> Optional[Quote]: ...

    @abstractmethod
    def get_quote_by_token(self, token: str) -> Optional[Quote]: ...

    @abstractmethod
    def quote_history(self, quote_id: int) -> list[dict]: ...

    # -- writes --------------------------------------------------------
    @abstractmethod
    def create_quote(
        self,
        asset_id: int,
        supplier_id: int,
        *,
        quote_token: str | None = None,
        request_subject: str | None = None,
        request_body: str | None = None,
    ) -> Quote:
        """Persist a Pending quote with cost 0; a token is generated when none is given."""

    @abstractmethod
    def save_submission(
        self,
        quote: Quote,
        *,
        cost: Decimal,
        notes: str | None,
        document_url: str | None,
        valid_until,
        cost_breakdown: dict | None,
        response_time_hours: int | None,
    ) -> Quote: ...

    @abstractmethod
    def set_quote_status(self, quote: Quote, status: str) -> Quote: ...

    @abstractmethod
    def accept_quote(self, quote: Quote, asset_status: str | None) -> list[Quote]:
        """Atomically accept `quote`, reject its siblings; return the rejected siblings."""

    @abstractmethod
    def set_asset_status(self, asset: Asset, status: str) -> Asset: ...


class SqlQuoteRepository(QuoteRepository):
    """Flask-SQLAlchemy implementation (requires an app context)."""

    def __init__(self, session=None):
        self.session = session or db.session

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Database operation failed: %s", operation)
            raise BackendError(f"Failed to {operation}: {exc.__class__.__name__}") from exc
        except Exception:
            self.session.rollback()
            raise

    # -- reads ---------------------------------------------------------
    def get_asset(self, asset_id: int) -> Optional[Asset]:
        return self.session.get(Asset, asset_id)

    def get_project(self, project_id: int) -> Optional[Project]:
        return self.session.get(Project, project_id)

    def get_suppliers(self, supplier_ids: Iterable[int]) -> list[Supplier]:
        ids = list(supplier_ids)
        if not ids:
            return []
        rows = self.session.query(Supplier).filter(Supplier.id.in_(ids)).all()
        by_id = {s.id: s for s in rows}
        return [by_id[i] for i in ids if i in by_id]

    def list_suppliers(self) -> list[Supplier]:
        return self.session.query(Supplier).order_by(Supplier.name.asc()).all()

    def list_quotes_for_asset(self, asset_id: int) -> list[Quote]:
        return (
            self.session.query(Quote)
            .filter(Quote.asset_id == asset_id)
            .order_by(Quote.created_at.asc(), Quote.id.asc())
            .all()
        )

    def contacted_supplier_ids(self, asset_id: int) -> set[int]:
        rows = self.session.query(Quote.supplier_id).filter(Quote.asset_id == asset_id).all()
        return {r[0] for r in rows}

    def get_quote(self, quote_id: int) -> Optional[Quote]:
        return self.session.get(Quote, quote_id)

    def get_quote_by_token(self, token: str) -> Optional[Quote]:
        return self.session.query(Quote).filter_by(quote_token=token).first()

    def quote_history(self, quote_id: int) -> list[dict]:
        entries = (
            self.session.query(AuditLog)
            .filter_by(entity_type="Quote", entity_id=quote_id)
            .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
            .all()
        )
        return [audit_entry_to_dict(e) for e in entries]

    # -- writes --------------------------------------------------------
    def create_quote(self, asset_id, supplier_id, *, quote_token=None, request_subject=None, request_body=None) -> Quote:
        quote = Quote(
            asset_id=asset_id,
            supplier_id=supplier_id,
            status=QuoteStatus.PENDING,
            cost=Decimal("0.00"),
            quote_token=quote_token or new_quote_token(),
            request_subject=request_subject,
            request_body=request_body,
        )
        with self._transaction("create quote"):
            self.session.add(quote)
            self.session.flush()
            log_action(quote, "CREATE", after=serialize_model(quote))
        return quote

    def save_submission(
        self,
        quote,
        *,
        cost,
        notes,
        document_url,
        valid_until,
        cost_breakdown,
        response_time_hours,
    ) -> Quote:
        with self._transaction("submit quote"):
            before = serialize_model(quote)
            quote.status = QuoteStatus.SUBMITTED
            quote.cost = cost
            quote.notes = notes
            quote.document_url = document_url
            quote.valid_until = valid_until
            quote.cost_breakdown = cost_breakdown
            if response_time_hours is not None:
                quote.response_time_hours = response_time_hours
            self.session.flush()
            log_action(quote, "SUBMIT", before=before, after=serialize_model(quote))
        return quote

    def set_quote_status(self, quote: Quote, status: str) -> Quote:
        if quote.status == status:
            return quote
        with self._transaction(f"set quote status to {status}"):
            before = serialize_model(quote)
            quote.status = status
            self.session.flush()
            log_action(quote, _STATUS_ACTIONS.get(status, "UPDATE"), before=before, after=serialize_model(quote))
        return quote

    def accept_quote(self, quote: Quote, asset_status: str | None) -> list[Quote]:
        rejected: list[Quote] = []
        with self._transaction("accept quote"):
            siblings = (
                self.session.query(Quote)
                .filter(
                    Quote.asset_id == quote.asset_id,
                    Quote.id != quote.id,
                    Quote.status != QuoteStatus.REJECTED,
                )
                .all()
            )
            # an Accepted sibling is final; refuse before anything is written
            for sibling in siblings:
                check_transition(sibling.status, QuoteStatus.REJECTED)

            if quote.status != QuoteStatus.ACCEPTED:
                before = serialize_model(quote)
                quote.status = QuoteStatus.ACCEPTED
                self.session.flush()
                log_action(quote, "ACCEPT", before=before, after=serialize_model(quote))

            for sibling in siblings:
                before = serialize_model(sibling)
                sibling.status = QuoteStatus.REJECTED
                rejected.append(sibling)
                self.session.flush()
                log_action(sibling, "REJECT", before=before, after=serialize_model(sibling))

            asset = self.session.get(Asset, quote.asset_id)
            before_asset = serialize_model(asset)
            asset.assigned_supplier_id = quote.supplier_id
            if asset_status:
                asset.status = asset_status
            self.session.flush()
            log_action(asset, "UPDATE", before=before_asset, after=serialize_model(asset))
        return rejected

    def set_asset_status(self, asset: Asset, status: str) -> Asset:
        if asset.status == status:
            return asset
        with self._transaction("update asset status"):
            before = serialize_model(asset)
            asset.status = status
            self.session.flush()
            log_action(asset, "UPDATE", before=before, after=serialize_model(asset))
        return asset
