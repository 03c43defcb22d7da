"""
Shared fixtures.

Service tests run against InMemoryQuoteRepository (plain, unsaved model instances)
and RecordingEmailSender. API tests use the Flask test client on in-memory SQLite.
"""

import itertools
from datetime import datetime
from decimal import Decimal

import pytest

from quotedesk import create_app
from quotedesk.errors import BackendError, EmailDeliveryError
from quotedesk.extensions import db
from quotedesk.models import (
    Asset,
    AssetStatus,
    ContactPerson,
    Project,
    ProjectStatus,
    Quote,
    QuoteStatus,
    Supplier,
    User,
    check_transition,
)
from quotedesk.repository import QuoteRepository, new_quote_token
from quotedesk.services.email import EmailSender


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------
class InMemoryQuoteRepository(QuoteRepository):
    """Dict-backed repository; failures can be injected per operation."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.projects = {}
        self.assets = {}
        self.suppliers = {}
        self.quotes = {}
        self.history = {}

        self.fail_create_for = set()
        self.fail_accept = False

    def _next_id(self) -> int:
        return next(self._ids)

    def _record(self, quote, action, from_status, to_status):
        self.history.setdefault(quote.id, []).append(
            {
                "action": action,
                "entity_type": "Quote",
                "entity_id": quote.id,
                "from_status": from_status,
                "to_status": to_status,
            }
        )

    # -- builders ------------------------------------------------------
    def add_project(self, name="Gala", client="Acme") -> Project:
        project = Project(
            id=self._next_id(), project_name=name, client_name=client, status=ProjectStatus.NEW
        )
        self.projects[project.id] = project
        return project

    def add_asset(self, project, name="Stage lighting", status=AssetStatus.PENDING, **fields) -> Asset:
        asset = Asset(id=self._next_id(), project_id=project.id, name=name, status=status, **fields)
        self.assets[asset.id] = asset
        return asset

    def add_supplier(self, name, email=None, categories=(), contacts=()) -> Supplier:
        supplier = Supplier(
            id=self._next_id(),
            name=name,
            contact_email=email,
            service_categories=list(categories),
            cities_served=[],
        )
        for contact in contacts:
            supplier.contact_persons.append(ContactPerson(**contact))
        self.suppliers[supplier.id] = supplier
        return supplier

    def add_quote(self, asset, supplier, status=QuoteStatus.SUBMITTED, cost="0", **fields) -> Quote:
        quote = Quote(
            id=self._next_id(),
            asset_id=asset.id,
            supplier_id=supplier.id,
            status=status,
            cost=Decimal(str(cost)),
            quote_token=new_quote_token(),
            created_at=fields.pop("created_at", datetime.utcnow()),
            **fields,
        )
        self.quotes[quote.id] = quote
        return quote

    # -- reads ---------------------------------------------------------
    def get_asset(self, asset_id):
        return self.assets.get(asset_id)

    def get_project(self, project_id):
        return self.projects.get(project_id)

    def get_suppliers(self, supplier_ids):
        return [self.suppliers[i] for i in supplier_ids if i in self.suppliers]

    def list_suppliers(self):
        return sorted(self.suppliers.values(), key=lambda s: s.name)

    def list_quotes_for_asset(self, asset_id):
        return [q for q in self.quotes.values() if q.asset_id == asset_id]

    def contacted_supplier_ids(self, asset_id):
        return {q.supplier_id for q in self.list_quotes_for_asset(asset_id)}

    def get_quote(self, quote_id):
        return self.quotes.get(quote_id)

    def get_quote_by_token(self, token):
        return next((q for q in self.quotes.values() if q.quote_token == token), None)

    def quote_history(self, quote_id):
        return list(self.history.get(quote_id, []))

    # -- writes --------------------------------------------------------
    def create_quote(self, asset_id, supplier_id, *, quote_token=None, request_subject=None, request_body=None):
        if supplier_id in self.fail_create_for:
            raise BackendError("Failed to create quote: OperationalError")
        quote = Quote(
            id=self._next_id(),
            asset_id=asset_id,
            supplier_id=supplier_id,
            status=QuoteStatus.PENDING,
            cost=Decimal("0.00"),
            quote_token=quote_token or new_quote_token(),
            request_subject=request_subject,
            request_body=request_body,
            created_at=datetime.utcnow(),
        )
        self.quotes[quote.id] = quote
        self._record(quote, "CREATE", None, QuoteStatus.PENDING)
        return quote

    def save_submission(self, quote, *, cost, notes, document_url, valid_until, cost_breakdown, response_time_hours):
        before = quote.status
        quote.status = QuoteStatus.SUBMITTED
        quote.cost = cost
        quote.notes = notes
        quote.document_url = document_url
        quote.valid_until = valid_until
        quote.cost_breakdown = cost_breakdown
        if response_time_hours is not None:
            quote.response_time_hours = response_time_hours
        self._record(quote, "SUBMIT", before, quote.status)
        return quote

    def set_quote_status(self, quote, status):
        if quote.status != status:
            before = quote.status
            quote.status = status
            self._record(quote, {"Rejected": "REJECT", "Accepted": "ACCEPT"}.get(status, "UPDATE"), before, status)
        return quote

    def accept_quote(self, quote, asset_status):
        if self.fail_accept:
            raise BackendError("Failed to accept quote: OperationalError")

        siblings = [
            q for q in self.list_quotes_for_asset(quote.asset_id)
            if q.id != quote.id and q.status != QuoteStatus.REJECTED
        ]
        for sibling in siblings:
            check_transition(sibling.status, QuoteStatus.REJECTED)

        if quote.status != QuoteStatus.ACCEPTED:
            self._record(quote, "ACCEPT", quote.status, QuoteStatus.ACCEPTED)
            quote.status = QuoteStatus.ACCEPTED
        for sibling in siblings:
            self._record(sibling, "REJECT", sibling.status, QuoteStatus.REJECTED)
            sibling.status = QuoteStatus.REJECTED

        asset = self.assets[quote.asset_id]
        asset.assigned_supplier_id = quote.supplier_id
        if asset_status:
            asset.status = asset_status
        return siblings

    def set_asset_status(self, asset, status):
        asset.status = status
        return asset


class RecordingEmailSender(EmailSender):
    """Keeps sent messages; raises EmailDeliveryError for addresses in fail_for."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send(self, message):
        if message.to in self.fail_for:
            raise EmailDeliveryError(f"Mailbox unavailable: {message.to}")
        self.sent.append(message)


# ---------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------
@pytest.fixture
def repo():
    return InMemoryQuoteRepository()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


# ---------------------------------------------------------------------
# Flask fixtures
# ---------------------------------------------------------------------
@pytest.fixture
def app(email_sender):
    app = create_app("config.TestConfig")
    app.extensions["quotedesk_email_sender"] = email_sender

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def create_user(username, password="secret", *, is_admin=False, role=User.ROLE_PRODUCER, email=None) -> User:
    user = User(username=username, display_name=username.title(), is_admin=is_admin, role=role, email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def login(client, username, password="secret"):
    response = client.post("/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.get_json()
    return response


@pytest.fixture
def producer(app):
    return create_user("producer", email="producer@example.com")


@pytest.fixture
def admin(app):
    return create_user("admin", is_admin=True)


@pytest.fixture
def viewer(app):
    return create_user("viewer", role=User.ROLE_VIEWER)
