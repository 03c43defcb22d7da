"""
QuoteDesk – Domain Models

Producer-side data for event production:
- Project (client engagement) owns Assets (deliverables / service line items)
- Asset owns Quotes (one per contacted Supplier)
- Supplier has ContactPersons (exactly one may be primary)
- AuditLog records every mutation; quote status changes form the quote history

Quote lifecycle:
    Pending -> Submitted -> Accepted | Rejected

IMPORTANT:
- At most one Quote per Asset may be Accepted. This is enforced by the acceptance
  workflow (services/acceptance.py), not by a database constraint.
- Asset.assigned_supplier_id is only set by the acceptance workflow.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .errors import InvalidTransitionError
from .extensions import db


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _to_decimal(value) -> Decimal:
    """Convert Numeric/float/None to Decimal safely."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value))


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------
# Status vocabularies
# ---------------------------------------------------------------------
class ProjectStatus:
    NEW = "New"
    IN_PROGRESS = "In Progress"
    QUOTING = "Quoting"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    ALL = (NEW, IN_PROGRESS, QUOTING, COMPLETED, CANCELLED)


class AssetStatus:
    PENDING = "Pending"
    QUOTING = "Quoting"
    APPROVED = "Approved"
    IN_PRODUCTION = "In Production"
    DELIVERED = "Delivered"

    ALL = (PENDING, QUOTING, APPROVED, IN_PRODUCTION, DELIVERED)


class QuoteStatus:
    PENDING = "Pending"
    SUBMITTED = "Submitted"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"

    ALL = (PENDING, SUBMITTED, ACCEPTED, REJECTED)
    TERMINAL = (ACCEPTED, REJECTED)

    # Submitted -> Submitted is a supplier revising its quote.
    # Rejected -> Rejected is a no-op (keeps sibling rejection idempotent).
    TRANSITIONS = {
        PENDING: {SUBMITTED, REJECTED},
        SUBMITTED: {SUBMITTED, ACCEPTED, REJECTED},
        ACCEPTED: set(),
        REJECTED: {REJECTED},
    }


def can_transition(current: str, target: str) -> bool:
    """True if the quote lifecycle allows current -> target."""
    return target in QuoteStatus.TRANSITIONS.get(current, set())


def check_transition(current: str, target: str) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed."""
    if target not in QuoteStatus.ALL:
        raise InvalidTransitionError(f"Unknown quote status: {target}")
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Cannot change quote status from {current} to {target}.")


def is_awaiting_response(status: str, cost) -> bool:
    """
    Pending, or Submitted with cost 0 ("submitted but awaiting pricing").

    Both statuses represent the same state for display; keep this the single place
    that decides it.
    """
    if status == QuoteStatus.PENDING:
        return True
    return status == QuoteStatus.SUBMITTED and _to_decimal(cost) == Decimal("0")


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """Producer / viewer login."""

    __tablename__ = "users"

    ROLE_PRODUCER = "producer"
    ROLE_VIEWER = "viewer"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(150), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    is_admin = db.Column(db.Boolean, default=False, nullable=False, index=True)
    role = db.Column(db.String(20), default=ROLE_PRODUCER, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    projects = db.relationship("Project", back_populates="producer", lazy=True)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def can_manage(self):
        return self.is_admin or self.role == self.ROLE_PRODUCER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "email": self.email,
            "is_admin": self.is_admin,
            "role": self.role,
        }

    def __repr__(self):
        return f"<User {self.username}>"


# ---------------------------------------------------------------------
# Projects & assets
# ---------------------------------------------------------------------
class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)

    project_name = db.Column(db.String(255), nullable=False)
    client_name = db.Column(db.String(255), nullable=True, index=True)
    brief_description = db.Column(db.Text, nullable=True)
    deadline = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(40), default=ProjectStatus.NEW, nullable=False, index=True)

    producer_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    producer = db.relationship("User", back_populates="projects")

    assets = db.relationship(
        "Asset",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Asset.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_name": self.project_name,
            "client_name": self.client_name,
            "brief_description": self.brief_description,
            "deadline": _iso(self.deadline),
            "status": self.status,
            "producer_id": self.producer_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Project {self.project_name}>"


class Asset(db.Model):
    """Deliverable / service line item within a Project; the unit quotes are requested for."""

    __tablename__ = "assets"

    id = db.Column(db.Integer, primary_key=True)

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    specifications = db.Column(db.Text, nullable=True)
    timeline = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(40), default=AssetStatus.PENDING, nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)

    # Set only by the acceptance workflow
    assigned_supplier_id = db.Column(
        db.Integer,
        db.ForeignKey("suppliers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = db.relationship("Project", back_populates="assets")
    assigned_supplier = db.relationship("Supplier", foreign_keys=[assigned_supplier_id])

    quotes = db.relationship(
        "Quote",
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by="Quote.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "specifications": self.specifications,
            "timeline": _iso(self.timeline),
            "status": self.status,
            "quantity": self.quantity,
            "tags": list(self.tags or []),
            "assigned_supplier_id": self.assigned_supplier_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Asset {self.name}>"


# ---------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------
class Supplier(db.Model):
    __tablename__ = "suppliers"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)

    # legacy single address; contact_persons is preferred
    contact_email = db.Column(db.String(255), nullable=True)

    service_categories = db.Column(db.JSON, nullable=False, default=list)
    cities_served = db.Column(db.JSON, nullable=False, default=list)
    address = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    contact_persons = db.relationship(
        "ContactPerson",
        back_populates="supplier",
        cascade="all, delete-orphan",
        order_by="ContactPerson.id",
    )

    @property
    def primary_contact(self) -> "ContactPerson | None":
        """Primary-flagged person, else the first person with an email."""
        persons = list(self.contact_persons or [])
        for person in persons:
            if person.is_primary:
                return person
        for person in persons:
            if person.email:
                return person
        return None

    @property
    def recipient_email(self) -> str | None:
        contact = self.primary_contact
        if contact and contact.email:
            return contact.email
        return self.contact_email

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_email": self.contact_email,
            "service_categories": list(self.service_categories or []),
            "cities_served": list(self.cities_served or []),
            "address": self.address,
            "contact_persons": [p.to_dict() for p in self.contact_persons or []],
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Supplier {self.name}>"


class ContactPerson(db.Model):
    __tablename__ = "contact_persons"

    id = db.Column(db.Integer, primary_key=True)

    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey("suppliers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(50), nullable=True)

    is_primary = db.Column(db.Boolean, default=False, nullable=False)
    is_cc = db.Column(db.Boolean, default=False, nullable=False)
    is_bcc = db.Column(db.Boolean, default=False, nullable=False)

    supplier = db.relationship("Supplier", back_populates="contact_persons")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "is_primary": bool(self.is_primary),
            "is_cc": bool(self.is_cc),
            "is_bcc": bool(self.is_bcc),
        }


# ---------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------
class Quote(db.Model):
    """A supplier's response to a quote request for one Asset."""

    __tablename__ = "quotes"

    id = db.Column(db.Integer, primary_key=True)

    asset_id = db.Column(
        db.Integer,
        db.ForeignKey("assets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey("suppliers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    status = db.Column(db.String(20), default=QuoteStatus.PENDING, nullable=False, index=True)

    # 0 until the supplier submits pricing
    cost = db.Column(db.Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    cost_breakdown = db.Column(db.JSON, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    document_url = db.Column(db.String(1024), nullable=True)

    response_time_hours = db.Column(db.Integer, nullable=True)
    valid_until = db.Column(db.Date, nullable=True)

    # Supplier response link: <FRONTEND_URL>/quote/<quote_token>
    quote_token = db.Column(db.String(64), unique=True, nullable=False, index=True)

    request_subject = db.Column(db.String(255), nullable=True)
    request_body = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    asset = db.relationship("Asset", back_populates="quotes")
    supplier = db.relationship("Supplier", backref=db.backref("quotes", lazy=True))

    @property
    def is_awaiting_response(self) -> bool:
        return is_awaiting_response(self.status, self.cost)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "asset_id": self.asset_id,
            "supplier_id": self.supplier_id,
            "status": self.status,
            "cost": float(_money(_to_decimal(self.cost))),
            "cost_breakdown": self.cost_breakdown,
            "notes": self.notes,
            "document_url": self.document_url,
            "response_time_hours": self.response_time_hours,
            "valid_until": _iso(self.valid_until),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Quote {self.id} asset={self.asset_id} supplier={self.supplier_id} {self.status}>"


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Who did what to which entity, with before/after snapshots."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(150), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))
