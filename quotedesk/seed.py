"""
quotedesk/seed.py

Seed demo data for local development.

Rules:
- Safe to run multiple times (idempotent): records are looked up by natural key
  (username, supplier name, project name, asset name) before being created.
- Seeds one project with two assets. The first asset has three quotes in different
  states, so the comparison and acceptance endpoints have something to show.

NOTE:
- Demo passwords are for development only.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from .extensions import db
from .models import (
    Asset,
    AssetStatus,
    ContactPerson,
    Project,
    ProjectStatus,
    Quote,
    QuoteStatus,
    Supplier,
    User,
)
from .repository import new_quote_token

DEMO_USERS = [
    # username, password, display_name, is_admin, role
    ("admin", "admin123", "Administrator", True, User.ROLE_PRODUCER),
    ("producer", "producer123", "Demo Producer", False, User.ROLE_PRODUCER),
    ("viewer", "viewer123", "Demo Viewer", False, User.ROLE_VIEWER),
]

DEMO_SUPPLIERS = [
    {
        "name": "Bright Stage Lighting",
        "service_categories": ["Lighting", "Staging"],
        "cities_served": ["London", "Manchester"],
        "contacts": [
            ("Alex Morgan", "alex@brightstage.example", "Sales", True, False, False),
            ("Sam Lee", "sam@brightstage.example", "Operations", False, True, False),
        ],
    },
    {
        "name": "Bloom & Petal Florals",
        "service_categories": ["Florals", "Decor"],
        "cities_served": ["London"],
        "contacts": [
            ("Jordan Blake", "jordan@bloompetal.example", "Owner", True, False, False),
        ],
    },
    {
        "name": "SoundWave AV",
        "service_categories": ["Audio", "Lighting", "Video"],
        "cities_served": ["London", "Bristol"],
        "contacts": [
            ("Casey Quinn", "casey@soundwave.example", "Account Manager", True, False, False),
            ("Riley Shaw", "accounts@soundwave.example", "Accounts", False, False, True),
        ],
    },
]


def _get_or_create_user(username, password, display_name, is_admin, role) -> User:
    user = User.query.filter_by(username=username).first()
    if user:
        return user
    user = User(username=username, display_name=display_name, is_admin=is_admin, role=role, is_active=True)
    user.set_password(password)
    db.session.add(user)
    return user


def _get_or_create_supplier(entry: dict) -> Supplier:
    supplier = Supplier.query.filter_by(name=entry["name"]).first()
    if supplier:
        return supplier
    supplier = Supplier(
        name=entry["name"],
        service_categories=list(entry["service_categories"]),
        cities_served=list(entry["cities_served"]),
    )
    for name, email, role, is_primary, is_cc, is_bcc in entry["contacts"]:
        supplier.contact_persons.append(
            ContactPerson(name=name, email=email, role=role, is_primary=is_primary, is_cc=is_cc, is_bcc=is_bcc)
        )
    db.session.add(supplier)
    return supplier


def seed_demo_data() -> dict:
    """Seed demo users, suppliers, one project with assets and quotes. Returns counts."""
    users = [_get_or_create_user(*row) for row in DEMO_USERS]
    suppliers = [_get_or_create_supplier(entry) for entry in DEMO_SUPPLIERS]
    db.session.flush()

    producer = users[1]
    project = Project.query.filter_by(project_name="Summer Gala 2026").first()
    if project is None:
        project = Project(
            project_name="Summer Gala 2026",
            client_name="Northwind Foundation",
            brief_description="Evening fundraising gala for 400 guests.",
            deadline=date.today() + timedelta(days=60),
            status=ProjectStatus.QUOTING,
            producer_id=producer.id,
        )
        project.assets.append(
            Asset(
                name="Stage lighting",
                specifications="Full wash + 12 moving heads, operator included.",
                timeline=date.today() + timedelta(days=45),
                status=AssetStatus.QUOTING,
                quantity=1,
                tags=["lighting"],
            )
        )
        project.assets.append(
            Asset(name="Table centrepieces", status=AssetStatus.PENDING, quantity=40, tags=["florals"])
        )
        db.session.add(project)
        db.session.flush()

    lighting = project.assets[0]
    if not lighting.quotes:
        demo_quotes = [
            (suppliers[0], QuoteStatus.SUBMITTED, Decimal("4200.00"), 18),
            (suppliers[2], QuoteStatus.SUBMITTED, Decimal("3850.00"), 30),
            (suppliers[1], QuoteStatus.PENDING, Decimal("0.00"), None),
        ]
        for supplier, status, cost, hours in demo_quotes:
            lighting.quotes.append(
                Quote(
                    supplier_id=supplier.id,
                    status=status,
                    cost=cost,
                    response_time_hours=hours,
                    valid_until=date.today() + timedelta(days=30) if status == QuoteStatus.SUBMITTED else None,
                    quote_token=new_quote_token(),
                )
            )

    db.session.commit()

    return {
        "users": User.query.count(),
        "suppliers": Supplier.query.count(),
        "projects": Project.query.count(),
        "quotes": Quote.query.count(),
    }
