"""
End-to-end quote workflow through the JSON API (real SqlQuoteRepository, SQLite).
"""

import pytest
from sqlalchemy.exc import OperationalError

from quotedesk.audit import log_action
from quotedesk.errors import BackendError, InvalidTransitionError
from quotedesk.extensions import db
from quotedesk.models import Asset, AssetStatus, AuditLog, ContactPerson, Quote, QuoteStatus, Supplier
from quotedesk.repository import SqlQuoteRepository
from quotedesk.services import acceptance

from conftest import create_user, login


@pytest.fixture
def suppliers(app):
    rows = [
        Supplier(
            name="Bright Stage",
            service_categories=["Lighting"],
            cities_served=["London"],
            contact_persons=[ContactPerson(name="Alex", email="alex@bright.example", is_primary=True)],
        ),
        Supplier(name="Bloom Florals", contact_email="hello@bloom.example", service_categories=["Florals"], cities_served=[]),
        Supplier(
            name="SoundWave",
            service_categories=["Audio", "Lighting"],
            cities_served=[],
            contact_persons=[ContactPerson(name="Casey", email="casey@soundwave.example")],
        ),
    ]
    db.session.add_all(rows)
    db.session.commit()
    return rows


@pytest.fixture
def asset_id(client, producer):
    login(client, "producer")
    project = client.post("/projects", json={"project_name": "Summer Gala", "client_name": "Northwind"}).get_json()
    response = client.post(
        f"/projects/{project['project']['id']}/assets",
        json={"name": "Stage lighting", "specifications": "12 moving heads", "tags": ["lighting"]},
    )
    assert response.status_code == 201
    return response.get_json()["asset"]["id"]


def send_requests(client, asset_id, suppliers):
    response = client.post(f"/assets/{asset_id}/quote-requests", json={"supplier_ids": [s.id for s in suppliers]})
    assert response.status_code == 200, response.get_json()
    return response.get_json()


def submit(client, quote, cost):
    return client.post(f"/portal/quotes/{quote.quote_token}", json={"cost": cost, "valid_until": "2026-12-31"})


def quotes_by_supplier(asset_id):
    return {q.supplier_id: q for q in Quote.query.filter_by(asset_id=asset_id).all()}


class TestQuoteRequests:
    def test_send_creates_quotes_and_emails(self, client, asset_id, suppliers, email_sender):
        body = send_requests(client, asset_id, suppliers)

        assert body["success"] is True
        assert body["requested"] == 3
        assert body["sent"] == 3
        assert body["failed"] == 0
        assert {m.to for m in email_sender.sent} == {
            "alex@bright.example",
            "hello@bloom.example",
            "casey@soundwave.example",
        }
        assert db.session.get(Asset, asset_id).status == AssetStatus.QUOTING

        listing = client.get(f"/assets/{asset_id}/quotes").get_json()
        assert [q["badge"]["text"] for q in listing["quotes"]] == ["Pending Response"] * 3
        assert listing["can_compare"] is False

    def test_partial_email_failure(self, client, asset_id, suppliers, email_sender):
        email_sender.fail_for = {"hello@bloom.example"}

        body = send_requests(client, asset_id, suppliers)

        assert body["sent"] == 2
        assert body["failed"] == 1
        assert body["errors"][0]["supplier_name"] == "Bloom Florals"
        assert Quote.query.filter_by(asset_id=asset_id).count() == 3

    def test_second_send_skips_contacted(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers[:1])
        body = send_requests(client, asset_id, suppliers)

        assert body["skipped"] == [suppliers[0].id]
        assert Quote.query.filter_by(asset_id=asset_id).count() == 3

    def test_preview(self, client, asset_id, suppliers):
        response = client.post(
            f"/assets/{asset_id}/quote-requests/preview",
            json={"supplier_ids": [suppliers[0].id], "from_name": "Pat"},
        )

        email = response.get_json()["emails"][0]
        assert email["to"] == "alex@bright.example"
        assert email["subject"] == "Quote Request: Stage lighting"
        assert "Best regards,\nPat\nproducer@example.com" in email["body"]
        assert Quote.query.count() == 0

    def test_suggestions(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers[:1])

        data = client.get(f"/assets/{asset_id}/suggested-suppliers").get_json()

        names = {s["name"]: s["already_contacted"] for s in data["suppliers"]}
        assert names == {"Bright Stage": True, "SoundWave": False}

    def test_bad_supplier_ids(self, client, asset_id):
        response = client.post(f"/assets/{asset_id}/quote-requests", json={"supplier_ids": "all"})
        assert response.status_code == 400
        assert response.get_json()["error"]["code"] == "VALIDATION_ERROR"


class TestPortalAndComparison:
    def test_supplier_submits_through_portal(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers)
        quote = quotes_by_supplier(asset_id)[suppliers[0].id]

        view = client.get(f"/portal/quotes/{quote.quote_token}").get_json()
        assert view["asset"]["name"] == "Stage lighting"
        assert view["quote"]["can_submit"] is True

        response = submit(client, quote, "1200.00")
        assert response.status_code == 200
        assert response.get_json()["quote"]["badge"]["text"] == "Quote Submitted"
        assert quote.status == QuoteStatus.SUBMITTED
        assert quote.response_time_hours == 0 or quote.response_time_hours == 1

    def test_unknown_token(self, client):
        assert client.get("/portal/quotes/not-a-token").status_code == 404

    def test_compare_and_summary(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers)
        quotes = quotes_by_supplier(asset_id)
        submit(client, quotes[suppliers[0].id], 1200)
        submit(client, quotes[suppliers[2].id], 600)

        data = client.get(f"/assets/{asset_id}/quotes/compare").get_json()

        assert data["comparison_metrics"]["lowest_cost"] == 600.0
        assert data["comparison_metrics"]["highest_cost"] == 1200.0
        assert data["comparison_metrics"]["average_cost"] == 900.0
        assert [q["supplier_name"] for q in data["quotes"]] == ["SoundWave", "Bright Stage"]
        assert [q["cost_percentage_of_lowest"] for q in data["quotes"]] == [100, 200]

        desc = client.get(f"/assets/{asset_id}/quotes/compare?sort=cost&order=desc").get_json()
        assert [q["supplier_name"] for q in desc["quotes"]] == ["Bright Stage", "SoundWave"]

        everything = client.get(f"/assets/{asset_id}/quotes/compare?all=1").get_json()
        assert everything["comparison_metrics"]["quote_count"] == 3

        summary = client.get(f"/assets/{asset_id}/quotes/summary").get_json()["summary"]
        assert summary["status_counts"] == {"Submitted": 2, "Pending": 1}
        assert summary["can_compare"] is True

    def test_bad_sort_key(self, client, asset_id):
        response = client.get(f"/assets/{asset_id}/quotes/compare?sort=stars")
        assert response.status_code == 400


class TestAcceptance:
    def test_accept_rejects_the_rest(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers)
        quotes = quotes_by_supplier(asset_id)
        submit(client, quotes[suppliers[0].id], 1200)
        submit(client, quotes[suppliers[2].id], 600)
        winner = quotes[suppliers[2].id]

        response = client.post(f"/quotes/{winner.id}/accept")

        assert response.status_code == 200
        body = response.get_json()
        assert body["quote"]["status"] == QuoteStatus.ACCEPTED
        assert len(body["rejected_quote_ids"]) == 2
        assert body["asset"]["assigned_supplier_id"] == suppliers[2].id
        assert body["asset"]["status"] == AssetStatus.APPROVED

        statuses = sorted(q.status for q in Quote.query.filter_by(asset_id=asset_id))
        assert statuses == [QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.REJECTED]

        again = client.post(f"/quotes/{winner.id}/accept")
        assert again.status_code == 200
        assert again.get_json()["rejected_quote_ids"] == []

    def test_accept_keeps_asset_status_when_null(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers[:1])
        quote = quotes_by_supplier(asset_id)[suppliers[0].id]
        submit(client, quote, 500)

        body = client.post(f"/quotes/{quote.id}/accept", json={"asset_status": None}).get_json()

        assert body["asset"]["status"] == AssetStatus.QUOTING

    def test_winner_is_emailed(self, client, asset_id, suppliers, email_sender):
        send_requests(client, asset_id, suppliers[:2])
        winner = quotes_by_supplier(asset_id)[suppliers[0].id]
        submit(client, winner, 700)

        body = client.post(f"/quotes/{winner.id}/accept").get_json()

        assert body["supplier_notified"] is True
        message = email_sender.sent[-1]
        assert message.to == "alex@bright.example"
        assert message.subject == "Your Quote was Accepted"

    def test_acceptance_email_failure_does_not_block(self, client, asset_id, suppliers, email_sender):
        send_requests(client, asset_id, suppliers[:1])
        winner = quotes_by_supplier(asset_id)[suppliers[0].id]
        submit(client, winner, 700)
        email_sender.fail_for = {"alex@bright.example"}

        response = client.post(f"/quotes/{winner.id}/accept")

        assert response.status_code == 200
        assert response.get_json()["supplier_notified"] is False
        assert winner.status == QuoteStatus.ACCEPTED

    def test_later_quote_cannot_replace_the_winner(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers[:2])
        quotes = quotes_by_supplier(asset_id)
        submit(client, quotes[suppliers[0].id], 100)
        submit(client, quotes[suppliers[1].id], 120)
        first = quotes[suppliers[0].id]
        assert client.post(f"/quotes/{first.id}/accept").status_code == 200

        send_requests(client, asset_id, suppliers[2:])
        late = quotes_by_supplier(asset_id)[suppliers[2].id]
        submit(client, late, 90)

        response = client.post(f"/quotes/{late.id}/accept")

        assert response.status_code == 409
        assert response.get_json()["error"]["code"] == "INVALID_TRANSITION"
        assert first.status == QuoteStatus.ACCEPTED
        assert late.status == QuoteStatus.SUBMITTED
        assert db.session.get(Asset, asset_id).assigned_supplier_id == suppliers[0].id

    def test_sql_repository_refuses_to_reject_an_accepted_sibling(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers[:2])
        quotes = quotes_by_supplier(asset_id)
        first, late = quotes[suppliers[0].id], quotes[suppliers[1].id]
        submit(client, first, 100)
        submit(client, late, 90)
        client.post(f"/quotes/{first.id}/accept")
        # reopen the loser directly so only the repository guard stands in the way
        late.status = QuoteStatus.SUBMITTED
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            SqlQuoteRepository().accept_quote(late, AssetStatus.APPROVED)

        db.session.expire_all()
        assert first.status == QuoteStatus.ACCEPTED
        assert late.status == QuoteStatus.SUBMITTED
        assert db.session.get(Asset, asset_id).assigned_supplier_id == suppliers[0].id

    def test_failure_mid_transaction_rolls_everything_back(self, client, asset_id, suppliers, monkeypatch):
        send_requests(client, asset_id, suppliers)
        quotes = quotes_by_supplier(asset_id)
        submit(client, quotes[suppliers[0].id], 1200)
        submit(client, quotes[suppliers[1].id], 600)
        winner = quotes[suppliers[0].id]

        calls = []

        def failing_log_action(*args, **kwargs):
            calls.append(args)
            if len(calls) == 3:
                raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))
            return log_action(*args, **kwargs)

        monkeypatch.setattr("quotedesk.repository.log_action", failing_log_action)

        with pytest.raises(BackendError):
            acceptance.accept_quote(SqlQuoteRepository(), winner.id)

        assert len(calls) == 3
        db.session.expire_all()
        statuses = {q.supplier_id: q.status for q in Quote.query.filter_by(asset_id=asset_id)}
        assert statuses == {
            suppliers[0].id: QuoteStatus.SUBMITTED,
            suppliers[1].id: QuoteStatus.SUBMITTED,
            suppliers[2].id: QuoteStatus.PENDING,
        }
        assert db.session.get(Asset, asset_id).assigned_supplier_id is None
        assert AuditLog.query.filter_by(entity_type="Quote", action="ACCEPT").count() == 0

    def test_pending_quote_cannot_be_accepted(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers[:1])
        quote = quotes_by_supplier(asset_id)[suppliers[0].id]

        response = client.post(f"/quotes/{quote.id}/accept")

        assert response.status_code == 409
        assert response.get_json()["error"]["code"] == "INVALID_TRANSITION"

    def test_reject_and_history(self, client, asset_id, suppliers):
        send_requests(client, asset_id, suppliers[:1])
        quote = quotes_by_supplier(asset_id)[suppliers[0].id]
        submit(client, quote, 500)

        assert client.post(f"/quotes/{quote.id}/reject").status_code == 200
        assert submit(client, quote, 450).status_code == 409

        history = client.get(f"/quotes/{quote.id}/history").get_json()["history"]
        assert [h["action"] for h in history] == ["CREATE", "SUBMIT", "REJECT"]
        assert history[-1]["from_status"] == QuoteStatus.SUBMITTED
        assert history[-1]["to_status"] == QuoteStatus.REJECTED
        assert history[-1]["changed_by"] == "producer"


class TestAccess:
    def test_login_required(self, client, asset_id):
        client.post("/auth/logout")
        response = client.get(f"/assets/{asset_id}/quotes")
        assert response.status_code == 401
        assert response.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_other_producer_is_forbidden(self, client, asset_id):
        create_user("other")
        client.post("/auth/logout")
        login(client, "other")

        assert client.get(f"/assets/{asset_id}/quotes").status_code == 403

    def test_viewer_reads_but_cannot_write(self, client, asset_id, suppliers, viewer):
        client.post("/auth/logout")
        login(client, "viewer")

        assert client.get(f"/assets/{asset_id}/quotes").status_code == 200
        response = client.post(f"/assets/{asset_id}/quote-requests", json={"supplier_ids": [suppliers[0].id]})
        assert response.status_code == 403
        assert Quote.query.count() == 0
