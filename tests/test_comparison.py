"""
Unit tests for the quote comparison engine.
"""

from datetime import date
from decimal import Decimal

import pytest

from quotedesk.errors import ValidationError
from quotedesk.models import QuoteStatus
from quotedesk.services.comparison import (
    can_compare,
    compare_quotes,
    percentage_of_lowest,
    sort_quotes,
    summarize_quotes,
)


@pytest.fixture
def asset(repo):
    return repo.add_asset(repo.add_project())


@pytest.fixture
def suppliers(repo):
    return [repo.add_supplier(f"Supplier {i}") for i in range(1, 5)]


class TestMetrics:
    """Lowest / highest / average and ranking."""

    def test_example_costs(self, repo, asset, suppliers):
        q1 = repo.add_quote(asset, suppliers[0], cost="100")
        q2 = repo.add_quote(asset, suppliers[1], cost="150")
        q3 = repo.add_quote(asset, suppliers[2], cost="100")

        result = compare_quotes(repo.list_quotes_for_asset(asset.id))

        assert result.metrics.lowest_cost == Decimal("100.00")
        assert result.metrics.highest_cost == Decimal("150.00")
        assert result.metrics.average_cost == Decimal("116.67")
        assert result.metrics.quote_count == 3
        assert result.metrics.cost_range == Decimal("50.00")

        ranks = {r.quote.id: r.cost_rank for r in result.quotes}
        assert ranks == {q1.id: 1, q3.id: 2, q2.id: 3}

    def test_ranks_are_a_permutation(self, repo, asset, suppliers):
        for supplier, cost in zip(suppliers, ["300", "100", "300", "200"]):
            repo.add_quote(asset, supplier, cost=cost)

        result = compare_quotes(repo.list_quotes_for_asset(asset.id))

        assert sorted(r.cost_rank for r in result.quotes) == [1, 2, 3, 4]

    def test_bounds_hold(self, repo, asset, suppliers):
        for supplier, cost in zip(suppliers, ["120.50", "99.99", "450", "300"]):
            repo.add_quote(asset, supplier, cost=cost)

        result = compare_quotes(repo.list_quotes_for_asset(asset.id))
        m = result.metrics

        assert m.lowest_cost <= m.average_cost <= m.highest_cost
        for ranked in result.quotes:
            assert m.lowest_cost <= Decimal(str(ranked.quote.cost)) <= m.highest_cost

    def test_lowest_and_highest_flags(self, repo, asset, suppliers):
        repo.add_quote(asset, suppliers[0], cost="100")
        repo.add_quote(asset, suppliers[1], cost="250")

        cheapest, dearest = compare_quotes(repo.list_quotes_for_asset(asset.id)).quotes

        assert cheapest.is_lowest and not cheapest.is_highest
        assert dearest.is_highest and not dearest.is_lowest

    def test_no_quotes(self):
        result = compare_quotes([])

        assert result.quotes == []
        assert result.metrics.quote_count == 0
        assert result.metrics.lowest_cost == Decimal("0")
        assert result.metrics.average_cost == Decimal("0")


class TestPercentageOfLowest:
    def test_cheapest_is_100_and_double_is_200(self, repo, asset, suppliers):
        repo.add_quote(asset, suppliers[0], cost="100")
        repo.add_quote(asset, suppliers[1], cost="200")

        cheapest, double = compare_quotes(repo.list_quotes_for_asset(asset.id)).quotes

        assert cheapest.cost_percentage_of_lowest == 100
        assert cheapest.show_percentage is False
        assert double.cost_percentage_of_lowest == 200
        assert double.show_percentage is True

    def test_rounds_half_up(self):
        # 100.5 / 100 -> 100.5% -> 101 (banker's rounding would give 100)
        assert percentage_of_lowest(Decimal("100.5"), Decimal("100")) == 101
        assert percentage_of_lowest(Decimal("302"), Decimal("200")) == 151

    def test_zero_lowest_is_100(self):
        assert percentage_of_lowest(Decimal("50"), Decimal("0")) == 100


class TestFiltering:
    def test_only_priced_submitted_quotes_by_default(self, repo, asset, suppliers):
        repo.add_quote(asset, suppliers[0], cost="100")
        repo.add_quote(asset, suppliers[1], status=QuoteStatus.PENDING, cost="0")
        repo.add_quote(asset, suppliers[2], status=QuoteStatus.SUBMITTED, cost="0")
        repo.add_quote(asset, suppliers[3], status=QuoteStatus.REJECTED, cost="90")

        result = compare_quotes(repo.list_quotes_for_asset(asset.id))

        assert [r.quote.supplier_id for r in result.quotes] == [suppliers[0].id]

    def test_include_all(self, repo, asset, suppliers):
        repo.add_quote(asset, suppliers[0], cost="100")
        repo.add_quote(asset, suppliers[1], status=QuoteStatus.PENDING, cost="0")

        result = compare_quotes(repo.list_quotes_for_asset(asset.id), include_all=True)

        assert result.metrics.quote_count == 2
        assert result.metrics.lowest_cost == Decimal("0")
        # lowest is 0, so every percentage falls back to 100
        assert {r.cost_percentage_of_lowest for r in result.quotes} == {100}


class TestCanCompare:
    @pytest.mark.parametrize(
        "quotes, expected",
        [
            ([], False),
            ([(QuoteStatus.SUBMITTED, "100")], False),
            ([(QuoteStatus.SUBMITTED, "100"), (QuoteStatus.SUBMITTED, "0")], False),
            ([(QuoteStatus.SUBMITTED, "100"), (QuoteStatus.PENDING, "0")], False),
            ([(QuoteStatus.SUBMITTED, "100"), (QuoteStatus.ACCEPTED, "120")], False),
            ([(QuoteStatus.SUBMITTED, "100"), (QuoteStatus.SUBMITTED, "120")], True),
        ],
    )
    def test_requires_two_priced_submissions(self, repo, asset, suppliers, quotes, expected):
        for supplier, (status, cost) in zip(suppliers, quotes):
            repo.add_quote(asset, supplier, status=status, cost=cost)

        assert can_compare(repo.list_quotes_for_asset(asset.id)) is expected


class TestSorting:
    def test_sort_by_response_time_missing_last(self, repo, asset, suppliers):
        repo.add_quote(asset, suppliers[0], cost="100", response_time_hours=30)
        repo.add_quote(asset, suppliers[1], cost="120")
        repo.add_quote(asset, suppliers[2], cost="130", response_time_hours=5)

        ranked = compare_quotes(repo.list_quotes_for_asset(asset.id)).quotes

        asc = sort_quotes(ranked, "response_time", "asc")
        desc = sort_quotes(ranked, "response_time", "desc")

        assert [r.quote.supplier_id for r in asc] == [suppliers[2].id, suppliers[0].id, suppliers[1].id]
        assert [r.quote.supplier_id for r in desc] == [suppliers[0].id, suppliers[2].id, suppliers[1].id]

    def test_sort_by_validity(self, repo, asset, suppliers):
        repo.add_quote(asset, suppliers[0], cost="100", valid_until=date(2026, 12, 31))
        repo.add_quote(asset, suppliers[1], cost="120", valid_until=date(2026, 11, 30))

        ranked = compare_quotes(repo.list_quotes_for_asset(asset.id)).quotes

        assert [r.quote.supplier_id for r in sort_quotes(ranked, "validity")] == [suppliers[1].id, suppliers[0].id]

    def test_desc_keeps_ties_in_creation_order(self, repo, asset, suppliers):
        q1 = repo.add_quote(asset, suppliers[0], cost="100")
        q2 = repo.add_quote(asset, suppliers[1], cost="100")
        q3 = repo.add_quote(asset, suppliers[2], cost="50")

        ranked = compare_quotes(repo.list_quotes_for_asset(asset.id)).quotes

        assert [r.quote.id for r in sort_quotes(ranked, "cost", "desc")] == [q1.id, q2.id, q3.id]

    def test_unknown_key(self):
        with pytest.raises(ValidationError):
            sort_quotes([], "rating")

    def test_unknown_order(self):
        with pytest.raises(ValidationError):
            sort_quotes([], "cost", "sideways")


class TestSummary:
    def test_summary_counts(self, repo, asset, suppliers):
        repo.add_quote(asset, suppliers[0], cost="100")
        repo.add_quote(asset, suppliers[1], cost="300")
        repo.add_quote(asset, suppliers[2], status=QuoteStatus.PENDING, cost="0")

        summary = summarize_quotes(repo.list_quotes_for_asset(asset.id))

        assert summary["quote_count"] == 3
        assert summary["status_counts"] == {QuoteStatus.SUBMITTED: 2, QuoteStatus.PENDING: 1}
        assert summary["has_multiple_quotes"] is True
        assert summary["can_compare"] is True
        assert summary["highest_cost"] == 300.0
        assert summary["lowest_cost"] == 0.0
