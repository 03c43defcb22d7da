"""
quotedesk/services/comparison.py

Quote comparison engine.

Given the quotes of ONE asset, computes:
- ComparisonMetrics: lowest / highest / average cost, quote count, cost range
- per-quote cost_rank (1 = cheapest) and cost_percentage_of_lowest

Rules:
- Only Submitted quotes with cost > 0 are compared unless include_all=True.
- Ranking is a stable ascending sort by cost: ties keep creation (input) order, so the
  ranks are always a permutation of 1..n.
- Percentages are rounded half-up (1.5 -> 2), never banker's rounding.
- "Compare" is offered only when MORE THAN ONE quote is Submitted with cost > 0.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Sequence

from ..errors import ValidationError
from ..models import QuoteStatus, _money, _to_decimal

SORT_KEYS = ("cost", "response_time", "validity")
SORT_ORDERS = ("asc", "desc")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ComparisonMetrics:
    lowest_cost: Decimal
    highest_cost: Decimal
    average_cost: Decimal
    quote_count: int
    cost_range: Decimal

    def to_dict(self) -> dict:
        return {
            "lowest_cost": float(self.lowest_cost),
            "highest_cost": float(self.highest_cost),
            "average_cost": float(self.average_cost),
            "quote_count": self.quote_count,
            "cost_range": float(self.cost_range),
        }


@dataclass(frozen=True)
class RankedQuote:
    quote: Any
    position: int
    cost_rank: int
    cost_percentage_of_lowest: int
    is_lowest: bool
    is_highest: bool

    @property
    def show_percentage(self) -> bool:
        """Hidden for the cheapest (or tied) quote."""
        return self.cost_percentage_of_lowest > 100

    def to_dict(self) -> dict:
        data = self.quote.to_dict()
        data.update(
            {
                "cost_rank": self.cost_rank,
                "cost_percentage_of_lowest": self.cost_percentage_of_lowest,
                "show_percentage": self.show_percentage,
                "is_lowest": self.is_lowest,
                "is_highest": self.is_highest,
            }
        )
        return data


@dataclass(frozen=True)
class ComparisonResult:
    metrics: ComparisonMetrics
    quotes: list[RankedQuote]

    def to_dict(self) -> dict:
        return {
            "comparison_metrics": self.metrics.to_dict(),
            "quotes": [q.to_dict() for q in self.quotes],
        }


def is_comparable(quote) -> bool:
    return quote.status == QuoteStatus.SUBMITTED and _to_decimal(quote.cost) > _ZERO


def can_compare(quotes: Iterable) -> bool:
    """True iff at least two quotes are Submitted with cost > 0."""
    return sum(1 for q in quotes if is_comparable(q)) > 1


def compute_metrics(costs: Sequence[Decimal]) -> ComparisonMetrics:
    if not costs:
        return ComparisonMetrics(_ZERO, _ZERO, _ZERO, 0, _ZERO)

    lowest = min(costs)
    highest = max(costs)
    average = _money(sum(costs, _ZERO) / Decimal(len(costs)))
    return ComparisonMetrics(
        lowest_cost=_money(lowest),
        highest_cost=_money(highest),
        average_cost=average,
        quote_count=len(costs),
        cost_range=_money(highest - lowest),
    )


def percentage_of_lowest(cost: Decimal, lowest: Decimal) -> int:
    if lowest <= _ZERO:
        return 100
    pct = (cost / lowest * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(pct)


def compare_quotes(quotes: Iterable, *, include_all: bool = False) -> ComparisonResult:
    """Rank the quotes of one asset by cost and compute the comparison metrics."""
    selected = [q for q in quotes if include_all or is_comparable(q)]
    costs = [_to_decimal(q.cost) for q in selected]
    metrics = compute_metrics(costs)

    # sorted() is stable: equal costs keep their input order
    order = sorted(range(len(selected)), key=lambda i: costs[i])

    ranked = []
    for rank, idx in enumerate(order, start=1):
        cost = costs[idx]
        ranked.append(
            RankedQuote(
                quote=selected[idx],
                position=idx,
                cost_rank=rank,
                cost_percentage_of_lowest=percentage_of_lowest(cost, metrics.lowest_cost),
                is_lowest=cost == metrics.lowest_cost,
                is_highest=cost == metrics.highest_cost,
            )
        )
    return ComparisonResult(metrics=metrics, quotes=ranked)


def _sort_value(ranked: RankedQuote, key: str):
    quote = ranked.quote
    if key == "cost":
        return _to_decimal(quote.cost)
    if key == "response_time":
        return quote.response_time_hours
    return quote.valid_until


def sort_quotes(ranked: Sequence[RankedQuote], key: str = "cost", order: str = "asc") -> list[RankedQuote]:
    """
    Display ordering by cost, response_time or validity.

    Ties keep the original (creation) order in both directions; quotes missing the
    sort value (e.g. no validity date yet) always go last.
    """
    if key not in SORT_KEYS:
        raise ValidationError(f"Unsupported sort key '{key}'. Use one of: {', '.join(SORT_KEYS)}.")
    if order not in SORT_ORDERS:
        raise ValidationError("Sort order must be 'asc' or 'desc'.")

    by_position = sorted(ranked, key=lambda r: r.position)
    present = [r for r in by_position if _sort_value(r, key) is not None]
    missing = [r for r in by_position if _sort_value(r, key) is None]

    # reverse=True keeps equal elements in original order
    present = sorted(present, key=lambda r: _sort_value(r, key), reverse=(order == "desc"))
    return present + missing


def summarize_quotes(quotes: Sequence) -> dict:
    """Dashboard summary over ALL quotes of an asset."""
    costs = [_to_decimal(q.cost) for q in quotes]
    metrics = compute_metrics(costs)
    status_counts = Counter(q.status for q in quotes)
    return {
        "quote_count": len(quotes),
        "lowest_cost": float(metrics.lowest_cost),
        "highest_cost": float(metrics.highest_cost),
        "average_cost": float(metrics.average_cost),
        "status_counts": dict(status_counts),
        "has_multiple_quotes": len(quotes) > 1,
        "can_compare": can_compare(quotes),
    }
