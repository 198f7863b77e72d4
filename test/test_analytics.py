import pytest
from conftest import style

from margintrack.config import BusinessConfig
from margintrack.services.analytics_service import aggregate, bracket_shares, margin_bracket
from margintrack.services.formulas import compute_metrics

CONFIG = BusinessConfig()


def _with_margin(record_id: str, margin: float, revenue: float):
    """A style whose revenue and margin come out as given (divisor 6.2, units 1)."""
    cost = revenue * (1 - margin / 100)
    return style(record_id, units=1, pack=1, price=cost, rate=6.2, extra_cost=0, selling_price=revenue)


def test_weighted_margin_uses_revenue_weights():
    records = [_with_margin("a", 10, 100_000), _with_margin("b", 50, 10_000)]
    m = aggregate(records, CONFIG)

    # 10k + 5k profit over 110k revenue, not the plain mean of 30 %
    assert m.weighted_average_margin == pytest.approx(15_000 / 110_000 * 100)
    assert m.total_revenue == pytest.approx(110_000)
    assert m.total_profit == pytest.approx(15_000)


def test_totals_equal_sum_of_row_metrics():
    records = [style("a"), style("b", units=300, selling_price=150.0), style("c", selling_price=90.0)]
    m = aggregate(records, CONFIG)

    rows = [compute_metrics(r, CONFIG) for r in records]
    assert m.total_revenue == pytest.approx(sum(r.revenue for r in rows))
    assert m.total_profit == pytest.approx(sum(r.total_profit for r in rows))
    assert m.total_units == 3300
    assert isinstance(m.total_units, int)
    assert m.item_count == 3


def test_counts_and_brackets():
    records = [
        _with_margin("neg", -5, 1000),
        _with_margin("low", 10, 1000),
        _with_margin("mid", 18, 1000),
        _with_margin("good", 25, 1000),
        _with_margin("top", 40, 1000),
    ]
    m = aggregate(records, CONFIG)

    assert m.below_target_count == 2
    assert m.at_risk_count == 1
    assert m.margin_brackets.as_dict() == {"negative": 1, "low": 1, "medium": 1, "good": 1, "excellent": 1}
    assert sum(m.margin_brackets.as_dict().values()) == m.item_count


@pytest.mark.parametrize(
    "margin, bracket",
    [(-0.01, "negative"), (0, "low"), (15, "medium"), (22, "good"), (30, "excellent")],
)
def test_bracket_edges(margin, bracket):
    assert margin_bracket(margin, CONFIG) == bracket


def test_empty_portfolio():
    m = aggregate([], CONFIG)
    assert m.total_revenue == 0
    assert m.weighted_average_margin == 0
    assert m.item_count == 0
    assert m.total_units == 0 and isinstance(m.total_units, int)
    assert all(v == 0 for v in bracket_shares(m).values())


def test_bracket_shares_are_percentages():
    records = [_with_margin("a", 10, 1000), _with_margin("b", 40, 1000)]
    shares = bracket_shares(aggregate(records, CONFIG))
    assert shares["low"] == 50.0
    assert shares["excellent"] == 50.0


def test_weighted_margin_example_fourteen_not_thirty():
    m = aggregate([_with_margin("a", 50, 1000), _with_margin("b", 10, 9000)], CONFIG)
    assert m.weighted_average_margin == pytest.approx(14.0)
