from __future__ import annotations

from typing import Iterable

from margintrack.config import BusinessConfig
from margintrack.domain.models import MarginBrackets, MarginStatus, PortfolioMetrics
from margintrack.services.formulas import Inputs, compute_metrics, input_value


def margin_bracket(margin: float, config: BusinessConfig) -> str:
    if margin < 0:
        return "negative"
    if margin < config.low_margin_threshold:
        return "low"
    if margin < config.medium_margin_threshold:
        return "medium"
    if margin < config.excellent_margin_threshold:
        return "good"
    return "excellent"


def aggregate(records: Iterable[Inputs], config: BusinessConfig) -> PortfolioMetrics:
    """Portfolio totals over a set of styles.

    The average margin is weighted by revenue (total profit over total
    revenue), not a mean of per-style margins.
    """
    total_revenue = 0.0
    total_profit = 0.0
    total_units = 0.0
    below_target = 0
    at_risk = 0
    count = 0
    brackets = {"negative": 0, "low": 0, "medium": 0, "good": 0, "excellent": 0}

    for record in records:
        m = compute_metrics(record, config)
        count += 1
        total_revenue += m.revenue
        total_profit += m.total_profit
        total_units += input_value(record, "units", 0)
        brackets[margin_bracket(m.margin_percent, config)] += 1

        if m.margin_status is MarginStatus.LOW:
            below_target += 1
        elif m.margin_status is MarginStatus.MEDIUM:
            at_risk += 1

    weighted = (total_profit / total_revenue) * 100 if total_revenue > 0 else 0.0
    if float(total_units).is_integer():
        total_units = int(total_units)

    return PortfolioMetrics(
        total_revenue=total_revenue,
        total_profit=total_profit,
        weighted_average_margin=weighted,
        total_units=total_units,
        below_target_count=below_target,
        at_risk_count=at_risk,
        margin_brackets=MarginBrackets(**brackets),
        item_count=count,
    )


def bracket_shares(metrics: PortfolioMetrics) -> dict[str, float]:
    """Percentage of styles in each bracket (0 for an empty portfolio)."""
    counts = metrics.margin_brackets.as_dict()
    if metrics.item_count == 0:
        return {k: 0.0 for k in counts}
    return {k: (v / metrics.item_count) * 100 for k, v in counts.items()}
