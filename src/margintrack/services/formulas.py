"""Margin formulas for a single style.

Every consumer (row display, analytics, export) computes through
`compute_metrics` so the numbers cannot drift between screens.

Reference row TP131: price 13.95, rate 42, extra 23, selling 129.50,
units 1500, pack 2 -> LC 94.50, total cost 117.50, revenue 194,250,
profit 18,000, margin 9.27 %, profit/unit 12.00, val1 2.25, val2 1.125.
"""
from __future__ import annotations

import math
from typing import Any, Mapping, Union

from margintrack.config import BusinessConfig
from margintrack.domain.models import DerivedMetrics, MarginStatus, StyleRecord

Inputs = Union[Mapping[str, Any], StyleRecord]


def input_value(inputs: Inputs, name: str, default: float) -> float:
    """Numeric input with `default` only when the value is absent.

    Absent means missing, None or a blank string. Zero is a real value.
    Text that does not parse is treated as absent; validation keeps such
    values from ever being persisted.
    """
    if isinstance(inputs, StyleRecord):
        raw = getattr(inputs, name, None)
    else:
        raw = inputs.get(name)

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return float(default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return float(default)
    if not math.isfinite(value):
        return float(default)
    return value


def landed_cost(price: float, rate: float, config: BusinessConfig) -> float:
    return (price * rate) / config.currency_divisor


def margin_percent(revenue: float, total_expense: float) -> float:
    if revenue <= 0:
        return 0.0
    return ((revenue - total_expense) / revenue) * 100


def margin_status(margin: float, config: BusinessConfig) -> MarginStatus:
    if margin < config.low_margin_threshold:
        return MarginStatus.LOW
    if margin < config.medium_margin_threshold:
        return MarginStatus.MEDIUM
    return MarginStatus.HIGH


def compute_metrics(inputs: Inputs, config: BusinessConfig) -> DerivedMetrics:
    price = input_value(inputs, "price", 0)
    rate = input_value(inputs, "rate", 0)
    extra_cost = input_value(inputs, "extra_cost", 0)
    selling_price = input_value(inputs, "selling_price", 0)
    units = input_value(inputs, "units", 0)
    pack = input_value(inputs, "pack", 1)

    lc = landed_cost(price, rate, config)
    total_cost = lc + extra_cost
    revenue = selling_price * units
    total_expense = total_cost * units
    profit = revenue - total_expense
    margin = margin_percent(revenue, total_expense)
    # per unit, not per pack
    profit_per_unit = profit / units if units > 0 else 0.0
    val1 = price / config.currency_divisor
    val2 = val1 / pack if pack > 0 else 0.0

    return DerivedMetrics(
        landed_cost=lc,
        total_cost_per_unit=total_cost,
        revenue=revenue,
        total_expense=total_expense,
        total_profit=profit,
        margin_percent=margin,
        profit_per_unit=profit_per_unit,
        val1=val1,
        val2=val2,
        margin_status=margin_status(margin, config),
    )
