import math

import pytest
from conftest import style

from margintrack.config import BusinessConfig
from margintrack.domain.models import MarginStatus
from margintrack.services.formulas import compute_metrics, input_value, margin_percent, margin_status

CONFIG = BusinessConfig()


def test_reference_style_tp131():
    m = compute_metrics(style(), CONFIG)

    assert m.landed_cost == pytest.approx(94.5)
    assert m.total_cost_per_unit == pytest.approx(117.5)
    assert m.revenue == pytest.approx(194_250)
    assert m.total_expense == pytest.approx(176_250)
    assert m.total_profit == pytest.approx(18_000)
    assert m.margin_percent == pytest.approx(9.2664, abs=1e-4)
    assert m.profit_per_unit == pytest.approx(12.0)
    assert m.val1 == pytest.approx(2.25)
    assert m.val2 == pytest.approx(1.125)
    assert m.margin_status is MarginStatus.LOW


def test_mapping_and_record_inputs_agree():
    record = style()
    assert compute_metrics(record.values(), CONFIG) == compute_metrics(record, CONFIG)


def test_zero_is_a_real_value_not_missing():
    assert input_value({"pack": 0}, "pack", 1) == 0.0
    assert input_value({"pack": None}, "pack", 1) == 1.0
    assert input_value({"pack": "  "}, "pack", 1) == 1.0
    assert input_value({}, "pack", 1) == 1.0


def test_unparseable_and_non_finite_inputs_fall_back_to_default():
    assert input_value({"price": "abc"}, "price", 0) == 0.0
    assert input_value({"price": float("nan")}, "price", 0) == 0.0
    assert input_value({"price": "12.5"}, "price", 0) == 12.5


def test_zero_units_and_zero_pack_never_divide_by_zero():
    m = compute_metrics({"units": 0, "pack": 0, "price": 10, "rate": 20, "selling_price": 50}, CONFIG)

    assert m.revenue == 0
    assert m.margin_percent == 0
    assert m.profit_per_unit == 0
    assert m.val2 == 0
    assert all(math.isfinite(v) for v in (m.landed_cost, m.val1, m.total_profit))


def test_empty_inputs_give_all_zero_metrics():
    m = compute_metrics({}, CONFIG)
    assert (m.landed_cost, m.revenue, m.total_profit, m.margin_percent, m.val1, m.val2) == (0, 0, 0, 0, 0, 0)
    assert m.margin_status is MarginStatus.LOW


def test_missing_pack_defaults_to_one():
    m = compute_metrics({"price": 12.4}, CONFIG)
    assert m.val2 == pytest.approx(m.val1)


def test_negative_margin_when_selling_below_cost():
    m = compute_metrics(style(selling_price=100.0), CONFIG)
    assert m.margin_percent < 0
    assert m.total_profit == pytest.approx((100 - 117.5) * 1500)


def test_margin_percent_is_zero_without_revenue():
    assert margin_percent(0, 500) == 0.0
    assert margin_percent(-10, 5) == 0.0


@pytest.mark.parametrize(
    "margin, expected",
    [
        (-5, MarginStatus.LOW),
        (14.99, MarginStatus.LOW),
        (15, MarginStatus.MEDIUM),
        (21.99, MarginStatus.MEDIUM),
        (22, MarginStatus.HIGH),
        (80, MarginStatus.HIGH),
    ],
)
def test_status_thresholds(margin, expected):
    assert margin_status(margin, CONFIG) is expected


def test_compute_is_deterministic():
    record = style()
    assert compute_metrics(record, CONFIG) == compute_metrics(record, CONFIG)


def test_divisor_comes_from_config():
    m = compute_metrics(style(), BusinessConfig(currency_divisor=4.2))
    assert m.landed_cost == pytest.approx(13.95 * 42 / 4.2)
    assert m.val1 == pytest.approx(13.95 / 4.2)
