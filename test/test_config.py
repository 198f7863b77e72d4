import json
from pathlib import Path

import pytest

from margintrack.config import BusinessConfig, load_config
from margintrack.domain.errors import ConfigError


def test_defaults_match_business_constants():
    c = BusinessConfig()
    assert c.currency_divisor == 6.2
    assert (c.low_margin_threshold, c.medium_margin_threshold) == (15.0, 22.0)
    assert (c.retry_max_attempts, c.retry_base_delay, c.max_backoff) == (3, 1.0, 30.0)
    assert c.debounce_seconds == 0.4


def test_load_config_without_path_returns_defaults():
    assert load_config(None) == BusinessConfig()


def test_load_config_applies_overrides(tmp_path: Path):
    p = tmp_path / "config.json"
    p.write_text(json.dumps({"currency_divisor": 5.0, "debounce_seconds": 0.25}), encoding="utf-8")

    c = load_config(p)
    assert c.currency_divisor == 5.0
    assert c.debounce_seconds == 0.25
    assert c.max_units == 1_000_000


def test_unknown_keys_are_rejected(tmp_path: Path):
    p = tmp_path / "config.json"
    p.write_text(json.dumps({"divisor": 5.0}), encoding="utf-8")
    with pytest.raises(ConfigError, match="divisor"):
        load_config(p)


def test_invalid_json_and_missing_file(tmp_path: Path):
    bad = tmp_path / "bad.json"
    bad.write_text("{nope", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(bad)
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.json")


@pytest.mark.parametrize(
    "overrides",
    [
        {"currency_divisor": 0},
        {"low_margin_threshold": 25},
        {"min_rate": 300},
        {"retry_max_attempts": 0},
        {"retry_max_attempts": 1.5},
        {"retry_base_delay": -1},
        {"max_backoff": 0},
        {"currency_divisor": float("inf")},
    ],
)
def test_inconsistent_values_raise_config_error(overrides):
    with pytest.raises(ConfigError):
        BusinessConfig(**overrides)
