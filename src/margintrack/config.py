from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
import json
import math
import os
import sys

from margintrack.domain.errors import ConfigError


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path
    config_path: Path


@dataclass(frozen=True)
class BusinessConfig:
    """Numeric constants shared by formulas, validation, retries and autosave.

    `currency_divisor` converts `price * rate` into local currency per unit.
    Margin thresholds are percentages; `excellent_margin_threshold` only splits
    the analytics brackets above the medium threshold.
    """

    currency_divisor: float = 6.2

    low_margin_threshold: float = 15.0
    medium_margin_threshold: float = 22.0
    excellent_margin_threshold: float = 30.0

    min_units: int = 1
    max_units: int = 1_000_000
    min_pack: int = 1
    max_pack: int = 10_000
    min_rate: float = 1.0
    max_rate: float = 200.0

    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    max_backoff: float = 30.0

    debounce_seconds: float = 0.4
    success_display_seconds: float = 1.5
    error_display_seconds: float = 2.0

    currency_symbol: str = "R"
    currency_code: str = "ZAR"

    def __post_init__(self) -> None:
        _check_number("currency_divisor", self.currency_divisor)
        if self.currency_divisor <= 0:
            raise ConfigError(f"currency_divisor must be > 0. Received: {self.currency_divisor}")

        for name in ("low_margin_threshold", "medium_margin_threshold", "excellent_margin_threshold"):
            _check_number(name, getattr(self, name))
        if not self.low_margin_threshold < self.medium_margin_threshold:
            raise ConfigError("low_margin_threshold must be below medium_margin_threshold.")
        if not self.medium_margin_threshold < self.excellent_margin_threshold:
            raise ConfigError("medium_margin_threshold must be below excellent_margin_threshold.")

        for lo, hi in (("min_units", "max_units"), ("min_pack", "max_pack"), ("min_rate", "max_rate")):
            _check_number(lo, getattr(self, lo))
            _check_number(hi, getattr(self, hi))
            if getattr(self, lo) > getattr(self, hi):
                raise ConfigError(f"{lo} must not exceed {hi}.")
        if self.min_units < 1 or self.min_pack < 1:
            raise ConfigError("min_units and min_pack must be >= 1.")

        _check_number("retry_max_attempts", self.retry_max_attempts)
        if int(self.retry_max_attempts) != self.retry_max_attempts or self.retry_max_attempts < 1:
            raise ConfigError("retry_max_attempts must be an integer >= 1.")
        for name in ("retry_base_delay", "debounce_seconds", "success_display_seconds", "error_display_seconds"):
            _check_number(name, getattr(self, name))
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0.")
        _check_number("max_backoff", self.max_backoff)
        if self.max_backoff <= 0:
            raise ConfigError("max_backoff must be > 0.")


def _check_number(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ConfigError(f"{name} must be a finite number. Received: {value!r}")


def load_config(path: Path | str | None = None) -> BusinessConfig:
    """Defaults, overridden by the keys of an optional JSON object file."""
    if path is None:
        return BusinessConfig()

    config_file = Path(path)
    if not config_file.exists():
        raise ConfigError(f"Config file not found: {config_file}")
    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object.")

    known = {f.name for f in fields(BusinessConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
    return BusinessConfig(**data)


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "MarginTracker") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "margins.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs, config_path=base / "config.json")
