from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from margintrack.config import BusinessConfig
from margintrack.domain.models import NUMERIC_FIELDS

REQUIRED = "required"
FORMAT = "format"
RANGE = "range"

LABELS = {
    "units": "Units",
    "pack": "Pack",
    "price": "Price",
    "rate": "Rate",
    "extra_cost": "Extra cost",
    "selling_price": "Selling price",
}


@dataclass(frozen=True)
class FieldIssue:
    field: str
    kind: str  # required | format | range
    message: str


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    field_errors: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class _Rule:
    required: bool = True
    integer: bool = False
    minimum: float = 0
    maximum: float = math.inf
    strictly_positive: bool = False


def _rules(config: BusinessConfig) -> dict[str, _Rule]:
    return {
        "units": _Rule(integer=True, minimum=config.min_units, maximum=config.max_units),
        "pack": _Rule(integer=True, minimum=config.min_pack, maximum=config.max_pack),
        "price": _Rule(strictly_positive=True),
        "rate": _Rule(minimum=config.min_rate, maximum=config.max_rate),
        "extra_cost": _Rule(required=False),
        "selling_price": _Rule(strictly_positive=True),
    }


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_number(value: Any) -> Optional[float]:
    """float for numbers and numeric text, None for anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _fmt(n: float) -> str:
    return str(int(n)) if float(n).is_integer() else str(n)


def check_field(field_name: str, raw: Any, config: BusinessConfig) -> Optional[FieldIssue]:
    rule = _rules(config).get(field_name)
    if rule is None:
        return None
    label = LABELS[field_name]

    if is_blank(raw):
        if not rule.required:
            return None
        return FieldIssue(field_name, REQUIRED, f"{label} is required")

    num = parse_number(raw)
    if num is None:
        return FieldIssue(field_name, FORMAT, f"{label} must be a valid number")

    if rule.integer and not num.is_integer():
        return FieldIssue(field_name, FORMAT, f"{label} must be a positive integer")

    if rule.strictly_positive and num <= 0:
        return FieldIssue(field_name, RANGE, f"{label} must be a positive number")

    if num < rule.minimum:
        if rule.minimum == 0:
            return FieldIssue(field_name, RANGE, f"{label} must be 0 or greater")
        return FieldIssue(field_name, RANGE, f"{label} must be at least {_fmt(rule.minimum)}")

    if num > rule.maximum:
        return FieldIssue(
            field_name, RANGE, f"{label} must be between {_fmt(rule.minimum)} and {_fmt(rule.maximum)}"
        )
    return None


def validate_field(field_name: str, raw: Any, config: BusinessConfig) -> Optional[str]:
    """Error message for one input, or None when the value is acceptable."""
    issue = check_field(field_name, raw, config)
    return issue.message if issue else None


def validate_record(values: Mapping[str, Any], config: BusinessConfig) -> ValidationResult:
    errors: dict[str, str] = {}
    for name in NUMERIC_FIELDS:
        message = validate_field(name, values.get(name), config)
        if message:
            errors[name] = message
    return ValidationResult(is_valid=not errors, field_errors=errors)


def coerce_values(values: Mapping[str, Any]) -> dict[str, Any]:
    """Store-ready copy of validated input: ints for units/pack, floats otherwise."""
    out: dict[str, Any] = {}
    for key, value in values.items():
        if key not in NUMERIC_FIELDS:
            out[key] = "" if value is None else str(value)
            continue
        if is_blank(value):
            out[key] = None
            continue
        num = parse_number(value)
        if num is None:
            raise ValueError(f"{key} is not numeric: {value!r}")
        out[key] = int(num) if key in ("units", "pack") else num
    return out
