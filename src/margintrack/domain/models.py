from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Mapping, Optional


NUMERIC_FIELDS = ("units", "pack", "price", "rate", "extra_cost", "selling_price")
TEXT_FIELDS = ("style_code", "factory", "delivery_date", "description", "fabric_trim", "style_type")
EDITABLE_FIELDS = TEXT_FIELDS + NUMERIC_FIELDS

# attribute name -> store wire key, where they differ
WIRE_NAMES = {
    "customer_id": "customer",
    "style_code": "styleId",
    "delivery_date": "deliveryDate",
    "fabric_trim": "fabricTrim",
    "style_type": "type",
    "extra_cost": "extraCost",
    "selling_price": "sellingPrice",
}
ATTR_NAMES = {v: k for k, v in WIRE_NAMES.items()}


class MarginStatus(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SaveStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SAVING = "saving"
    SUCCESS = "success"
    ERROR = "error"


class PushAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    code: str = ""


@dataclass(frozen=True)
class StyleRecord:
    id: str
    customer_id: str
    style_code: str = ""
    factory: str = ""
    delivery_date: str = ""
    description: str = ""
    fabric_trim: str = ""
    style_type: str = ""
    units: Optional[int] = None
    pack: Optional[int] = None
    price: Optional[float] = None
    rate: Optional[float] = None
    extra_cost: Optional[float] = None
    selling_price: Optional[float] = None

    def values(self) -> dict[str, Any]:
        """Editable fields only (no id / customer)."""
        return {name: getattr(self, name) for name in EDITABLE_FIELDS}

    def with_values(self, values: Mapping[str, Any]) -> "StyleRecord":
        known = {k: v for k, v in values.items() if k in EDITABLE_FIELDS}
        return replace(self, **known)

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            out[WIRE_NAMES.get(f.name, f.name)] = getattr(self, f.name)
        return out

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "StyleRecord":
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = ATTR_NAMES.get(key, key)
            if name in EDITABLE_FIELDS or name in ("id", "customer_id"):
                kwargs[name] = value
        for name in TEXT_FIELDS:
            if kwargs.get(name) is None:
                kwargs[name] = ""
            else:
                kwargs[name] = str(kwargs[name])
        kwargs["id"] = str(kwargs.get("id", ""))
        kwargs["customer_id"] = str(kwargs.get("customer_id", ""))
        return cls(**kwargs)


def to_wire_values(values: Mapping[str, Any]) -> dict[str, Any]:
    return {WIRE_NAMES.get(k, k): v for k, v in values.items()}


@dataclass(frozen=True)
class DerivedMetrics:
    landed_cost: float
    total_cost_per_unit: float
    revenue: float
    total_expense: float
    total_profit: float
    margin_percent: float
    profit_per_unit: float
    val1: float
    val2: float
    margin_status: MarginStatus


@dataclass(frozen=True)
class MarginBrackets:
    negative: int = 0
    low: int = 0
    medium: int = 0
    good: int = 0
    excellent: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "negative": self.negative,
            "low": self.low,
            "medium": self.medium,
            "good": self.good,
            "excellent": self.excellent,
        }


@dataclass(frozen=True)
class PortfolioMetrics:
    total_revenue: float = 0.0
    total_profit: float = 0.0
    weighted_average_margin: float = 0.0
    total_units: int | float = 0
    below_target_count: int = 0
    at_risk_count: int = 0
    margin_brackets: MarginBrackets = field(default_factory=MarginBrackets)
    item_count: int = 0


@dataclass(frozen=True)
class PushEvent:
    action: PushAction
    record: StyleRecord


@dataclass(frozen=True)
class Notice:
    level: str  # info | success | warning | error
    title: str
    message: str = ""


@dataclass(frozen=True)
class BulkResult:
    succeeded: int
    failed: int
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class ImportSummary:
    imported: int
    skipped: int
    errors: tuple[str, ...] = ()

    @property
    def error_count(self) -> int:
        return len(self.errors)
