import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from margintrack.config import BusinessConfig  # noqa: E402
from margintrack.domain.errors import NotFoundError  # noqa: E402
from margintrack.domain.models import Customer, StyleRecord  # noqa: E402


def fast_config(**overrides) -> BusinessConfig:
    """Business defaults with timings shrunk for tests."""
    values = dict(
        retry_base_delay=0.001,
        max_backoff=0.01,
        debounce_seconds=0.02,
        success_display_seconds=0.02,
        error_display_seconds=0.02,
    )
    values.update(overrides)
    return BusinessConfig(**values)


def style(record_id: str = "s1", customer_id: str = "c1", **values) -> StyleRecord:
    base = dict(style_code="TP131", units=1500, pack=2, price=13.95, rate=42.0, extra_cost=23.0, selling_price=129.5)
    base.update(values)
    return StyleRecord(id=record_id, customer_id=customer_id, **base)


class FakeStore:
    """In-memory async store. `failures` is a queue of exceptions raised before succeeding."""

    def __init__(self, records=()):
        self.records = {r.id: r for r in records}
        self.customers: list[Customer] = []
        self.failures: list[Exception] = []
        self.calls: list[tuple] = []
        self._next = 1

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    async def list_customers(self):
        self.calls.append(("list_customers",))
        return list(self.customers)

    async def create_customer(self, name, code=""):
        cust = Customer(id=f"c{len(self.customers) + 1}", name=name, code=code)
        self.customers.append(cust)
        return cust

    async def list_styles(self, customer_id):
        self.calls.append(("list_styles", customer_id))
        self._maybe_fail()
        return [r for r in self.records.values() if r.customer_id == customer_id]

    async def create_style(self, data):
        self.calls.append(("create_style", dict(data)))
        self._maybe_fail()
        record_id = f"new{self._next}"
        self._next += 1
        values = {k: v for k, v in data.items() if k != "customer_id"}
        record = StyleRecord(id=record_id, customer_id=data["customer_id"], **values)
        self.records[record_id] = record
        return record

    async def update_style(self, style_id, changes):
        self.calls.append(("update_style", style_id, dict(changes)))
        self._maybe_fail()
        if style_id not in self.records:
            raise NotFoundError(f"Style not found: {style_id}")
        record = self.records[style_id].with_values(changes)
        self.records[style_id] = record
        return record

    async def delete_style(self, style_id):
        self.calls.append(("delete_style", style_id))
        self._maybe_fail()
        if style_id not in self.records:
            raise NotFoundError(f"Style not found: {style_id}")
        del self.records[style_id]


class NoticeLog(list):
    def __call__(self, notice) -> None:
        self.append(notice)

    def titles(self) -> list[str]:
        return [n.title for n in self]
