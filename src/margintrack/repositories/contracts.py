from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Protocol

from margintrack.domain.models import Customer, PushEvent, StyleRecord


class StyleRepository(Protocol):
    """Blocking record store (SQLite file, PocketBase over HTTP)."""

    def list_customers(self) -> list[Customer]: ...
    def create_customer(self, name: str, code: str = "") -> Customer: ...
    def list_styles(self, customer_id: str) -> list[StyleRecord]: ...
    def get_style(self, style_id: str) -> Optional[StyleRecord]: ...
    def create_style(self, data: Mapping[str, Any]) -> StyleRecord: ...
    def update_style(self, style_id: str, changes: Mapping[str, Any]) -> StyleRecord: ...
    def delete_style(self, style_id: str) -> None: ...


class StyleStore(Protocol):
    """The same operations, awaitable from the event loop."""

    async def list_customers(self) -> list[Customer]: ...
    async def create_customer(self, name: str, code: str = "") -> Customer: ...
    async def list_styles(self, customer_id: str) -> list[StyleRecord]: ...
    async def create_style(self, data: Mapping[str, Any]) -> StyleRecord: ...
    async def update_style(self, style_id: str, changes: Mapping[str, Any]) -> StyleRecord: ...
    async def delete_style(self, style_id: str) -> None: ...


PushCallback = Callable[[PushEvent], None]
# feed dropped after a successful subscribe
LostCallback = Callable[[BaseException], None]


class PushSubscription(Protocol):
    def close(self) -> None: ...


class PushChannel(Protocol):
    async def subscribe(
        self, customer_id: str, callback: PushCallback, on_lost: Optional[LostCallback] = None
    ) -> PushSubscription: ...
