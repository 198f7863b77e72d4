from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

from margintrack.domain.models import Customer, PushAction, PushEvent, StyleRecord
from margintrack.repositories.contracts import StyleRepository
from margintrack.repositories.realtime import LocalPushChannel


class AsyncStyleStore:
    """Runs a blocking repository off the event loop.

    With a `LocalPushChannel`, every successful write is also published so
    other clients of the same local store see it.
    """

    def __init__(self, repo: StyleRepository, channel: Optional[LocalPushChannel] = None):
        self.repo = repo
        self.channel = channel

    def _publish(self, action: PushAction, record: StyleRecord) -> None:
        if self.channel is not None:
            self.channel.publish(PushEvent(action=action, record=record))

    async def list_customers(self) -> list[Customer]:
        return await asyncio.to_thread(self.repo.list_customers)

    async def create_customer(self, name: str, code: str = "") -> Customer:
        return await asyncio.to_thread(self.repo.create_customer, name, code)

    async def list_styles(self, customer_id: str) -> list[StyleRecord]:
        return await asyncio.to_thread(self.repo.list_styles, customer_id)

    async def create_style(self, data: Mapping[str, Any]) -> StyleRecord:
        record = await asyncio.to_thread(self.repo.create_style, dict(data))
        self._publish(PushAction.CREATE, record)
        return record

    async def update_style(self, style_id: str, changes: Mapping[str, Any]) -> StyleRecord:
        record = await asyncio.to_thread(self.repo.update_style, style_id, dict(changes))
        self._publish(PushAction.UPDATE, record)
        return record

    async def delete_style(self, style_id: str) -> None:
        existing = None
        if self.channel is not None:
            existing = await asyncio.to_thread(self.repo.get_style, style_id)
        await asyncio.to_thread(self.repo.delete_style, style_id)
        if existing is not None:
            self._publish(PushAction.DELETE, existing)
