"""Autosave state machine for one visible style row.

    idle -> pending -> saving -> success -> idle
                          \\-> error   -> idle

Edits land in the local values at once and restart the debounce timer.
When the timer fires the values are validated and persisted through the
`persist` callable (which owns retries). A failed persist reverts the row to
the last confirmed record. Pushed updates from other clients replace the row
only while it is not dirty; there is no version stamp, so "local dirty wins"
is the whole conflict policy.

All methods run on the event loop thread.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from margintrack.config import BusinessConfig
from margintrack.domain.models import (
    EDITABLE_FIELDS,
    NUMERIC_FIELDS,
    DerivedMetrics,
    SaveStatus,
    StyleRecord,
)
from margintrack.services.formulas import compute_metrics
from margintrack.services.validation import coerce_values, parse_number, validate_field, validate_record

log = logging.getLogger("margintrack.sync")

Persist = Callable[[str, dict[str, Any]], Awaitable[StyleRecord]]
Listener = Callable[["StyleSynchronizer"], None]


def _normalized(name: str, value: Any) -> Any:
    if name in NUMERIC_FIELDS:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        num = parse_number(value)
        return num if num is not None else str(value)
    return "" if value is None else str(value)


class StyleSynchronizer:
    def __init__(
        self,
        record: StyleRecord,
        persist: Persist,
        config: BusinessConfig,
        on_change: Optional[Listener] = None,
    ):
        self.config = config
        self._persist = persist
        self._on_change = on_change

        self.confirmed = record
        self.local: dict[str, Any] = record.values()
        self.dirty = False
        self.status = SaveStatus.IDLE
        self.errors: dict[str, str] = {}

        self._debounce: Optional[asyncio.TimerHandle] = None
        self._status_timer: Optional[asyncio.TimerHandle] = None
        self._save_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._edits = 0
        self._closed = False

    @property
    def record_id(self) -> str:
        return self.confirmed.id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def metrics(self) -> DerivedMetrics:
        return compute_metrics(self.local, self.config)

    # ---------- presentation events ----------
    def change(self, field: str, value: Any) -> None:
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"Unknown field: {field}")
        if self._closed:
            log.debug("edit_after_close id=%s field=%s", self.record_id, field)
            return

        self.local[field] = value
        self.dirty = True
        self._edits += 1

        # a field already showing an error is re-checked as the user types
        if field in self.errors:
            self._set_field_error(field, validate_field(field, value, self.config))

        self._cancel_status_timer()
        self._restart_debounce()
        self._set_status(SaveStatus.PENDING)

    def blur(self, field: str) -> Optional[str]:
        """Advisory validation of one field; never blocks typing."""
        message = validate_field(field, self.local.get(field), self.config)
        self._set_field_error(field, message)
        self._notify()
        return message

    def discard(self) -> None:
        """Drop unsaved edits and show the last confirmed record again."""
        self._cancel_debounce()
        self._cancel_status_timer()
        self.local = self.confirmed.values()
        self.dirty = False
        self.errors = {}
        self._set_status(SaveStatus.IDLE)

    # ---------- remote updates ----------
    def apply_remote(self, record: StyleRecord) -> bool:
        """Adopt a pushed record unless local edits are pending. True if applied."""
        if record.id != self.record_id:
            raise ValueError(f"Pushed record {record.id} does not belong to row {self.record_id}")
        if self.dirty:
            log.info("push_ignored_dirty id=%s status=%s", self.record_id, self.status.value)
            return False

        self.confirmed = record
        self.local = record.values()
        self.errors = {}
        self._notify()
        return True

    # ---------- saving ----------
    async def flush(self) -> None:
        """Settle immediately instead of waiting for the debounce timer."""
        self._cancel_debounce()
        await self._settle()

    async def drain(self) -> None:
        """Wait for scheduled and in-flight saves to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Row left the view: stop timers. An in-flight save still completes."""
        self._cancel_debounce()
        self._cancel_status_timer()
        self._closed = True

    def _restart_debounce(self) -> None:
        self._cancel_debounce()
        loop = asyncio.get_running_loop()
        self._debounce = loop.call_later(self.config.debounce_seconds, self._on_debounce)

    def _on_debounce(self) -> None:
        self._debounce = None
        task = asyncio.get_running_loop().create_task(self._settle())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _changed_fields(self, values: dict[str, Any]) -> dict[str, Any]:
        confirmed = self.confirmed.values()
        return {
            name: value
            for name, value in values.items()
            if _normalized(name, value) != _normalized(name, confirmed.get(name))
        }

    async def _settle(self) -> None:
        async with self._save_lock:
            # superseded by a newer edit whose own timer will save
            if self._debounce is not None or not self.dirty:
                return

            snapshot = dict(self.local)
            changed = self._changed_fields(snapshot)
            if not changed:
                self.dirty = False
                self.errors = {}
                self._set_status(SaveStatus.IDLE)
                return

            result = validate_record(snapshot, self.config)
            if not result.is_valid:
                # keep the user's input and the dirty flag; the next edit retries
                self.errors = dict(result.field_errors)
                log.info("style_save_blocked id=%s fields=%s", self.record_id, sorted(result.field_errors))
                self._set_status(SaveStatus.ERROR)
                return

            payload = coerce_values(changed)
            edits_at_start = self._edits
            self._set_status(SaveStatus.SAVING)
            try:
                saved = await self._persist(self.record_id, payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("style_save_failed id=%s error=%s", self.record_id, e)
                self._revert()
                return

            self.confirmed = saved
            log.info("style_saved id=%s fields=%s", self.record_id, sorted(payload))
            if self._edits != edits_at_start:
                # newer edits arrived mid-save; their debounce cycle saves them
                self._set_status(SaveStatus.PENDING)
                return

            self.local = saved.values()
            self.dirty = False
            self.errors = {}
            self._set_status(SaveStatus.SUCCESS)
            self._schedule_idle(self.config.success_display_seconds)

    def _revert(self) -> None:
        self._cancel_debounce()
        self.local = self.confirmed.values()
        self.dirty = False
        self.errors = {}
        self._set_status(SaveStatus.ERROR)
        self._schedule_idle(self.config.error_display_seconds)

    # ---------- helpers ----------
    def _set_field_error(self, field: str, message: Optional[str]) -> None:
        if message:
            self.errors[field] = message
        else:
            self.errors.pop(field, None)

    def _schedule_idle(self, delay: float) -> None:
        if self._closed:
            return
        self._cancel_status_timer()
        self._status_timer = asyncio.get_running_loop().call_later(delay, self._to_idle)

    def _to_idle(self) -> None:
        self._status_timer = None
        if self.status in (SaveStatus.SUCCESS, SaveStatus.ERROR):
            self._set_status(SaveStatus.IDLE)

    def _cancel_debounce(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    def _cancel_status_timer(self) -> None:
        if self._status_timer is not None:
            self._status_timer.cancel()
            self._status_timer = None

    def _set_status(self, status: SaveStatus) -> None:
        if status is not self.status:
            log.debug("status id=%s %s->%s", self.record_id, self.status.value, status.value)
        self.status = status
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None and not self._closed:
            self._on_change(self)
