from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from margintrack.config import BusinessConfig
from margintrack.domain.errors import NotFoundError, ValidationError, user_message
from margintrack.domain.models import (
    EDITABLE_FIELDS,
    BulkResult,
    DerivedMetrics,
    Notice,
    PortfolioMetrics,
    PushAction,
    PushEvent,
    StyleRecord,
)
from margintrack.repositories.contracts import PushChannel, PushSubscription, StyleStore
from margintrack.services.analytics_service import aggregate
from margintrack.services.formulas import compute_metrics
from margintrack.services.retry import RetryCallback, RetryExecutor
from margintrack.services.sync_service import Listener, StyleSynchronizer
from margintrack.services.validation import coerce_values, validate_record

log = logging.getLogger("margintrack.sync")

Notifier = Callable[[Notice], None]


class StyleService:
    """The styles of one customer as seen by one client.

    Keeps the known record set, opens a synchronizer per visible row and
    folds pushed changes from other clients into both.
    """

    def __init__(
        self,
        customer_id: str,
        store: StyleStore,
        config: BusinessConfig,
        executor: RetryExecutor | None = None,
        channel: PushChannel | None = None,
        notify: Notifier | None = None,
    ):
        self.customer_id = customer_id
        self.store = store
        self.config = config
        self.executor = executor or RetryExecutor.from_config(config)
        self.channel = channel
        self._notify = notify

        self._records: dict[str, StyleRecord] = {}
        self._syncs: dict[str, StyleSynchronizer] = {}
        self._subscription: Optional[PushSubscription] = None
        self._realtime_warned = False
        self.on_push: Optional[Callable[[PushEvent], None]] = None

    # ---------- notices ----------
    def _notice(self, level: str, title: str, message: str = "") -> None:
        log.info("notice level=%s title=%s message=%s", level, title, message)
        if self._notify is not None:
            self._notify(Notice(level, title, message))

    def _retry_notice(self, title: str) -> RetryCallback:
        def on_retry(attempt: int, _error: BaseException) -> None:
            self._notice("warning", title, f"Retrying... (attempt {attempt + 1})")

        return on_retry

    # ---------- loading / realtime ----------
    async def load(self) -> list[StyleRecord]:
        try:
            records = await self.executor.run(
                lambda: self.store.list_styles(self.customer_id),
                self._retry_notice("Connection issue"),
            )
        except Exception as e:
            log.error("styles_load_failed customer=%s error=%s", self.customer_id, e)
            self._notice("error", "Failed to load styles", user_message(e))
            raise

        self._records = {r.id: r for r in records}
        for record_id in list(self._syncs):
            record = self._records.get(record_id)
            if record is None:
                self.close(record_id)
            else:
                self._syncs[record_id].apply_remote(record)
        log.info("styles_loaded customer=%s count=%s", self.customer_id, len(records))
        return list(records)

    async def subscribe(self) -> bool:
        """Start receiving pushed changes. False (plus one warning) when unavailable."""
        if self.channel is None:
            return False
        try:
            self._subscription = await self.channel.subscribe(
                self.customer_id, self.handle_push, on_lost=self._realtime_lost
            )
        except Exception as e:
            log.warning("realtime_unavailable customer=%s error=%s", self.customer_id, e)
            self._warn_realtime()
            return False
        return True

    def _realtime_lost(self, error: BaseException) -> None:
        log.warning("realtime_lost customer=%s error=%s", self.customer_id, error)
        self._subscription = None
        self._warn_realtime()

    def _warn_realtime(self) -> None:
        if not self._realtime_warned:
            self._realtime_warned = True
            self._notice(
                "warning",
                "Real-time updates unavailable",
                "Changes from other users may not appear immediately.",
            )

    def handle_push(self, event: PushEvent) -> None:
        self._apply_push(event)
        if self.on_push is not None:
            self.on_push(event)

    def _apply_push(self, event: PushEvent) -> None:
        record = event.record
        if event.action is PushAction.DELETE or record.customer_id != self.customer_id:
            if record.id in self._records:
                self._records.pop(record.id, None)
                self.close(record.id)
            return

        sync = self._syncs.get(record.id)
        if sync is not None and not sync.apply_remote(record):
            log.info("push_deferred id=%s reason=local_edits", record.id)
            return
        self._records[record.id] = record

    # ---------- rows ----------
    def records(self) -> list[StyleRecord]:
        return list(self._records.values())

    def get(self, record_id: str) -> StyleRecord:
        try:
            return self._records[record_id]
        except KeyError:
            raise NotFoundError(f"Style not loaded: {record_id}") from None

    def open(self, record_id: str, on_change: Listener | None = None) -> StyleSynchronizer:
        sync = self._syncs.get(record_id)
        if sync is None:
            sync = StyleSynchronizer(self.get(record_id), self.update_style, self.config, on_change)
            self._syncs[record_id] = sync
        return sync

    def close(self, record_id: str) -> None:
        sync = self._syncs.pop(record_id, None)
        if sync is not None:
            sync.close()

    def derived(self, record_id: str) -> DerivedMetrics:
        sync = self._syncs.get(record_id)
        if sync is not None:
            return sync.metrics
        return compute_metrics(self.get(record_id), self.config)

    def metrics(self) -> PortfolioMetrics:
        return aggregate(self._records.values(), self.config)

    # ---------- writes ----------
    async def update_style(self, record_id: str, changes: Mapping[str, Any]) -> StyleRecord:
        try:
            saved = await self.executor.run(
                lambda: self.store.update_style(record_id, dict(changes)),
                self._retry_notice("Save failed"),
            )
        except Exception as e:
            log.error("style_update_failed id=%s error=%s", record_id, e)
            self._notice("error", "Failed to save", user_message(e))
            raise

        self._records[saved.id] = saved
        sync = self._syncs.get(saved.id)
        if sync is not None and not sync.dirty:
            sync.apply_remote(saved)
        self._notice("success", "Saved", "Changes saved successfully")
        return saved

    async def create_style(self, values: Mapping[str, Any]) -> StyleRecord:
        result = validate_record(values, self.config)
        if not result.is_valid:
            raise ValidationError("Please fix the highlighted fields.", result.field_errors)

        payload = coerce_values({k: v for k, v in values.items() if k in EDITABLE_FIELDS})
        payload["customer_id"] = self.customer_id
        try:
            record = await self.executor.run(
                lambda: self.store.create_style(payload),
                self._retry_notice("Add failed"),
            )
        except Exception as e:
            log.error("style_create_failed customer=%s error=%s", self.customer_id, e)
            self._notice("error", "Failed to add style", user_message(e))
            raise

        self._records[record.id] = record
        self._notice("success", "Added", f"Style {record.style_code or record.id} added")
        return record

    async def _delete(self, record_id: str, on_retry: RetryCallback | None = None) -> None:
        await self.executor.run(lambda: self.store.delete_style(record_id), on_retry)
        self._records.pop(record_id, None)
        self.close(record_id)

    async def delete_style(self, record_id: str) -> None:
        try:
            await self._delete(record_id, self._retry_notice("Delete failed"))
        except Exception as e:
            log.error("style_delete_failed id=%s error=%s", record_id, e)
            self._notice("error", "Failed to delete", user_message(e))
            raise
        self._notice("success", "Deleted", "Row deleted successfully")

    async def bulk_delete(self, record_ids: Iterable[str]) -> BulkResult:
        """Delete one at a time; failures are tallied, never raised."""
        ok = 0
        errors: list[str] = []
        for record_id in list(record_ids):
            try:
                await self._delete(record_id)
                ok += 1
            except Exception as e:
                log.warning("bulk_delete_item_failed id=%s error=%s", record_id, e)
                errors.append(f"{record_id}: {user_message(e)}")

        if not errors:
            self._notice("success", "Deleted", f"{ok} row{'s' if ok != 1 else ''} deleted successfully")
        else:
            self._notice("warning", "Partial delete", f"{ok} deleted, {len(errors)} failed")
        return BulkResult(succeeded=ok, failed=len(errors), errors=tuple(errors))

    # ---------- teardown ----------
    async def shutdown(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        syncs = list(self._syncs.values())
        for record_id in list(self._syncs):
            self.close(record_id)
        await asyncio.gather(*(s.drain() for s in syncs), return_exceptions=True)
