"""Push channels delivering other clients' style changes.

Callbacks always run on the subscriber's event loop.
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

import requests

from margintrack.domain.errors import store_error_for_status
from margintrack.domain.models import PushAction, PushEvent, StyleRecord
from margintrack.repositories.contracts import LostCallback, PushCallback
from margintrack.repositories.pocketbase_repo import STYLES, PocketBaseRepository

log = logging.getLogger("margintrack.store")

# every record of the collection
STYLES_TOPIC = f"{STYLES}/*"


def _wants(customer_id: str, event: PushEvent) -> bool:
    return event.action is PushAction.DELETE or event.record.customer_id == customer_id


class _LocalSubscription:
    def __init__(self, channel: "LocalPushChannel", customer_id: str, callback: PushCallback, loop):
        self.channel = channel
        self.customer_id = customer_id
        self.callback = callback
        self.loop = loop
        self.active = True

    def deliver(self, event: PushEvent) -> None:
        if self.active:
            self.callback(event)

    def close(self) -> None:
        self.active = False
        self.channel._remove(self)


class LocalPushChannel:
    """In-process broadcaster shared by every client of one local store."""

    def __init__(self) -> None:
        self._subs: list[_LocalSubscription] = []
        self._lock = threading.Lock()

    async def subscribe(
        self, customer_id: str, callback: PushCallback, on_lost: Optional[LostCallback] = None
    ) -> _LocalSubscription:
        sub = _LocalSubscription(self, customer_id, callback, asyncio.get_running_loop())
        with self._lock:
            self._subs.append(sub)
        return sub

    def _remove(self, sub: _LocalSubscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def publish(self, event: PushEvent) -> None:
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            if _wants(sub.customer_id, event) and not sub.loop.is_closed():
                sub.loop.call_soon_threadsafe(sub.deliver, event)


# ---------- PocketBase (Server-Sent Events) ----------
@dataclass(frozen=True)
class SseEvent:
    name: str
    data: str
    id: str = ""


def iter_sse_events(lines: Iterable[str]) -> Iterator[SseEvent]:
    name, event_id, data = "message", "", []
    for line in lines:
        if line == "":
            if data:
                yield SseEvent(name=name, data="\n".join(data), id=event_id)
            name, data = "message", []
            continue
        if line.startswith(":"):
            continue
        key, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if key == "event":
            name = value
        elif key == "data":
            data.append(value)
        elif key == "id":
            event_id = value
    if data:
        yield SseEvent(name=name, data="\n".join(data), id=event_id)


def push_event_from_payload(payload: dict) -> Optional[PushEvent]:
    try:
        action = PushAction(payload.get("action"))
    except ValueError:
        return None
    record = payload.get("record")
    if not isinstance(record, dict):
        return None
    return PushEvent(action=action, record=StyleRecord.from_wire(record))


class _SseSubscription:
    def __init__(
        self,
        repo: PocketBaseRepository,
        customer_id: str,
        callback: PushCallback,
        loop,
        ready,
        on_lost: Optional[LostCallback] = None,
    ):
        self.repo = repo
        self.customer_id = customer_id
        self.callback = callback
        self.on_lost = on_lost
        self.loop = loop
        self.ready = ready
        self._stop = threading.Event()
        self._response: Optional[requests.Response] = None
        self._thread = threading.Thread(target=self._run, name="pocketbase-realtime", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def close(self) -> None:
        self._stop.set()
        if self._response is not None:
            self._response.close()

    def _settle_ready(self, error: Optional[BaseException]) -> None:
        def settle() -> None:
            if self.ready.done():
                return
            if error is None:
                self.ready.set_result(None)
            else:
                self.ready.set_exception(error)

        if not self.loop.is_closed():
            self.loop.call_soon_threadsafe(settle)

    def _deliver(self, event: PushEvent) -> None:
        if not self._stop.is_set():
            self.callback(event)

    def _lost(self, error: BaseException) -> None:
        if not self._stop.is_set() and self.on_lost is not None:
            self.on_lost(error)

    def _run(self) -> None:
        connected = False
        try:
            resp = self.repo.session.get(
                self.repo.realtime_url(),
                headers={"Accept": "text/event-stream", **self.repo.auth_headers()},
                stream=True,
                timeout=(self.repo.timeout, None),
            )
            self._response = resp
            if resp.status_code >= 400:
                raise store_error_for_status(resp.status_code, f"Realtime connect failed: HTTP {resp.status_code}")

            for event in iter_sse_events(resp.iter_lines(decode_unicode=True)):
                if self._stop.is_set():
                    break
                if event.name == "PB_CONNECT":
                    client_id = json.loads(event.data)["clientId"]
                    self.repo.set_realtime_subscriptions(client_id, [STYLES_TOPIC])
                    log.info("realtime_subscribed client=%s customer=%s", client_id, self.customer_id)
                    connected = True
                    self._settle_ready(None)
                elif event.name in (STYLES_TOPIC, STYLES):
                    push = push_event_from_payload(json.loads(event.data))
                    if push is not None and _wants(self.customer_id, push):
                        self.loop.call_soon_threadsafe(self._deliver, push)
        except Exception as e:
            error: BaseException = e
        else:
            error = ConnectionError("Realtime stream ended.")

        if not self._stop.is_set():
            log.warning("realtime_stream_closed customer=%s connected=%s error=%s", self.customer_id, connected, error)
            # subscribe() already returned, so the failure goes to on_lost
            if connected and not self.loop.is_closed():
                self.loop.call_soon_threadsafe(self._lost, error)
        self._settle_ready(error)


class PocketBaseRealtime:
    def __init__(self, repo: PocketBaseRepository, connect_timeout: float = 10.0):
        self.repo = repo
        self.connect_timeout = connect_timeout

    async def subscribe(
        self, customer_id: str, callback: PushCallback, on_lost: Optional[LostCallback] = None
    ) -> _SseSubscription:
        loop = asyncio.get_running_loop()
        ready = loop.create_future()
        sub = _SseSubscription(self.repo, customer_id, callback, loop, ready, on_lost)
        sub.start()
        try:
            await asyncio.wait_for(ready, self.connect_timeout)
        except BaseException:
            sub.close()
            raise
        return sub
