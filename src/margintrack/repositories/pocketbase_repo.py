from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import requests

from margintrack.domain.errors import NotFoundError, TransientStoreError, store_error_for_status
from margintrack.domain.models import EDITABLE_FIELDS, Customer, StyleRecord, to_wire_values

log = logging.getLogger("margintrack.store")

STYLES = "styles"
CUSTOMERS = "customers"
USERS = "users"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    message = body.get("message") if isinstance(body, dict) else None
    return f"HTTP {resp.status_code}: {message}" if message else f"HTTP {resp.status_code}"


class PocketBaseRepository:
    """Record store backed by a PocketBase server over its REST API."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        page_size: int = 500,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_size = page_size
        self.token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": self.token} if self.token else {}

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        headers = {**self.auth_headers(), **kwargs.pop("headers", {})}
        try:
            r = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise TransientStoreError(f"Request timed out: {method} {path}") from e
        except requests.RequestException as e:
            raise TransientStoreError(f"Network error: {e}") from e

        if r.status_code >= 400:
            raise store_error_for_status(r.status_code, _error_detail(r))
        if r.status_code == 204 or not r.content:
            return None
        return r.json()

    def authenticate(self, identity: str, password: str) -> None:
        data = self._request(
            "POST",
            f"/api/collections/{USERS}/auth-with-password",
            json={"identity": identity, "password": password},
        )
        self.token = str(data["token"])
        log.info("pocketbase_authenticated identity=%s", identity)

    def _records_path(self, collection: str, record_id: str | None = None) -> str:
        base = f"/api/collections/{collection}/records"
        return f"{base}/{record_id}" if record_id else base

    def _full_list(self, collection: str, **params: Any) -> list[dict]:
        items: list[dict] = []
        page = 1
        while True:
            data = self._request(
                "GET",
                self._records_path(collection),
                params={"page": page, "perPage": self.page_size, **params},
            )
            items.extend(data.get("items", []))
            if page >= int(data.get("totalPages", 1) or 1):
                return items
            page += 1

    # ---------- Customers ----------
    def list_customers(self) -> list[Customer]:
        rows = self._full_list(CUSTOMERS, sort="name")
        return [Customer(id=str(r["id"]), name=str(r.get("name", "")), code=str(r.get("code", ""))) for r in rows]

    def create_customer(self, name: str, code: str = "") -> Customer:
        r = self._request("POST", self._records_path(CUSTOMERS), json={"name": name.strip(), "code": code.strip()})
        return Customer(id=str(r["id"]), name=str(r.get("name", "")), code=str(r.get("code", "")))

    # ---------- Styles ----------
    def list_styles(self, customer_id: str) -> list[StyleRecord]:
        rows = self._full_list(STYLES, filter=f"customer = {_quote(customer_id)}", sort="styleId")
        return [StyleRecord.from_wire(r) for r in rows]

    def get_style(self, style_id: str) -> Optional[StyleRecord]:
        try:
            r = self._request("GET", self._records_path(STYLES, style_id))
        except NotFoundError:
            return None
        return StyleRecord.from_wire(r)

    def create_style(self, data: Mapping[str, Any]) -> StyleRecord:
        body = {k: v for k, v in data.items() if k in EDITABLE_FIELDS or k == "customer_id"}
        r = self._request("POST", self._records_path(STYLES), json=to_wire_values(body))
        return StyleRecord.from_wire(r)

    def update_style(self, style_id: str, changes: Mapping[str, Any]) -> StyleRecord:
        body = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        r = self._request("PATCH", self._records_path(STYLES, style_id), json=to_wire_values(body))
        return StyleRecord.from_wire(r)

    def delete_style(self, style_id: str) -> None:
        self._request("DELETE", self._records_path(STYLES, style_id))

    # ---------- Realtime ----------
    def realtime_url(self) -> str:
        return f"{self.base_url}/api/realtime"

    def set_realtime_subscriptions(self, client_id: str, subscriptions: list[str]) -> None:
        self._request("POST", "/api/realtime", json={"clientId": client_id, "subscriptions": subscriptions})
