import asyncio
import sqlite3
from pathlib import Path

import pytest

from margintrack.domain.errors import NotFoundError, TerminalStoreError
from margintrack.domain.models import PushAction
from margintrack.repositories.async_store import AsyncStyleStore
from margintrack.repositories.realtime import LocalPushChannel
from margintrack.repositories.sqlite_repo import SqliteRepository


def _repo(tmp_path: Path) -> SqliteRepository:
    repo = SqliteRepository(tmp_path / "m.db")
    repo.init_db()
    return repo


def test_migrations_reach_latest_version_and_are_idempotent(tmp_path: Path):
    repo = _repo(tmp_path)
    assert repo.schema_version() == 2
    repo.init_db()
    assert repo.schema_version() == 2
    assert repo.integrity_check() == "ok"
    assert not list(tmp_path.glob("*.bak"))


def test_migration_failure_restores_db(tmp_path: Path):
    db = tmp_path / "r.db"
    conn = sqlite3.connect(db)
    conn.execute("CREATE TABLE marker (x INTEGER)")
    conn.commit()
    conn.close()

    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v2_style_index(self, cur):
            raise RuntimeError("forced migration failure")

    with pytest.raises(RuntimeError, match="restored"):
        BrokenMigrationRepo(db).init_db()

    repo = SqliteRepository(db)
    assert repo.schema_version() == 0
    conn = sqlite3.connect(db)
    assert conn.execute("SELECT name FROM sqlite_master WHERE name='marker'").fetchone()
    conn.close()


def test_customer_and_style_crud(tmp_path: Path):
    repo = _repo(tmp_path)
    acme = repo.create_customer(" Acme ", "ACM")
    other = repo.create_customer("Other")
    assert [c.name for c in repo.list_customers()] == ["Acme", "Other"]

    created = repo.create_style({"customer_id": acme.id, "style_code": "TP131", "units": 1500, "price": 13.95, "factory": None})
    repo.create_style({"customer_id": other.id, "style_code": "X1"})
    assert created.factory == ""
    assert created.pack is None

    updated = repo.update_style(created.id, {"units": 10, "description": "Knit top", "id": "ignored"})
    assert updated.units == 10
    assert updated.description == "Knit top"
    assert updated.id == created.id

    assert [s.style_code for s in repo.list_styles(acme.id)] == ["TP131"]

    repo.delete_style(created.id)
    assert repo.get_style(created.id) is None
    assert repo.list_styles(acme.id) == []


def test_missing_style_raises_not_found(tmp_path: Path):
    repo = _repo(tmp_path)
    with pytest.raises(NotFoundError):
        repo.update_style("nope", {"units": 1})
    with pytest.raises(NotFoundError):
        repo.delete_style("nope")


def test_constraints_are_terminal_errors(tmp_path: Path):
    repo = _repo(tmp_path)
    cust = repo.create_customer("Acme")

    with pytest.raises(TerminalStoreError):
        repo.create_style({"style_code": "no customer"})
    with pytest.raises(TerminalStoreError):
        repo.create_style({"customer_id": cust.id, "units": 0})
    with pytest.raises(TerminalStoreError):
        repo.create_style({"customer_id": "ghost", "units": 5})


def test_async_store_publishes_writes(tmp_path: Path):
    repo = _repo(tmp_path)
    cust = repo.create_customer("Acme")
    channel = LocalPushChannel()
    store = AsyncStyleStore(repo, channel)
    events = []

    async def scenario():
        sub = await channel.subscribe(cust.id, events.append)
        record = await store.create_style({"customer_id": cust.id, "style_code": "A"})
        await store.update_style(record.id, {"units": 5})
        await store.delete_style(record.id)
        await asyncio.sleep(0.01)
        sub.close()
        return await store.list_styles(cust.id)

    remaining = asyncio.run(scenario())
    assert remaining == []
    assert [e.action for e in events] == [PushAction.CREATE, PushAction.UPDATE, PushAction.DELETE]
    assert events[1].record.units == 5
