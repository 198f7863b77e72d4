from __future__ import annotations

import secrets
import shutil
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

from margintrack.domain.errors import NotFoundError, TerminalStoreError, TransientStoreError
from margintrack.domain.models import EDITABLE_FIELDS, TEXT_FIELDS, Customer, StyleRecord

STYLE_COLUMNS = ("id", "customer_id") + EDITABLE_FIELDS


def _new_id() -> str:
    return secrets.token_hex(8)


def _now() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


def _column_values(data: Mapping[str, Any]) -> dict[str, Any]:
    values = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    for k in TEXT_FIELDS:
        if k in values and values[k] is None:
            values[k] = ""
    return values


@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise TerminalStoreError(f"Rejected by database: {e}", 400) from e
    except sqlite3.OperationalError as e:
        raise TransientStoreError(f"Database unavailable: {e}") from e


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def _migrations(self):
        return [
            (1, self._migration_v1_base),
            (2, self._migration_v2_style_index),
        ]

    def run_migrations(self) -> None:
        migrations = self._migrations()
        if Path(self.db_path).exists() and self.schema_version() >= migrations[-1][0]:
            return

        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def schema_version(self) -> int:
        conn = self._conn()
        try:
            has_table = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_migrations'"
            ).fetchone()
            if not has_table:
                return 0
            row = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations").fetchone()
            return int(row[0])
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS customers (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            code TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS styles (
            id TEXT PRIMARY KEY,
            customer_id TEXT NOT NULL,
            style_code TEXT NOT NULL DEFAULT '',
            factory TEXT NOT NULL DEFAULT '',
            delivery_date TEXT NOT NULL DEFAULT '',
            description TEXT NOT NULL DEFAULT '',
            fabric_trim TEXT NOT NULL DEFAULT '',
            style_type TEXT NOT NULL DEFAULT '',
            units INTEGER CHECK(units IS NULL OR units >= 1),
            pack INTEGER CHECK(pack IS NULL OR pack >= 1),
            price REAL CHECK(price IS NULL OR price >= 0),
            rate REAL,
            extra_cost REAL CHECK(extra_cost IS NULL OR extra_cost >= 0),
            selling_price REAL CHECK(selling_price IS NULL OR selling_price >= 0),
            updated_at TEXT NOT NULL,
            FOREIGN KEY(customer_id) REFERENCES customers(id) ON DELETE CASCADE
        )
        """
        )

    def _migration_v2_style_index(self, cur: sqlite3.Cursor) -> None:
        cur.execute("CREATE INDEX IF NOT EXISTS idx_styles_customer ON styles(customer_id, style_code)")

    # ---------- Customers ----------
    def list_customers(self) -> list[Customer]:
        conn = self._conn()
        try:
            with _store_errors():
                rows = conn.execute("SELECT id, name, code FROM customers ORDER BY name").fetchall()
        finally:
            conn.close()
        return [Customer(id=str(r[0]), name=str(r[1]), code=str(r[2])) for r in rows]

    def create_customer(self, name: str, code: str = "") -> Customer:
        customer = Customer(id=_new_id(), name=name.strip(), code=code.strip())
        conn = self._conn()
        try:
            with _store_errors():
                conn.execute(
                    "INSERT INTO customers (id, name, code, created_at) VALUES (?, ?, ?, ?)",
                    (customer.id, customer.name, customer.code, _now()),
                )
                conn.commit()
        finally:
            conn.close()
        return customer

    # ---------- Styles ----------
    def _row_to_style(self, r: tuple) -> StyleRecord:
        return StyleRecord(**dict(zip(STYLE_COLUMNS, r)))

    def list_styles(self, customer_id: str) -> list[StyleRecord]:
        conn = self._conn()
        try:
            with _store_errors():
                rows = conn.execute(
                    f"""
                    SELECT {', '.join(STYLE_COLUMNS)}
                    FROM styles
                    WHERE customer_id = ?
                    ORDER BY style_code, id
                    """,
                    (customer_id,),
                ).fetchall()
        finally:
            conn.close()
        return [self._row_to_style(r) for r in rows]

    def get_style(self, style_id: str) -> Optional[StyleRecord]:
        conn = self._conn()
        try:
            with _store_errors():
                r = conn.execute(
                    f"SELECT {', '.join(STYLE_COLUMNS)} FROM styles WHERE id = ?",
                    (style_id,),
                ).fetchone()
        finally:
            conn.close()
        if not r:
            return None
        return self._row_to_style(r)

    def create_style(self, data: Mapping[str, Any]) -> StyleRecord:
        customer_id = data.get("customer_id")
        if not customer_id:
            raise TerminalStoreError("customer_id is required.", 400)

        values = _column_values(data)
        style_id = _new_id()
        columns = ["id", "customer_id", *values.keys(), "updated_at"]
        params = [style_id, customer_id, *values.values(), _now()]

        conn = self._conn()
        try:
            with _store_errors():
                conn.execute(
                    f"INSERT INTO styles ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                    params,
                )
                conn.commit()
        finally:
            conn.close()

        created = self.get_style(style_id)
        if created is None:
            raise TransientStoreError("Created style could not be read back.")
        return created

    def update_style(self, style_id: str, changes: Mapping[str, Any]) -> StyleRecord:
        values = _column_values(changes)
        conn = self._conn()
        try:
            with _store_errors():
                cur = conn.cursor()
                if values:
                    assignments = ", ".join(f"{k}=?" for k in values)
                    cur.execute(
                        f"UPDATE styles SET {assignments}, updated_at=? WHERE id=?",
                        (*values.values(), _now(), style_id),
                    )
                else:
                    cur.execute("UPDATE styles SET updated_at=? WHERE id=?", (_now(), style_id))
                changed = cur.rowcount > 0
                conn.commit()
        finally:
            conn.close()

        if not changed:
            raise NotFoundError(f"Style not found: {style_id}")
        updated = self.get_style(style_id)
        if updated is None:
            raise NotFoundError(f"Style not found: {style_id}")
        return updated

    def delete_style(self, style_id: str) -> None:
        conn = self._conn()
        try:
            with _store_errors():
                cur = conn.cursor()
                cur.execute("DELETE FROM styles WHERE id=?", (style_id,))
                removed = cur.rowcount > 0
                conn.commit()
        finally:
            conn.close()
        if not removed:
            raise NotFoundError(f"Style not found: {style_id}")

    def integrity_check(self) -> str:
        conn = self._conn()
        try:
            return str(conn.execute("PRAGMA integrity_check").fetchone()[0])
        finally:
            conn.close()
