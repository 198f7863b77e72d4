from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from margintrack.config import BusinessConfig
from margintrack.repositories.async_store import AsyncStyleStore
from margintrack.repositories.contracts import PushChannel
from margintrack.repositories.pocketbase_repo import PocketBaseRepository
from margintrack.repositories.realtime import LocalPushChannel, PocketBaseRealtime
from margintrack.repositories.sqlite_repo import SqliteRepository
from margintrack.services.import_service import ImportService
from margintrack.services.retry import RetryExecutor
from margintrack.services.style_service import Notifier, StyleService

log = logging.getLogger(__name__)

Repository = Union[SqliteRepository, PocketBaseRepository]


@dataclass(frozen=True)
class AppContainer:
    config: BusinessConfig
    repo: Repository
    store: AsyncStyleStore
    channel: PushChannel
    executor: RetryExecutor
    importer: ImportService

    def styles_for(self, customer_id: str, notify: Optional[Notifier] = None) -> StyleService:
        return StyleService(
            customer_id,
            self.store,
            self.config,
            executor=self.executor,
            channel=self.channel,
            notify=notify,
        )


def build_container(
    db_path: Path | str | None = None,
    config: BusinessConfig | None = None,
    pocketbase_url: str | None = None,
    email: str | None = None,
    password: str | None = None,
) -> AppContainer:
    """Local SQLite store by default; a PocketBase server when `pocketbase_url` is given."""
    config = config or BusinessConfig()

    if pocketbase_url:
        pb = PocketBaseRepository(pocketbase_url)
        if email and password:
            pb.authenticate(email, password)
        repo: Repository = pb
        store = AsyncStyleStore(pb)
        channel: PushChannel = PocketBaseRealtime(pb)
        log.info("container_built backend=pocketbase url=%s", pocketbase_url)
    else:
        if db_path is None:
            raise ValueError("db_path is required without a PocketBase URL.")
        sqlite = SqliteRepository(db_path)
        sqlite.init_db()
        local = LocalPushChannel()
        repo = sqlite
        store = AsyncStyleStore(sqlite, local)
        channel = local
        log.info("container_built backend=sqlite db=%s", db_path)

    executor = RetryExecutor.from_config(config)
    return AppContainer(
        config=config,
        repo=repo,
        store=store,
        channel=channel,
        executor=executor,
        importer=ImportService(store, config, executor),
    )
