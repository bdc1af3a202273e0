from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.store.json_file import JsonFileRecordStore
from src.store.memory import MemoryRecordStore

if TYPE_CHECKING:
    from src.config.settings import Settings
    from src.store.base import RecordStore

logger = structlog.get_logger()


async def open_store(settings: Settings) -> RecordStore:
    """Build the record store selected by STORE_BACKEND."""
    backend = settings.store.backend
    if backend == "memory":
        store: RecordStore = MemoryRecordStore()
    elif backend == "json":
        store = JsonFileRecordStore(settings.store.data_dir)
    else:
        from src.store.database import create_db_engine, ensure_schema, make_session_factory
        from src.store.sql import SqlRecordStore

        engine = await create_db_engine(settings.database)
        await ensure_schema(engine)
        store = SqlRecordStore(make_session_factory(engine))
    logger.info("store_opened", backend=backend)
    return store
