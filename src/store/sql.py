"""PostgreSQL record store with per-collection version fencing."""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.infra.errors import ConflictError, StoreCorruptionError
from src.store.base import Collection, PendingWrite, Snapshot
from src.store.models import CollectionRecord

logger = structlog.get_logger()


class SqlRecordStore:
    """Stores each collection as one JSONB row guarded by an integer version.

    A save runs every write in one transaction. Version 0 means "absent", so the
    first write is an INSERT that must not collide; later writes are an
    UPDATE ... WHERE version = expected. No returned row means another writer
    got there first and the whole transaction rolls back.
    """

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._db = db_session_factory

    async def load(self, collection: Collection) -> Snapshot:
        async with self._db() as db_session:
            result = await db_session.execute(
                select(CollectionRecord.version, CollectionRecord.payload).where(
                    CollectionRecord.name == collection.value
                )
            )
            row = result.one_or_none()
        if row is None:
            return Snapshot(collection=collection)
        version, payload = row
        if not isinstance(payload, dict):
            raise StoreCorruptionError(
                f"Collection {collection} payload is {type(payload).__name__}, expected object",
                entity=collection.value,
                operation="load",
            )
        return Snapshot(collection=collection, records=payload, version=version)

    async def save(self, writes: Sequence[PendingWrite]) -> dict[Collection, int]:
        versions: dict[Collection, int] = {}
        async with self._db() as db_session, db_session.begin():
            for write in writes:
                new_version = write.expected_version + 1
                if write.expected_version == 0:
                    stmt = (
                        pg_insert(CollectionRecord)
                        .values(
                            name=write.collection.value,
                            version=new_version,
                            payload=write.records,
                        )
                        .on_conflict_do_nothing(index_elements=["name"])
                        .returning(CollectionRecord.version)
                    )
                else:
                    stmt = (
                        update(CollectionRecord)
                        .where(
                            CollectionRecord.name == write.collection.value,
                            CollectionRecord.version == write.expected_version,
                        )
                        .values(version=new_version, payload=write.records)
                        .returning(CollectionRecord.version)
                    )
                result = await db_session.execute(stmt)
                if result.scalar_one_or_none() is None:
                    logger.warning(
                        "store_conflict",
                        backend="postgres",
                        collection=write.collection.value,
                        expected=write.expected_version,
                    )
                    raise ConflictError(
                        f"{write.collection} changed since read "
                        f"(expected v{write.expected_version})",
                        entity=write.collection.value,
                        operation="save",
                    )
                versions[write.collection] = new_version
        return versions

    async def close(self) -> None:
        bind = self._db.kw.get("bind")
        if bind is not None:
            await bind.dispose()
