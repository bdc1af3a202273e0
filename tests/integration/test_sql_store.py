"""Integration tests for SqlRecordStore against a real PostgreSQL database.

Covers first insert, version fencing between two writers, all-or-nothing
multi-collection saves and a full CoordService flow on top of the store.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text, update
from sqlalchemy.ext.asyncio import create_async_engine

from src.constants import DB_SCHEMA
from src.coord.service import CoordService
from src.infra.errors import ConflictError, StoreCorruptionError
from src.roles.directory import RoleDirectory
from src.store.base import Collection, PendingWrite
from src.store.database import ensure_schema, make_session_factory
from src.store.models import CollectionRecord
from src.store.sql import SqlRecordStore
from src.tasks.models import TaskSpec, TaskStatus, Verdict

pytestmark = pytest.mark.integration


@pytest.fixture
def sql_store(db_session_factory) -> SqlRecordStore:
    return SqlRecordStore(db_session_factory)


class TestVersionFencing:
    async def test_first_write_then_update(self, sql_store: SqlRecordStore) -> None:
        assert (await sql_store.load(Collection.tasks)).version == 0

        await sql_store.save([PendingWrite(Collection.tasks, {"A": {"n": 1}}, expected_version=0)])
        await sql_store.save([PendingWrite(Collection.tasks, {"A": {"n": 2}}, expected_version=1)])

        snapshot = await sql_store.load(Collection.tasks)
        assert snapshot.version == 2
        assert snapshot.records == {"A": {"n": 2}}

    async def test_competing_first_inserts(self, sql_store: SqlRecordStore) -> None:
        await sql_store.save([PendingWrite(Collection.plans, {"P1": {}}, expected_version=0)])

        with pytest.raises(ConflictError):
            await sql_store.save([PendingWrite(Collection.plans, {"P2": {}}, expected_version=0)])

    async def test_stale_update_rolls_back_everything(self, sql_store: SqlRecordStore) -> None:
        await sql_store.save([PendingWrite(Collection.tasks, {"A": {}}, expected_version=0)])

        with pytest.raises(ConflictError):
            await sql_store.save(
                [
                    PendingWrite(Collection.missions, {"M": {}}, expected_version=0),
                    PendingWrite(Collection.tasks, {"B": {}}, expected_version=0),
                ]
            )

        assert (await sql_store.load(Collection.missions)).version == 0
        assert (await sql_store.load(Collection.tasks)).records == {"A": {}}

    async def test_non_object_payload_is_corruption(
        self, sql_store: SqlRecordStore, db_session_factory
    ) -> None:
        await sql_store.save([PendingWrite(Collection.tasks, {}, expected_version=0)])
        async with db_session_factory() as db_session, db_session.begin():
            await db_session.execute(
                update(CollectionRecord)
                .where(CollectionRecord.name == "tasks")
                .values(payload=[1, 2])
            )

        with pytest.raises(StoreCorruptionError):
            await sql_store.load(Collection.tasks)


async def test_service_flow_over_postgres(sql_store: SqlRecordStore) -> None:
    service = CoordService(
        store=sql_store, roles=RoleDirectory({"ada": "implementer", "rex": "reviewer"})
    )
    await service.add_task(TaskSpec(id="A", title="a"))
    await service.add_task(TaskSpec(id="B", title="b", depends_on=["A"]))
    await service.submit_work("A", summary="done", submitted_by="ada")
    await service.review("A", verdict=Verdict.approved, feedback="ok", reviewed_by="rex")

    assert (await service.get_task("B")).status == TaskStatus.available


async def test_ensure_schema_is_idempotent(pg_url: str) -> None:
    engine = create_async_engine(pg_url)
    try:
        await ensure_schema(engine)
        await ensure_schema(engine)
        store = SqlRecordStore(make_session_factory(engine))
        assert (await store.load(Collection.loop_states)).version == 0
    finally:
        async with engine.begin() as conn:
            await conn.execute(text(f"DROP SCHEMA IF EXISTS {DB_SCHEMA} CASCADE"))
        await engine.dispose()
