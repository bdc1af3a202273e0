from __future__ import annotations

import asyncio
import copy
from collections.abc import Sequence
from typing import Any

import structlog

from src.infra.errors import ConflictError
from src.store.base import Collection, PendingWrite, Snapshot

logger = structlog.get_logger()


class MemoryRecordStore:
    """Process-local store. Used by tests and the STORE_BACKEND=memory setting."""

    def __init__(self) -> None:
        self._data: dict[Collection, tuple[int, dict[str, dict[str, Any]]]] = {}
        self._lock = asyncio.Lock()

    async def load(self, collection: Collection) -> Snapshot:
        version, records = self._data.get(collection, (0, {}))
        return Snapshot(collection=collection, records=copy.deepcopy(records), version=version)

    async def save(self, writes: Sequence[PendingWrite]) -> dict[Collection, int]:
        async with self._lock:
            for write in writes:
                current, _ = self._data.get(write.collection, (0, {}))
                if current != write.expected_version:
                    logger.warning(
                        "store_conflict",
                        backend="memory",
                        collection=write.collection.value,
                        expected=write.expected_version,
                        actual=current,
                    )
                    raise ConflictError(
                        f"{write.collection} changed since read "
                        f"(expected v{write.expected_version}, found v{current})",
                        entity=write.collection.value,
                        operation="save",
                    )
            versions: dict[Collection, int] = {}
            for write in writes:
                version = write.expected_version + 1
                self._data[write.collection] = (version, copy.deepcopy(write.records))
                versions[write.collection] = version
            return versions

    async def close(self) -> None:
        return None
