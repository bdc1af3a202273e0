"""Record store abstraction: four versioned collections, atomic multi-collection saves."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol


class Collection(StrEnum):
    tasks = "tasks"
    missions = "missions"
    plans = "plans"
    loop_states = "loop_states"


@dataclass(frozen=True)
class Snapshot:
    """Records of one collection plus the version they were read at.

    version 0 means the collection has never been written.
    """

    collection: Collection
    records: dict[str, dict[str, Any]] = field(default_factory=dict)
    version: int = 0


@dataclass(frozen=True)
class PendingWrite:
    collection: Collection
    records: dict[str, dict[str, Any]]
    expected_version: int


class RecordStore(Protocol):
    async def load(self, collection: Collection) -> Snapshot:
        """Return the current snapshot. Raises StoreCorruptionError on unparseable data."""
        ...

    async def save(self, writes: Sequence[PendingWrite]) -> dict[Collection, int]:
        """Write all collections or none.

        Raises ConflictError if any collection's version moved since it was read.
        Returns the new version per collection.
        """
        ...

    async def close(self) -> None: ...
