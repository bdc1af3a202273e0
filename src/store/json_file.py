"""JSON file record store for single-host use.

One file per collection holding ``{"version": int, "records": {...}}``.
Saves take an exclusive fcntl lock on ``<data_dir>/.lock`` for the whole
compare-and-write, and replace files atomically so unlocked readers never see
a partial write.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import os
import tempfile
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any

import structlog

from src.infra.errors import ConflictError, StoreCorruptionError
from src.store.base import Collection, PendingWrite, Snapshot

logger = structlog.get_logger()


class JsonFileRecordStore:
    def __init__(self, data_dir: Path) -> None:
        self._data_dir = Path(data_dir)

    @property
    def lock_file(self) -> Path:
        return self._data_dir / ".lock"

    def path_for(self, collection: Collection) -> Path:
        return self._data_dir / f"{collection.value}.json"

    async def load(self, collection: Collection) -> Snapshot:
        version, records = self._read(collection)
        return Snapshot(collection=collection, records=records, version=version)

    async def save(self, writes: Sequence[PendingWrite]) -> dict[Collection, int]:
        with self._locked():
            for write in writes:
                current, _ = self._read(write.collection)
                if current != write.expected_version:
                    logger.warning(
                        "store_conflict",
                        backend="json",
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
                self._write(write.collection, version, write.records)
                versions[write.collection] = version
        logger.debug("store_saved", backend="json", versions={k.value: v for k, v in versions.items()})
        return versions

    async def close(self) -> None:
        return None

    def _read(self, collection: Collection) -> tuple[int, dict[str, dict[str, Any]]]:
        path = self.path_for(collection)
        if not path.exists():
            return 0, {}
        try:
            payload = json.loads(path.read_text("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StoreCorruptionError(
                f"{path} is not valid JSON: {exc}", entity=collection.value, operation="load"
            ) from exc
        if (
            not isinstance(payload, dict)
            or not isinstance(payload.get("version"), int)
            or not isinstance(payload.get("records"), dict)
        ):
            raise StoreCorruptionError(
                f"{path} does not contain a versioned record map",
                entity=collection.value,
                operation="load",
            )
        return payload["version"], payload["records"]

    def _write(self, collection: Collection, version: int, records: dict[str, Any]) -> None:
        path = self.path_for(collection)
        body = json.dumps({"version": version, "records": records}, ensure_ascii=False, indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self._data_dir, prefix=f".{collection.value}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(body)
                handle.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self.lock_file.touch(exist_ok=True)
        with self.lock_file.open("r+", encoding="utf-8") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
