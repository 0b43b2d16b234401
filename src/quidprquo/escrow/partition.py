"""Serialized, durable state per partition key.

Each partition owns one SQLite file. Every operation against a partition is
queued behind a single ``asyncio.Lock`` and executed in a worker thread inside
one ``BEGIN IMMEDIATE`` transaction, so operations on one partition run one at
a time in arrival order while different partitions proceed independently.

Dependencies: db, escrow.store_schema, escrow.types
Wired in: escrow/service.py → EscrowService, escrow/ledger.py, escrow/credentials.py
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import closing, contextmanager
from pathlib import Path
from typing import TypeVar

from quidprquo.db import open_db
from quidprquo.escrow.store_schema import init_schema
from quidprquo.escrow.types import EscrowStorageError

_log = logging.getLogger(__name__)

T = TypeVar("T")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class PartitionStorage:
    """SQLite storage with an all-or-nothing transaction contract.

    The file and its schema are created by the first transaction, so
    constructing storage never touches the disk.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._schema_ready = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a write transaction.

        Commits when the block exits normally. Any exception rolls the whole
        transaction back; SQLite failures are re-raised as ``EscrowStorageError``.
        """
        try:
            if not self._schema_ready:
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            with closing(open_db(self._db_path)) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    if not self._schema_ready:
                        init_schema(conn)
                    yield conn
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
                self._schema_ready = True
        except sqlite3.Error as exc:
            _log.error("Partition transaction failed on %s: %s", self._db_path, exc)
            raise EscrowStorageError(f"Partition transaction failed: {exc}") from exc


class Partition:
    """Single logical actor over one partition's storage."""

    def __init__(self, key: str, storage: PartitionStorage) -> None:
        self.key = key
        self._storage = storage
        self._lock = asyncio.Lock()

    async def run(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        """Run *operation* atomically, after every previously queued operation."""
        async with self._lock:
            return await asyncio.to_thread(self._run_in_transaction, operation)

    def _run_in_transaction(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        with self._storage.transaction() as conn:
            return operation(conn)


class PartitionRouter:
    """Hand out one ``Partition`` per key, backed by a file under *base_dir*."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir
        self._partitions: dict[str, Partition] = {}

    def get(self, key: str) -> Partition:
        if not key:
            raise ValueError("Partition key must be non-empty.")
        partition = self._partitions.get(key)
        if partition is None:
            storage = PartitionStorage(self._base_dir / partition_filename(key))
            partition = Partition(key, storage)
            self._partitions[key] = partition
            _log.debug("Registered partition %s at %s", key, storage.db_path)
        return partition

    def find(self, key: str) -> Partition | None:
        """Return the partition for *key* only if it already has state.

        Unknown keys are neither registered nor written to disk.
        """
        if not key:
            raise ValueError("Partition key must be non-empty.")
        if key in self._partitions or (self._base_dir / partition_filename(key)).exists():
            return self.get(key)
        return None


def partition_filename(key: str) -> str:
    """Return a filesystem-safe, collision-free file name for *key*."""
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
    readable = _UNSAFE_CHARS.sub("_", key)[:48]
    return f"{readable}-{digest}.sqlite"
