"""SQLite-backed asynchronous key-value store used for all persistence."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any, AsyncIterator, Callable, TypeVar

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import CorruptRecordError, StorageError

__all__ = ["KeyValueStore", "DEFAULT_NAMESPACE", "MEMORY_PATH"]

LOGGER = logging.getLogger(__name__)
DEFAULT_NAMESPACE = "store"
MEMORY_PATH = ":memory:"
_NAMESPACE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TRANSIENT_MARKERS = ("locked", "busy")

T = TypeVar("T")


def _is_transient(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyValueStore:
    """Durable key-value namespace stored in one SQLite table.

    Values are JSON-encoded on write and decoded on read, so anything passed to
    :meth:`set_item` must be a plain JSON-compatible structure. Blocking SQLite
    calls run in worker threads; writes to the same key are serialized with a
    per-key :class:`asyncio.Lock`.

    Several namespaces can share one database connection through
    :meth:`create_instance`, mirroring separate store instances in a single
    database file.
    """

    def __init__(
        self,
        db_path: Path | str = MEMORY_PATH,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        max_attempts: int = 3,
        retry_min_seconds: float = 0.05,
        retry_max_seconds: float = 1.0,
        _connection: sqlite3.Connection | None = None,
        _lock: RLock | None = None,
    ) -> None:
        if not _NAMESPACE_PATTERN.match(namespace):
            raise ValueError(f"Invalid namespace: {namespace!r}")
        self._namespace = namespace
        self._max_attempts = max(1, int(max_attempts))
        self._retry_min_seconds = retry_min_seconds
        self._retry_max_seconds = retry_max_seconds
        self._key_locks: dict[str, _KeyLock] = {}
        self._closed = False
        if _connection is not None:
            self._path = str(db_path)
            self._conn = _connection
            self._lock = _lock or RLock()
            self._owns_connection = False
        else:
            self._path = str(db_path)
            if self._path != MEMORY_PATH:
                Path(self._path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            try:
                self._conn = sqlite3.connect(self._path, check_same_thread=False, timeout=5.0)
                if self._path != MEMORY_PATH:
                    self._conn.execute("PRAGMA journal_mode=WAL")
                    self._conn.execute("PRAGMA synchronous=NORMAL")
            except sqlite3.Error as exc:
                raise StorageError(f"Unable to open store at {self._path}: {exc}", operation="open") from exc
            self._lock = RLock()
            self._owns_connection = True
        self._create_schema()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def path(self) -> str:
        return self._path

    def create_instance(self, namespace: str) -> "KeyValueStore":
        """Return a store for ``namespace`` sharing this store's connection."""

        return KeyValueStore(
            self._path,
            namespace=namespace,
            max_attempts=self._max_attempts,
            retry_min_seconds=self._retry_min_seconds,
            retry_max_seconds=self._retry_max_seconds,
            _connection=self._conn,
            _lock=self._lock,
        )

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------
    async def set_item(self, key: str, value: T) -> T:
        """Persist ``value`` under ``key`` and return it."""

        payload = self._encode(key, value)
        async with self._locked(key):
            await self._run("set_item", key, self._write, key, payload)
        return value

    async def get_item(self, key: str) -> Any | None:
        """Return the value stored for ``key`` or ``None`` when absent."""

        raw = await self._run("get_item", key, self._read, key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptRecordError(
                f"Stored value for {key!r} in {self._namespace} is not valid JSON: {exc}",
                operation="get_item",
                key=key,
            ) from exc

    async def remove_item(self, key: str) -> None:
        async with self._locked(key):
            await self._run("remove_item", key, self._delete, key)

    async def clear(self) -> None:
        await self._run("clear", None, self._delete_all)

    async def keys(self) -> list[str]:
        """Return every stored key in insertion order."""

        return await self._run("keys", None, self._list_keys)

    async def length(self) -> int:
        return await self._run("length", None, self._count)

    def close(self) -> None:
        """Close the underlying connection if this store owns it."""

        if self._closed:
            return
        self._closed = True
        if not self._owns_connection:
            return
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error:  # pragma: no cover - close failures are not actionable
                LOGGER.debug("Failed to close key-value store %s", self._path, exc_info=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _create_schema(self) -> None:
        try:
            with self._lock:
                with self._conn:
                    self._conn.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS "{self._namespace}" (
                            key TEXT PRIMARY KEY,
                            value TEXT NOT NULL
                        )
                        """
                    )
        except sqlite3.Error as exc:
            raise StorageError(
                f"Unable to prepare namespace {self._namespace}: {exc}", operation="open"
            ) from exc

    @contextlib.asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        """Serialize writers of ``key``; the entry is dropped once no writer holds or awaits it."""

        entry = self._key_locks.get(key)
        if entry is None:
            entry = _KeyLock()
            self._key_locks[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._key_locks.get(key) is entry:
                del self._key_locks[key]

    def _encode(self, key: str, value: Any) -> str:
        try:
            return json.dumps(value, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(
                f"Value for {key!r} is not JSON serializable: {exc}", operation="set_item", key=key
            ) from exc

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_min_seconds, max=self._retry_max_seconds),
            retry=retry_if_exception(_is_transient),
        )

    async def _run(self, operation: str, key: str | None, func: Callable[..., T], *args: Any) -> T:
        try:
            async for attempt in self._retrying():
                with attempt:
                    result = await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            LOGGER.error("Key-value %s failed in %s (key=%s): %s", operation, self._namespace, key, exc)
            target = f" for {key!r}" if key is not None else ""
            raise StorageError(f"{operation} failed{target}: {exc}", operation=operation, key=key) from exc
        return result

    def _write(self, key: str, payload: str) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    f"""
                    INSERT INTO "{self._namespace}" (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value=excluded.value
                    """,
                    (key, payload),
                )

    def _read(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                f'SELECT value FROM "{self._namespace}" WHERE key = ?', (key,)
            ).fetchone()
        return None if row is None else row[0]

    def _delete(self, key: str) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(f'DELETE FROM "{self._namespace}" WHERE key = ?', (key,))

    def _delete_all(self) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(f'DELETE FROM "{self._namespace}"')

    def _list_keys(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute(f'SELECT key FROM "{self._namespace}" ORDER BY rowid').fetchall()
        return [row[0] for row in rows]

    def _count(self) -> int:
        with self._lock:
            row = self._conn.execute(f'SELECT COUNT(*) FROM "{self._namespace}"').fetchone()
        return int(row[0]) if row else 0
