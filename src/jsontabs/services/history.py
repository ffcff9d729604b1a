"""Persisted history of tab snapshots with search and statistics."""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from ..editor.document_model import EditorMode, Tab, text_from_structured, unwrap_structured
from ..errors import CorruptRecordError, RecordValidationError, StorageError
from .schemas import HISTORY_ITEM_SCHEMA, HISTORY_SCHEMA_VERSION, validate_record
from .settings import Settings
from .storage import KeyValueStore

if TYPE_CHECKING:  # pragma: no cover
    from ..editor.workspace import TabRegistry

__all__ = ["HistoryItem", "HistoryStats", "HistoryLedger", "calculate_stats", "HISTORY_NAMESPACE"]

LOGGER = logging.getLogger(__name__)
HISTORY_NAMESPACE = "histories"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso_from_ms(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class HistoryItem:
    """Immutable snapshot of a tab at a point in time.

    ``editor_settings`` is a read-only mapping and the structured content is
    held as JSON text, so callers reading :attr:`structured_content` always
    receive a fresh copy.
    """

    key: str
    tab_key: str
    title: str
    content: str
    editor_settings: Mapping[str, Any]
    timestamp: int
    type: str
    created_at: str
    structured_json: str | None = None
    text_version: int = 0
    structured_version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "editor_settings", MappingProxyType(dict(self.editor_settings)))

    @property
    def structured_content(self) -> dict[str, Any] | None:
        if self.structured_json is None:
            return None
        return json.loads(self.structured_json)

    @classmethod
    def from_tab(cls, tab: Tab, *, timestamp: int | None = None) -> "HistoryItem":
        """Build a snapshot from the tab's current authoritative content."""

        stamp = _now_ms() if timestamp is None else int(timestamp)
        content = tab.content
        if tab.active_mode is EditorMode.STRUCTURED and tab.text_stale:
            content = text_from_structured(unwrap_structured(tab.structured_content))
        structured = None
        if tab.structured_content is not None and not tab.structured_stale:
            structured = _encode_structured(tab.structured_content, tab_key=tab.key)
        return cls(
            key=f"history_{stamp}_{tab.key}_{uuid.uuid4().hex[:6]}",
            tab_key=tab.key,
            title=tab.title,
            content=content,
            editor_settings=tab.editor_settings.to_dict(),
            timestamp=stamp,
            type=tab.active_mode.value,
            created_at=_iso_from_ms(stamp),
            structured_json=structured,
            text_version=tab.text_version,
            structured_version=tab.structured_version,
        )

    @classmethod
    def from_record(cls, payload: Any) -> "HistoryItem":
        data = validate_record(payload, HISTORY_ITEM_SCHEMA, record_type="history item")
        version = data.get("schema_version", HISTORY_SCHEMA_VERSION)
        if version > HISTORY_SCHEMA_VERSION:
            raise RecordValidationError(
                "history item", [f"unsupported schema_version {version}"]
            )
        structured = data.get("structured_content")
        return cls(
            key=data["key"],
            tab_key=data["tab_key"],
            title=data["title"],
            content=data["content"],
            editor_settings=data["editor_settings"],
            timestamp=data["timestamp"],
            type=data["type"],
            created_at=data["created_at"],
            structured_json=None if structured is None else json.dumps(structured, ensure_ascii=False),
            text_version=data.get("text_version", 0),
            structured_version=data.get("structured_version", 0),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "schema_version": HISTORY_SCHEMA_VERSION,
            "key": self.key,
            "tab_key": self.tab_key,
            "title": self.title,
            "content": self.content,
            "structured_content": self.structured_content,
            "editor_settings": dict(self.editor_settings),
            "timestamp": self.timestamp,
            "type": self.type,
            "created_at": self.created_at,
            "text_version": self.text_version,
            "structured_version": self.structured_version,
        }


def _encode_structured(content: Mapping[str, Any], *, tab_key: str) -> str:
    try:
        return json.dumps(content, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise StorageError(
            f"Structured content of tab {tab_key} is not JSON serializable: {exc}",
            operation="add_history",
            key=tab_key,
        ) from exc


@dataclass(frozen=True, slots=True)
class HistoryStats:
    """Aggregate counts over a list of history items."""

    total: int = 0
    text_count: int = 0
    structured_count: int = 0
    oldest_timestamp: int | None = None
    newest_timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase mapping consumed by the history page."""

        return {
            "total": self.total,
            "monacoCount": self.text_count,
            "vanillaCount": self.structured_count,
            "oldestTimestamp": self.oldest_timestamp,
            "newestTimestamp": self.newest_timestamp,
        }


def calculate_stats(histories: Iterable[HistoryItem]) -> HistoryStats:
    items = list(histories)
    timestamps = sorted(item.timestamp for item in items)
    return HistoryStats(
        total=len(items),
        text_count=sum(1 for item in items if item.type == EditorMode.TEXT.value),
        structured_count=sum(1 for item in items if item.type == EditorMode.STRUCTURED.value),
        oldest_timestamp=timestamps[0] if timestamps else None,
        newest_timestamp=timestamps[-1] if timestamps else None,
    )


class HistoryLedger:
    """In-memory, most-recent-first view of persisted history items.

    :meth:`load_histories` must be awaited before other operations observe a
    consistent list. The item list is only mutated by this class.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: Settings,
        registry: "TabRegistry | None" = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._registry = registry
        self._items: list[HistoryItem] = []
        self._stats = HistoryStats()
        self._loading = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def histories(self) -> tuple[HistoryItem, ...]:
        return tuple(self._items)

    @property
    def stats(self) -> HistoryStats:
        return self._stats

    @property
    def is_loading(self) -> bool:
        return self._loading

    def count(self) -> int:
        return len(self._items)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    async def load_histories(self) -> tuple[HistoryItem, ...]:
        """Read every persisted item, skipping malformed records."""

        self._loading = True
        try:
            keys = await self._store.keys()
            items: list[HistoryItem] = []
            skipped = 0
            for key in reversed(keys):
                try:
                    payload = await self._store.get_item(key)
                    if payload is None:
                        continue
                    items.append(HistoryItem.from_record(payload))
                except (CorruptRecordError, RecordValidationError) as exc:
                    skipped += 1
                    LOGGER.warning("Skipping unreadable history record %s: %s", key, exc)
            items.sort(key=lambda item: item.timestamp, reverse=True)
            self._replace_items(items)
            LOGGER.info("Loaded %d history item(s) (%d skipped)", len(items), skipped)
        finally:
            self._loading = False
        return self.histories

    async def add_history(self, tab: Tab) -> HistoryItem:
        """Persist a snapshot of ``tab`` and insert it at the head."""

        item = HistoryItem.from_tab(tab)
        await self._store.set_item(item.key, item.to_record())
        self._replace_items([item, *self._items])
        LOGGER.debug("Added history %s for tab %s", item.key, item.tab_key)
        await self._enforce_limit()
        return item

    async def remove_history(self, key: str) -> None:
        """Remove one item; absent keys are a no-op."""

        await self._store.remove_item(key)
        if any(item.key == key for item in self._items):
            self._replace_items([item for item in self._items if item.key != key])
            LOGGER.debug("Removed history %s", key)

    async def clear_histories(self) -> None:
        await self._store.clear()
        self._replace_items([])
        LOGGER.info("Cleared all history items")

    async def _enforce_limit(self) -> None:
        limit = self._settings.history_limit
        if limit <= 0 or len(self._items) <= limit:
            return
        evicted: set[str] = set()
        for item in self._items[limit:]:
            try:
                await self._store.remove_item(item.key)
            except StorageError as exc:
                LOGGER.warning("Failed to evict history %s: %s", item.key, exc)
                continue
            evicted.add(item.key)
        if evicted:
            self._replace_items([item for item in self._items if item.key not in evicted])
            LOGGER.info("Evicted %d history item(s) over the limit of %d", len(evicted), limit)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_history(self, key: str) -> HistoryItem | None:
        for item in self._items:
            if item.key == key:
                return item
        return None

    def get_history_by_tab_key(self, tab_key: str) -> HistoryItem | None:
        """Return the newest item captured from ``tab_key``."""

        for item in self._items:
            if item.tab_key == tab_key:
                return item
        return None

    def search_histories(self, keyword: str) -> list[HistoryItem]:
        needle = (keyword or "").lower()
        if not needle:
            return list(self._items)
        return [
            item
            for item in self._items
            if needle in item.title.lower() or needle in item.content.lower()
        ]

    async def restore_history(self, key: str) -> str | None:
        """Open a new tab populated from the item and return its key."""

        if self._registry is None:
            raise RuntimeError("HistoryLedger was created without a tab registry")
        item = self.get_history(key)
        if item is None:
            LOGGER.debug("Cannot restore missing history %s", key)
            return None
        tab_key = self._registry.add_tab(
            item.title,
            content=item.content,
            structured_content=item.structured_content,
            editor_settings=item.editor_settings,
        )
        self._registry.set_active(tab_key)
        LOGGER.info("Restored history %s into tab %s", key, tab_key)
        return tab_key

    def _replace_items(self, items: Sequence[HistoryItem]) -> None:
        self._items = list(items)
        self._stats = calculate_stats(self._items)
