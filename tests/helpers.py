"""Shared test stubs for storage failures and history sinks."""

from __future__ import annotations

from typing import Any

from jsontabs.editor.document_model import Tab
from jsontabs.errors import StorageError
from jsontabs.services.storage import KeyValueStore


class FlakyStore(KeyValueStore):
    """In-memory store whose writes can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False
        self.fail_removes = False

    async def set_item(self, key: str, value: Any) -> Any:
        if self.fail_writes:
            raise StorageError("Simulated write failure", operation="set_item", key=key)
        return await super().set_item(key, value)

    async def remove_item(self, key: str) -> None:
        if self.fail_removes:
            raise StorageError("Simulated remove failure", operation="remove_item", key=key)
        await super().remove_item(key)


class RecordingLedger:
    """Snapshot sink that records every tab it receives."""

    def __init__(self, *, error: Exception | None = None) -> None:
        self.snapshots: list[Tab] = []
        self.error = error

    async def add_history(self, tab: Tab) -> None:
        if self.error is not None:
            raise self.error
        self.snapshots.append(tab)
