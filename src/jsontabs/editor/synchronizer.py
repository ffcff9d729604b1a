"""Keeps text and structured tab content consistent and feeds the history."""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from ..errors import StorageError
from .document_model import (
    EditorMode,
    ParseError,
    Tab,
    structured_from_text,
    text_from_structured,
    unwrap_structured,
    wrap_structured,
)
from .workspace import TabRegistry

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

__all__ = ["ContentSynchronizer", "SnapshotSink"]

LOGGER = logging.getLogger(__name__)


class SnapshotSink(Protocol):
    """Anything able to persist a tab snapshot (normally the history ledger)."""

    async def add_history(self, tab: Tab) -> Any:  # pragma: no cover - protocol
        ...


@dataclass(slots=True)
class _PendingSnapshot:
    tab: Tab
    task: asyncio.Task[None] | None = None


class ContentSynchronizer:
    """Applies editor events to tabs and debounces history snapshots.

    Edits only touch the representation they came from; the other side is
    flagged stale and converted lazily on the next mode switch. Snapshot
    timers never modify tabs: each pending snapshot is a private copy taken
    at edit time.
    """

    def __init__(
        self,
        registry: TabRegistry,
        settings: "Settings",
        ledger: SnapshotSink | None = None,
        *,
        debounce_seconds: float | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._ledger = ledger
        self._debounce_override = debounce_seconds
        self._pending: dict[str, _PendingSnapshot] = {}
        self._closed = False

    @property
    def debounce_seconds(self) -> float:
        if self._debounce_override is not None:
            return max(0.0, self._debounce_override)
        return max(0.0, float(self._settings.history_debounce_seconds))

    # ------------------------------------------------------------------
    # Editor events
    # ------------------------------------------------------------------
    def on_edit(self, tab_key: str, new_content: Any, source_mode: EditorMode | str) -> bool:
        """Apply an edit emitted by the editor showing ``source_mode``."""

        tab = self._registry.get_tab(tab_key)
        if tab is None:
            LOGGER.debug("Dropping edit for unknown tab %s", tab_key)
            return False
        mode = EditorMode.coerce(source_mode)
        if mode is EditorMode.TEXT:
            tab.content = "" if new_content is None else str(new_content)
            tab.text_version += 1
            tab.text_stale = False
            if tab.structured_content is not None:
                tab.structured_stale = True
        else:
            tab.structured_content = wrap_structured(copy.deepcopy(new_content))
            tab.structured_version += 1
            tab.structured_stale = False
            tab.text_stale = True
        tab.editor_settings.active_mode = mode
        if self._settings.edit_data_save_local and self._ledger is not None:
            self._schedule_snapshot(tab)
        return True

    def on_mode_switch(self, tab_key: str, target_mode: EditorMode | str) -> ParseError | None:
        """Switch the tab's active editor, converting stale content first.

        A failed text parse leaves the tab untouched and returns the
        :class:`ParseError`.
        """

        tab = self._registry.get_tab(tab_key)
        if tab is None:
            LOGGER.debug("Ignoring mode switch for unknown tab %s", tab_key)
            return None
        target = EditorMode.coerce(target_mode)
        if tab.active_mode is target:
            return None
        if target is EditorMode.STRUCTURED:
            if tab.is_stale(EditorMode.STRUCTURED):
                value, error = structured_from_text(tab.content)
                if error is not None:
                    LOGGER.info("Mode switch rejected for tab %s: %s", tab_key, error.describe())
                    return error
                tab.structured_content = wrap_structured(value)
                tab.structured_stale = False
        elif tab.text_stale:
            tab.content = text_from_structured(unwrap_structured(tab.structured_content))
            tab.text_stale = False
        tab.editor_settings.active_mode = target
        return None

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------
    def text_of(self, tab: Tab) -> str:
        """Return the current text of ``tab`` without mutating it."""

        if tab.text_stale:
            return text_from_structured(unwrap_structured(tab.structured_content))
        return tab.content

    def structured_of(self, tab: Tab) -> tuple[Any, ParseError | None]:
        """Return the current structured value of ``tab`` without mutating it."""

        if tab.is_stale(EditorMode.STRUCTURED):
            return structured_from_text(tab.content)
        return copy.deepcopy(unwrap_structured(tab.structured_content)), None

    # ------------------------------------------------------------------
    # Snapshot scheduling
    # ------------------------------------------------------------------
    def pending_keys(self) -> tuple[str, ...]:
        return tuple(self._pending)

    async def flush(self, tab_key: str | None = None) -> int:
        """Emit pending snapshots immediately; storage errors propagate."""

        keys = [tab_key] if tab_key is not None else list(self._pending)
        emitted = 0
        for key in keys:
            job = self._pending.pop(key, None)
            if job is None:
                continue
            self._cancel(job)
            await self._emit(job.tab)
            emitted += 1
        return emitted

    def discard(self, tab_key: str) -> bool:
        job = self._pending.pop(tab_key, None)
        if job is None:
            return False
        self._cancel(job)
        return True

    async def aclose(self) -> None:
        """Cancel every pending snapshot without emitting it."""

        self._closed = True
        jobs = list(self._pending.values())
        self._pending.clear()
        for job in jobs:
            self._cancel(job)
        for job in jobs:
            if job.task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await job.task

    def _schedule_snapshot(self, tab: Tab) -> None:
        if self._closed:
            return
        previous = self._pending.pop(tab.key, None)
        if previous is not None:
            self._cancel(previous)
        job = _PendingSnapshot(tab=tab.copy())
        loop = asyncio.get_running_loop()
        job.task = loop.create_task(self._emit_later(tab.key, job))
        self._pending[tab.key] = job

    async def _emit_later(self, tab_key: str, job: _PendingSnapshot) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if self._pending.get(tab_key) is not job:
            return
        self._pending.pop(tab_key, None)
        try:
            await self._emit(job.tab)
        except StorageError as exc:
            LOGGER.warning("Background history snapshot for tab %s failed: %s", tab_key, exc)

    async def _emit(self, tab: Tab) -> None:
        if self._ledger is None:
            return
        await self._ledger.add_history(tab)

    @staticmethod
    def _cancel(job: _PendingSnapshot) -> None:
        task = job.task
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
