"""Tests for the content synchronizer and debounced history emission."""

from __future__ import annotations

import asyncio

import pytest

from jsontabs.editor.document_model import EditorMode, ParseError
from jsontabs.editor.synchronizer import ContentSynchronizer
from jsontabs.editor.workspace import TabRegistry
from jsontabs.errors import StorageError
from jsontabs.services.settings import Settings
from tests.helpers import RecordingLedger

DEBOUNCE = 0.02


def _make(
    registry: TabRegistry,
    *,
    autosave: bool = True,
    ledger: RecordingLedger | None = None,
) -> tuple[ContentSynchronizer, RecordingLedger]:
    sink = ledger or RecordingLedger()
    settings = Settings(edit_data_save_local=autosave)
    return ContentSynchronizer(registry, settings, sink, debounce_seconds=DEBOUNCE), sink


def test_text_edit_marks_structured_side_stale(registry: TabRegistry) -> None:
    sync, _ = _make(registry, autosave=False)
    key = registry.add_tab(content='{"a": 1}')
    assert sync.on_mode_switch(key, "structured") is None

    assert sync.on_edit(key, '{"a": 2}', "text") is True

    tab = registry.get_tab(key)
    assert tab.content == '{"a": 2}'
    assert tab.structured_stale is True
    assert tab.structured_content == {"json": {"a": 1}}
    assert tab.active_mode is EditorMode.TEXT
    assert tab.text_version == 1


def test_switch_to_structured_parses_text(registry: TabRegistry) -> None:
    sync, _ = _make(registry, autosave=False)
    key = registry.add_tab(content='{"items": [1, 2]}')

    assert sync.on_mode_switch(key, EditorMode.STRUCTURED) is None

    tab = registry.get_tab(key)
    assert tab.active_mode is EditorMode.STRUCTURED
    assert tab.structured_content == {"json": {"items": [1, 2]}}
    assert tab.structured_stale is False


def test_parse_failure_is_non_destructive(registry: TabRegistry) -> None:
    sync, _ = _make(registry, autosave=False)
    key = registry.add_tab()
    sync.on_edit(key, '{"broken": }', "text")

    error = sync.on_mode_switch(key, "structured")

    tab = registry.get_tab(key)
    assert isinstance(error, ParseError)
    assert error.line == 1
    assert tab.content == '{"broken": }'
    assert tab.active_mode is EditorMode.TEXT
    assert tab.structured_content is None


def test_structured_edit_then_switch_back_serializes(registry: TabRegistry) -> None:
    sync, _ = _make(registry, autosave=False)
    key = registry.add_tab(content="{}")
    sync.on_mode_switch(key, "structured")

    sync.on_edit(key, {"name": "demo", "tags": ["x"]}, "structured")
    tab = registry.get_tab(key)
    assert tab.text_stale is True
    assert tab.content == "{}"

    assert sync.on_mode_switch(key, "text") is None
    assert tab.content == '{\n  "name": "demo",\n  "tags": [\n    "x"\n  ]\n}'
    assert tab.text_stale is False
    assert tab.active_mode is EditorMode.TEXT


def test_switch_without_stale_side_skips_conversion(registry: TabRegistry) -> None:
    sync, _ = _make(registry, autosave=False)
    key = registry.add_tab(content='{"a": 1}')
    sync.on_mode_switch(key, "structured")
    tab = registry.get_tab(key)
    tab.content = "kept as-is"

    sync.on_mode_switch(key, "text")

    assert tab.content == "kept as-is"


def test_read_helpers_do_not_mutate(registry: TabRegistry) -> None:
    sync, _ = _make(registry, autosave=False)
    key = registry.add_tab(content="[]")
    sync.on_mode_switch(key, "structured")
    sync.on_edit(key, [1], "structured")
    tab = registry.get_tab(key)

    assert sync.text_of(tab) == "[\n  1\n]"
    assert sync.structured_of(tab) == ([1], None)
    assert tab.content == "[]"
    assert tab.text_stale is True


def test_unknown_tab_events_are_ignored(registry: TabRegistry) -> None:
    sync, _ = _make(registry, autosave=False)

    assert sync.on_edit("missing", "{}", "text") is False
    assert sync.on_mode_switch("missing", "structured") is None


@pytest.mark.asyncio
async def test_debounce_collapses_bursts_into_one_snapshot(registry: TabRegistry) -> None:
    sync, ledger = _make(registry)
    key = registry.add_tab()

    for index in range(5):
        sync.on_edit(key, f'{{"n": {index}}}', "text")
    await asyncio.sleep(DEBOUNCE * 5)

    assert len(ledger.snapshots) == 1
    assert ledger.snapshots[0].content == '{"n": 4}'
    assert sync.pending_keys() == ()


@pytest.mark.asyncio
async def test_snapshots_are_per_tab(registry: TabRegistry) -> None:
    sync, ledger = _make(registry)
    first = registry.add_tab()
    second = registry.add_tab()

    sync.on_edit(first, "1", "text")
    sync.on_edit(second, "2", "text")
    await asyncio.sleep(DEBOUNCE * 5)

    assert sorted(tab.key for tab in ledger.snapshots) == sorted([first, second])


@pytest.mark.asyncio
async def test_snapshot_is_a_copy_taken_at_edit_time(registry: TabRegistry) -> None:
    sync, ledger = _make(registry)
    key = registry.add_tab()
    sync.on_edit(key, "[1]", "text")
    registry.get_tab(key).content = "mutated later"

    await sync.flush()

    assert ledger.snapshots[0].content == "[1]"
    assert ledger.snapshots[0] is not registry.get_tab(key)


@pytest.mark.asyncio
async def test_autosave_disabled_emits_nothing(registry: TabRegistry) -> None:
    sync, ledger = _make(registry, autosave=False)
    key = registry.add_tab()

    sync.on_edit(key, "{}", "text")
    await asyncio.sleep(DEBOUNCE * 3)

    assert ledger.snapshots == []
    assert sync.pending_keys() == ()


@pytest.mark.asyncio
async def test_background_storage_failure_is_dropped(registry: TabRegistry) -> None:
    failing = RecordingLedger(error=StorageError("disk full"))
    sync, _ = _make(registry, ledger=failing)
    key = registry.add_tab()

    sync.on_edit(key, "{}", "text")
    await asyncio.sleep(DEBOUNCE * 5)

    assert sync.pending_keys() == ()
    assert registry.get_tab(key).content == "{}"


@pytest.mark.asyncio
async def test_explicit_flush_propagates_storage_failure(registry: TabRegistry) -> None:
    failing = RecordingLedger(error=StorageError("disk full"))
    sync, _ = _make(registry, ledger=failing)
    key = registry.add_tab()
    sync.on_edit(key, "{}", "text")

    with pytest.raises(StorageError):
        await sync.flush(key)


@pytest.mark.asyncio
async def test_discard_and_aclose_cancel_pending(registry: TabRegistry) -> None:
    sync, ledger = _make(registry)
    first = registry.add_tab()
    second = registry.add_tab()
    sync.on_edit(first, "1", "text")
    sync.on_edit(second, "2", "text")

    assert sync.discard(first) is True
    assert sync.discard(first) is False
    await sync.aclose()
    await asyncio.sleep(DEBOUNCE * 3)
    sync.on_edit(second, "3", "text")

    assert ledger.snapshots == []
    assert sync.pending_keys() == ()


@pytest.mark.asyncio
async def test_debounce_window_follows_settings(registry: TabRegistry) -> None:
    settings = Settings(history_debounce_seconds=0.75)
    sync = ContentSynchronizer(registry, settings, RecordingLedger())

    assert sync.debounce_seconds == pytest.approx(0.75)
    settings.history_debounce_seconds = 0.1
    assert sync.debounce_seconds == pytest.approx(0.1)


def test_editor_package_exports_synchronizer() -> None:
    import jsontabs.editor as editor

    assert "synchronizer" in editor.__all__
    assert editor.synchronizer.ContentSynchronizer is ContentSynchronizer
