"""Tests covering the application bootstrap helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from jsontabs import app
from jsontabs.editor.document_model import EditorMode


@pytest.fixture
def restore_package_logging():
    logger = logging.getLogger("jsontabs")
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_resolve_data_dir_prefers_argument_then_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("JSONTABS_DATA_DIR", str(tmp_path / "env"))

    assert app.resolve_data_dir(tmp_path / "arg") == tmp_path / "arg"
    assert app.resolve_data_dir() == tmp_path / "env"

    monkeypatch.delenv("JSONTABS_DATA_DIR")
    assert app.resolve_data_dir() == Path.home() / ".jsontabs"


def test_configure_logging_leaves_root_logger_alone(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, restore_package_logging: logging.Logger
) -> None:
    monkeypatch.setenv("JSONTABS_LOG_DIR", str(tmp_path / "logs"))
    root = logging.getLogger()
    root_handlers = list(root.handlers)
    root_level = root.level

    log_path = app.configure_logging(debug=True, force=True)
    logging.getLogger("jsontabs.services.history").info("snapshot saved")
    for handler in restore_package_logging.handlers:
        handler.flush()

    assert log_path == tmp_path / "logs" / "jsontabs.log"
    assert restore_package_logging.level == logging.DEBUG
    assert root.handlers == root_handlers
    assert root.level == root_level
    assert "snapshot saved" in log_path.read_text(encoding="utf-8")


def test_configure_logging_is_idempotent_unless_forced(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, restore_package_logging: logging.Logger
) -> None:
    monkeypatch.setenv("JSONTABS_LOG_DIR", str(tmp_path / "first"))
    first = app.configure_logging(force=True)
    count = len(restore_package_logging.handlers)

    monkeypatch.setenv("JSONTABS_LOG_DIR", str(tmp_path / "second"))
    assert app.configure_logging() == first
    assert len(restore_package_logging.handlers) == count

    assert app.configure_logging(force=True) == tmp_path / "second" / "jsontabs.log"
    assert len(restore_package_logging.handlers) == count


@pytest.mark.asyncio
async def test_open_application_starts_with_one_tab(db_path: Path) -> None:
    application = await app.open_application(db_path=db_path)
    try:
        assert application.registry.tab_count() == 1
        assert application.registry.active_tab.title == "New Tab - 1"
        assert application.ledger.histories == ()
        assert application.settings.history_limit == 200
    finally:
        await application.shutdown()


@pytest.mark.asyncio
async def test_shutdown_flushes_history_and_session_survives_reopen(db_path: Path) -> None:
    application = await app.open_application(db_path=db_path)
    key = application.registry.active_key
    application.registry.rename_tab(key, "Config")
    application.synchronizer.on_edit(key, {"debug": True}, "structured")
    assert application.synchronizer.pending_keys() == (key,)

    await application.shutdown()

    reopened = await app.open_application(db_path=db_path)
    try:
        tab = reopened.registry.get_tab(key)
        assert reopened.registry.tab_keys() == (key,)
        assert tab.title == "Config"
        assert tab.active_mode is EditorMode.STRUCTURED
        assert reopened.ledger.count() == 1
        item = reopened.ledger.histories[0]
        assert item.tab_key == key
        assert item.content == '{\n  "debug": true\n}'
    finally:
        await reopened.shutdown()


@pytest.mark.asyncio
async def test_settings_persist_between_runs(db_path: Path) -> None:
    application = await app.open_application(db_path=db_path)
    await application.settings_store.update("dark_mode", True)
    await application.shutdown()

    reopened = await app.open_application(db_path=db_path)
    try:
        assert reopened.settings.dark_mode is True
        assert reopened.synchronizer.debounce_seconds == 2.0
    finally:
        await reopened.shutdown()


@pytest.mark.asyncio
async def test_session_not_saved_when_local_saving_disabled(db_path: Path) -> None:
    application = await app.open_application(db_path=db_path)
    await application.settings_store.update("edit_data_save_local", False)
    application.registry.add_tab("Scratch")
    await application.shutdown()

    reopened = await app.open_application(db_path=db_path)
    try:
        titles = [tab.title for tab in reopened.registry.iter_tabs()]
        assert titles == ["New Tab - 1"]
    finally:
        await reopened.shutdown()
