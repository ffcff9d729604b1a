"""Application bootstrap helpers wiring every component together."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .editor.synchronizer import ContentSynchronizer
from .editor.workspace import TabRegistry
from .errors import StorageError
from .services.history import HISTORY_NAMESPACE, HistoryLedger
from .services.session import TabSessionStore
from .services.settings import Settings, SettingsStore
from .services.storage import DEFAULT_NAMESPACE, KeyValueStore
from .utils import logging as logging_utils

__all__ = ["Application", "configure_logging", "open_application", "resolve_data_dir"]

_LOGGER = logging.getLogger(__name__)
_DEFAULT_DATA_DIR = Path.home() / ".jsontabs"
_DB_FILENAME = "jsontabs.sqlite3"


def configure_logging(debug: bool = False, *, console: bool = False, force: bool = False) -> Path:
    """Send package log records to the rotating log file."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, console=console, force=force)
    _LOGGER.debug("Logging configured (level=%s, file=%s)", logging.getLevelName(level), log_path)
    return log_path


def resolve_data_dir(data_dir: Path | str | None = None) -> Path:
    env_override = os.environ.get("JSONTABS_DATA_DIR")
    return Path(data_dir or env_override or _DEFAULT_DATA_DIR).expanduser()


@dataclass(slots=True)
class Application:
    """The single process-wide set of components."""

    store: KeyValueStore
    history_store: KeyValueStore
    settings_store: SettingsStore
    registry: TabRegistry
    ledger: HistoryLedger
    synchronizer: ContentSynchronizer
    sessions: TabSessionStore

    @property
    def settings(self) -> Settings:
        return self.settings_store.settings

    async def shutdown(self) -> None:
        """Flush pending snapshots, save the tab session, and close storage."""

        try:
            await self.synchronizer.flush()
        except StorageError as exc:
            _LOGGER.warning("Failed to flush pending history snapshots: %s", exc)
        await self.synchronizer.aclose()
        try:
            await self.sessions.save(self.registry)
        except StorageError as exc:
            _LOGGER.warning("Failed to save tab session: %s", exc)
        self.history_store.close()
        self.store.close()


async def open_application(
    data_dir: Path | str | None = None,
    *,
    db_path: Path | str | None = None,
    restore_session: bool = True,
) -> Application:
    """Open storage, load settings and history, and restore the tab session.

    History is fully loaded before this returns, so callers may issue ledger
    operations immediately.
    """

    if db_path is None:
        db_path = resolve_data_dir(data_dir) / _DB_FILENAME
    store = KeyValueStore(db_path, namespace=DEFAULT_NAMESPACE)
    history_store = store.create_instance(HISTORY_NAMESPACE)

    settings_store = SettingsStore(store)
    settings = await settings_store.load()

    registry = TabRegistry()
    ledger = HistoryLedger(history_store, settings, registry)
    await ledger.load_histories()
    synchronizer = ContentSynchronizer(registry, settings, ledger)
    sessions = TabSessionStore(store, settings)

    if restore_session:
        await sessions.restore(registry)
    if registry.tab_count() == 0:
        registry.add_tab()

    _LOGGER.info(
        "Opened %s with %d tab(s) and %d history item(s)",
        store.path,
        registry.tab_count(),
        ledger.count(),
    )
    return Application(
        store=store,
        history_store=history_store,
        settings_store=settings_store,
        registry=registry,
        ledger=ledger,
        synchronizer=synchronizer,
        sessions=sessions,
    )
