"""Persistence of the open tab session (tabs, active tab, title counter)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .settings import Settings
from .storage import KeyValueStore

if TYPE_CHECKING:  # pragma: no cover
    from ..editor.workspace import TabRegistry

__all__ = ["TabSessionStore", "TABS_KEY", "ACTIVE_KEY", "NEXT_INDEX_KEY"]

LOGGER = logging.getLogger(__name__)
TABS_KEY = "tabs"
ACTIVE_KEY = "tabs_active_key"
NEXT_INDEX_KEY = "tabs_next_key"


class TabSessionStore:
    """Saves and restores a :class:`TabRegistry` through the key-value store."""

    def __init__(self, store: KeyValueStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def save(self, registry: "TabRegistry", *, force: bool = False) -> bool:
        """Persist the registry when local saving is enabled (or ``force``)."""

        if not (force or self._settings.edit_data_save_local):
            LOGGER.debug("Skipping tab session save; local saving is disabled")
            return False
        state = registry.serialize_state()
        await self._store.set_item(TABS_KEY, state["tabs"])
        await self._store.set_item(ACTIVE_KEY, state["active_key"])
        await self._store.set_item(NEXT_INDEX_KEY, state["next_index"])
        LOGGER.debug("Saved tab session with %d tab(s)", len(state["tabs"]))
        return True

    async def restore(self, registry: "TabRegistry") -> bool:
        """Load a saved session into ``registry``; ``False`` when none exists."""

        tabs = await self._store.get_item(TABS_KEY)
        if not isinstance(tabs, list):
            if tabs is not None:
                LOGGER.warning("Ignoring tab session of type %s", type(tabs).__name__)
            return False
        active_key = await self._store.get_item(ACTIVE_KEY)
        next_index = await self._store.get_item(NEXT_INDEX_KEY)
        restored = registry.restore_state(
            {"tabs": tabs, "active_key": active_key, "next_index": next_index}
        )
        LOGGER.info("Restored %d of %d saved tab(s)", restored, len(tabs))
        return True

    async def clear(self) -> None:
        for key in (TABS_KEY, ACTIVE_KEY, NEXT_INDEX_KEY):
            await self._store.remove_item(key)
