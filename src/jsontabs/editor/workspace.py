"""Tab registry managing the ordered set of open documents."""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Protocol

from ..errors import RecordValidationError
from .document_model import EditorMode, EditorSettings, Tab

__all__ = ["TabRegistry", "ActiveTabListener", "DEFAULT_TITLE_PREFIX"]

LOGGER = logging.getLogger(__name__)
DEFAULT_TITLE_PREFIX = "New Tab"
_VIEW_SETTINGS = frozenset({"expanded", "font_size", "language"})


class ActiveTabListener(Protocol):
    """Callback signature fired whenever the active tab changes."""

    def __call__(self, tab: Optional[Tab]) -> None:  # pragma: no cover - protocol
        ...


def _generate_tab_key(index: int) -> str:
    return f"tab-{index}-{uuid.uuid4().hex[:8]}"


class TabRegistry:
    """Owns tab creation, deletion, renaming, and active-tab selection."""

    def __init__(self) -> None:
        self._tabs: Dict[str, Tab] = {}
        self._order: List[str] = []
        self._active_key: str | None = None
        self._listeners: List[ActiveTabListener] = []
        self._counter = 1

    # ------------------------------------------------------------------
    # Tab lifecycle
    # ------------------------------------------------------------------
    def add_tab(
        self,
        title: str = "",
        *,
        content: str = "",
        structured_content: Mapping[str, Any] | None = None,
        editor_settings: EditorSettings | Mapping[str, Any] | None = None,
        make_active: bool = True,
    ) -> str:
        """Create a tab, append it to the registry, and return its key."""

        index = self._reserve_index()
        key = _generate_tab_key(index)
        while key in self._tabs:  # pragma: no cover - uuid collision
            key = _generate_tab_key(index)
        resolved_title = (title or "").strip() or f"{DEFAULT_TITLE_PREFIX} - {index}"
        if isinstance(editor_settings, EditorSettings):
            settings = copy.deepcopy(editor_settings)
        else:
            settings = EditorSettings.from_dict(editor_settings)
        structured = copy.deepcopy(dict(structured_content)) if structured_content is not None else None
        tab = Tab(
            key=key,
            title=resolved_title,
            content=content or "",
            structured_content=structured,
            editor_settings=settings,
        )
        if settings.active_mode is EditorMode.STRUCTURED and structured is None:
            settings.active_mode = EditorMode.TEXT
        self._tabs[key] = tab
        self._order.append(key)
        LOGGER.debug("Created tab %s (%s)", key, resolved_title)
        if make_active or self._active_key is None:
            self._activate(key)
        return key

    def delete_tab(self, key: str) -> Tab | None:
        """Remove ``key`` and pick the next active tab when needed.

        The replacement is the tab immediately preceding the removed one,
        otherwise the first remaining tab, otherwise nothing.
        """

        tab = self._tabs.pop(key, None)
        if tab is None:
            return None
        index = self._order.index(key)
        self._order.pop(index)
        LOGGER.debug("Deleted tab %s", key)
        if self._active_key == key:
            if not self._order:
                self._activate(None)
            elif index > 0:
                self._activate(self._order[index - 1])
            else:
                self._activate(self._order[0])
        return tab

    def rename_tab(self, key: str, new_title: str) -> bool:
        tab = self._tabs.get(key)
        if tab is None:
            return False
        cleaned = (new_title or "").strip()
        if not cleaned:
            return False
        tab.title = cleaned
        return True

    def set_active(self, key: str) -> bool:
        """Activate ``key``; unknown keys are ignored."""

        if key not in self._tabs:
            LOGGER.debug("Ignoring activation of unknown tab %s", key)
            return False
        self._activate(key)
        return True

    def set_diff_modified_value(self, key: str, value: str | None) -> bool:
        """Store the diff view's modified text; counts as a text change."""

        tab = self._tabs.get(key)
        if tab is None:
            return False
        tab.diff_modified_value = value
        tab.text_version += 1
        return True

    def update_editor_settings(self, key: str, **changes: Any) -> bool:
        """Merge view options into a tab's editor settings."""

        tab = self._tabs.get(key)
        if tab is None:
            return False
        unknown = set(changes) - _VIEW_SETTINGS
        if unknown:
            raise KeyError(f"Unsupported editor settings: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            setattr(tab.editor_settings, name, value)
        return True

    # ------------------------------------------------------------------
    # Bulk close helpers
    # ------------------------------------------------------------------
    def close_other_tabs(self, key: str) -> list[str]:
        if key not in self._tabs:
            return []
        return self._close_keys([k for k in self._order if k != key], keep=key)

    def close_left_tabs(self, key: str) -> list[str]:
        if key not in self._tabs:
            return []
        index = self._order.index(key)
        return self._close_keys(self._order[:index], keep=key)

    def close_right_tabs(self, key: str) -> list[str]:
        if key not in self._tabs:
            return []
        index = self._order.index(key)
        return self._close_keys(self._order[index + 1 :], keep=key)

    def close_all_tabs(self) -> list[str]:
        closed = list(self._order)
        self._tabs.clear()
        self._order.clear()
        self._activate(None)
        return closed

    def _close_keys(self, keys: Iterable[str], *, keep: str) -> list[str]:
        closed = list(keys)
        for key in closed:
            self._tabs.pop(key, None)
            self._order.remove(key)
        self._activate(keep)
        return closed

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def add_active_listener(self, listener: ActiveTabListener) -> None:
        self._listeners.append(listener)

    def remove_active_listener(self, listener: ActiveTabListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            LOGGER.debug("Listener %r was not registered", listener)

    def _activate(self, key: str | None) -> None:
        if self._active_key == key:
            return
        self._active_key = key
        tab = self.active_tab
        for listener in list(self._listeners):
            listener(tab)

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    @property
    def active_key(self) -> str | None:
        return self._active_key

    @property
    def active_tab(self) -> Tab | None:
        if self._active_key is None:
            return None
        return self._tabs.get(self._active_key)

    @property
    def next_index(self) -> int:
        return self._counter

    def get_tab(self, key: str) -> Tab | None:
        return self._tabs.get(key)

    def iter_tabs(self) -> Iterator[Tab]:
        for key in self._order:
            yield self._tabs[key]

    def tab_keys(self) -> tuple[str, ...]:
        return tuple(self._order)

    def tab_count(self) -> int:
        return len(self._order)

    def __contains__(self, key: object) -> bool:
        return key in self._tabs

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    def serialize_state(self) -> dict[str, Any]:
        """Return a structured registry snapshot for persistence layers."""

        return {
            "tabs": [tab.to_record() for tab in self.iter_tabs()],
            "active_key": self._active_key,
            "next_index": self._counter,
        }

    def restore_state(self, payload: Mapping[str, Any]) -> int:
        """Append tabs from a :meth:`serialize_state` payload.

        Malformed tab records are skipped. Returns the number of restored tabs.
        """

        restored = 0
        for entry in payload.get("tabs") or []:
            try:
                tab = Tab.from_record(entry)
            except RecordValidationError as exc:
                LOGGER.warning("Skipping malformed tab record: %s", exc)
                continue
            if tab.key in self._tabs:
                LOGGER.warning("Skipping duplicate tab record %s", tab.key)
                continue
            if tab.active_mode is EditorMode.STRUCTURED and tab.structured_content is None:
                tab.editor_settings.active_mode = EditorMode.TEXT
            self._tabs[tab.key] = tab
            self._order.append(tab.key)
            restored += 1
        self.set_next_index(_coerce_index(payload.get("next_index")))
        active_key = payload.get("active_key")
        if isinstance(active_key, str) and active_key in self._tabs:
            self._activate(active_key)
        elif self._active_key is None and self._order:
            self._activate(self._order[0])
        return restored

    def set_next_index(self, value: int) -> None:
        """Raise the title counter to ``value``; it never moves backwards."""

        if value <= 0:
            value = 1
        self._counter = max(self._counter, value)

    def _reserve_index(self) -> int:
        value = self._counter
        self._counter += 1
        return value


def _coerce_index(value: Any) -> int:
    if isinstance(value, bool):
        return 1
    try:
        return int(value)
    except (TypeError, ValueError):
        return 1
