"""Tab, content-synchronization, and history state for a JSON editing tool."""

from .editor.document_model import EditorMode, EditorSettings, ParseError, Tab
from .editor.synchronizer import ContentSynchronizer
from .editor.workspace import TabRegistry
from .errors import CorruptRecordError, JsonTabsError, RecordValidationError, StorageError
from .services.history import HistoryItem, HistoryLedger, HistoryStats, calculate_stats
from .services.session import TabSessionStore
from .services.settings import Settings, SettingsStore
from .services.storage import KeyValueStore

__all__ = [
    "ContentSynchronizer",
    "CorruptRecordError",
    "EditorMode",
    "EditorSettings",
    "HistoryItem",
    "HistoryLedger",
    "HistoryStats",
    "JsonTabsError",
    "KeyValueStore",
    "ParseError",
    "RecordValidationError",
    "Settings",
    "SettingsStore",
    "StorageError",
    "Tab",
    "TabRegistry",
    "TabSessionStore",
    "calculate_stats",
]

__version__ = "0.1.0"
