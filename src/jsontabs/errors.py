"""Exception types shared by the storage, settings, and history layers."""

from __future__ import annotations

__all__ = [
    "JsonTabsError",
    "StorageError",
    "CorruptRecordError",
    "RecordValidationError",
]


class JsonTabsError(Exception):
    """Base class for all library errors."""


class StorageError(JsonTabsError):
    """Raised when a key-value store operation fails."""

    def __init__(self, message: str, *, operation: str | None = None, key: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key


class CorruptRecordError(StorageError):
    """Raised when a stored value exists but cannot be decoded."""


class RecordValidationError(JsonTabsError, ValueError):
    """Raised when a persisted record does not match its schema."""

    def __init__(self, record_type: str, problems: list[str]) -> None:
        detail = "; ".join(problems) if problems else "invalid record"
        super().__init__(f"Invalid {record_type} record: {detail}")
        self.record_type = record_type
        self.problems = list(problems)
