"""JSON schemas describing every record written to the key-value store."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import jsonschema

from ..errors import RecordValidationError

__all__ = [
    "HISTORY_ITEM_SCHEMA",
    "HISTORY_SCHEMA_VERSION",
    "SETTINGS_SCHEMA",
    "SETTINGS_SCHEMA_VERSION",
    "TAB_SCHEMA",
    "record_problems",
    "validate_record",
]

MAX_SCHEMA_ERRORS = 10
HISTORY_SCHEMA_VERSION = 1
SETTINGS_SCHEMA_VERSION = 1

_EDITOR_MODE = {"type": "string", "enum": ["text", "structured"]}
_STRUCTURED_CONTENT = {
    "anyOf": [
        {"type": "null"},
        {"type": "object", "required": ["json"], "properties": {"json": {}}},
    ]
}
_EDITOR_SETTINGS = {
    "type": "object",
    "properties": {
        "active_mode": _EDITOR_MODE,
        "expanded": {"type": "boolean"},
        "font_size": {"type": "integer", "minimum": 1},
        "language": {"type": "string"},
    },
}

HISTORY_ITEM_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": [
        "key",
        "tab_key",
        "title",
        "content",
        "editor_settings",
        "timestamp",
        "type",
        "created_at",
    ],
    "properties": {
        "schema_version": {"type": "integer", "minimum": 1},
        "key": {"type": "string", "minLength": 1},
        "tab_key": {"type": "string"},
        "title": {"type": "string"},
        "content": {"type": "string"},
        "structured_content": _STRUCTURED_CONTENT,
        "editor_settings": _EDITOR_SETTINGS,
        "timestamp": {"type": "integer", "minimum": 0},
        "type": _EDITOR_MODE,
        "created_at": {"type": "string"},
        "text_version": {"type": "integer", "minimum": 0},
        "structured_version": {"type": "integer", "minimum": 0},
    },
}

TAB_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["key", "title", "content", "editor_settings"],
    "properties": {
        "key": {"type": "string", "minLength": 1},
        "title": {"type": "string"},
        "content": {"type": "string"},
        "structured_content": _STRUCTURED_CONTENT,
        "editor_settings": _EDITOR_SETTINGS,
        "text_stale": {"type": "boolean"},
        "structured_stale": {"type": "boolean"},
        "text_version": {"type": "integer", "minimum": 0},
        "structured_version": {"type": "integer", "minimum": 0},
        "index": {"type": "integer", "minimum": 0},
        "diff_modified_value": {"type": ["string", "null"]},
    },
}

# Settings are validated per field so one bad value only resets that field.
SETTINGS_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "version": {"type": "integer", "minimum": 1},
        "dark_mode": {"type": "boolean"},
        "font_size": {"type": "string", "enum": ["small", "medium", "large"]},
        "edit_data_save_local": {"type": "boolean"},
        "expand_tabs": {"type": "boolean"},
        "expand_sidebar": {"type": "boolean"},
        "monaco_editor_cdn": {"type": "string", "enum": ["local", "cdn"]},
        "history_limit": {"type": "integer", "minimum": 0},
        "history_debounce_seconds": {"type": "number", "minimum": 0},
    },
}


def record_problems(payload: Any, schema: Mapping[str, Any]) -> list[str]:
    """Return human-readable schema violations for ``payload``."""

    validator = jsonschema.Draft202012Validator(schema)
    problems: list[str] = []
    for issue in validator.iter_errors(payload):
        path = _format_schema_path(issue.absolute_path)
        problems.append(f"{path}: {issue.message}" if path else issue.message)
        if len(problems) >= MAX_SCHEMA_ERRORS:
            problems.append("too many validation errors; stopping early")
            break
    return problems


def validate_record(payload: Any, schema: Mapping[str, Any], *, record_type: str) -> Mapping[str, Any]:
    """Validate ``payload`` against ``schema`` and return it as a mapping."""

    problems = record_problems(payload, schema)
    if problems:
        raise RecordValidationError(record_type, problems)
    return payload


def _format_schema_path(path: Sequence[Any]) -> str:
    if not path:
        return ""
    components: list[str] = []
    for segment in path:
        if isinstance(segment, int):
            if components:
                components[-1] = f"{components[-1]}[{segment}]"
            else:
                components.append(f"[{segment}]")
        else:
            components.append(str(segment))
    return ".".join(filter(None, components))
