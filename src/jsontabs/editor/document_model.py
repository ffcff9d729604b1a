"""Dataclasses describing open tabs plus text/structured conversion helpers."""

from __future__ import annotations

import copy
import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from json import JSONDecodeError
from typing import Any, Mapping

from ..errors import RecordValidationError
from ..services.schemas import TAB_SCHEMA, validate_record

__all__ = [
    "EditorMode",
    "EditorSettings",
    "ParseError",
    "Tab",
    "structured_from_text",
    "text_from_structured",
    "wrap_structured",
    "unwrap_structured",
]

JSON_INDENT = 2
_CONTEXT_RADIUS = 4


class EditorMode(str, Enum):
    """Editor paradigms a tab can be shown in."""

    TEXT = "text"
    STRUCTURED = "structured"

    @classmethod
    def coerce(cls, value: "EditorMode | str") -> "EditorMode":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


@dataclass(slots=True)
class EditorSettings:
    """Per-tab editor configuration."""

    active_mode: EditorMode = EditorMode.TEXT
    expanded: bool = False
    font_size: int = 14
    language: str = "json"

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_mode": self.active_mode.value,
            "expanded": self.expanded,
            "font_size": self.font_size,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "EditorSettings":
        if not payload:
            return cls()
        defaults = cls()
        return cls(
            active_mode=EditorMode.coerce(payload.get("active_mode", defaults.active_mode)),
            expanded=bool(payload.get("expanded", defaults.expanded)),
            font_size=int(payload.get("font_size", defaults.font_size)),
            language=str(payload.get("language", defaults.language)),
        )


@dataclass(frozen=True, slots=True)
class ParseError:
    """Describes why a text document could not be parsed as JSON.

    ``position`` is the character offset of the failure, ``line`` and
    ``column`` are 1-based, and ``context`` holds the surrounding lines so the
    text editor can highlight the problem.
    """

    message: str
    position: int | None = None
    line: int | None = None
    column: int | None = None
    context: str = ""

    def describe(self) -> str:
        if self.line is None:
            return self.message
        return f"{self.message} (line {self.line}, column {self.column})"


@dataclass(slots=True)
class Tab:
    """One open document and both of its content representations.

    ``structured_content`` is either ``None`` (structured editor never engaged)
    or a ``{"json": value}`` wrapper. Whichever representation matches
    ``editor_settings.active_mode`` is authoritative; the other may be stale.
    ``diff_modified_value`` holds the right-hand side of the diff view.
    """

    key: str
    title: str
    content: str = ""
    structured_content: dict[str, Any] | None = None
    editor_settings: EditorSettings = field(default_factory=EditorSettings)
    text_stale: bool = False
    structured_stale: bool = False
    text_version: int = 0
    structured_version: int = 0
    diff_modified_value: str | None = None

    @property
    def active_mode(self) -> EditorMode:
        return self.editor_settings.active_mode

    @property
    def has_structured(self) -> bool:
        return self.structured_content is not None

    def is_stale(self, mode: EditorMode) -> bool:
        if mode is EditorMode.TEXT:
            return self.text_stale
        return self.structured_stale or self.structured_content is None

    def copy(self) -> "Tab":
        return copy.deepcopy(self)

    def to_record(self) -> dict[str, Any]:
        """Return a flat JSON-serializable record for persistence."""

        record = asdict(self)
        record["editor_settings"] = self.editor_settings.to_dict()
        return record

    @classmethod
    def from_record(cls, payload: Any) -> "Tab":
        data = validate_record(payload, TAB_SCHEMA, record_type="tab")
        try:
            return cls(
                key=data["key"],
                title=data["title"],
                content=data["content"],
                structured_content=copy.deepcopy(data.get("structured_content")),
                editor_settings=EditorSettings.from_dict(data.get("editor_settings")),
                text_stale=bool(data.get("text_stale", False)),
                structured_stale=bool(data.get("structured_stale", False)),
                text_version=int(data.get("text_version", 0)),
                structured_version=int(data.get("structured_version", 0)),
                diff_modified_value=data.get("diff_modified_value"),
            )
        except (TypeError, ValueError) as exc:
            raise RecordValidationError("tab", [str(exc)]) from exc


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------
def wrap_structured(value: Any) -> dict[str, Any]:
    return {"json": value}


def unwrap_structured(content: Mapping[str, Any] | None) -> Any:
    if content is None:
        return None
    return content.get("json")


def structured_from_text(text: str) -> tuple[Any, ParseError | None]:
    """Parse ``text`` as JSON.

    Returns ``(value, None)`` on success and ``(None, ParseError)`` on failure;
    never raises for malformed input.
    """

    if not (text or "").strip():
        return None, ParseError(message="Document is empty", position=0, line=1, column=1)
    try:
        return json.loads(text, parse_constant=_reject_constant), None
    except JSONDecodeError as exc:
        return None, _parse_error_from_decode(exc)
    except ValueError as exc:
        return None, ParseError(message=str(exc))
    except RecursionError:
        return None, ParseError(message="Document is nested too deeply")


def text_from_structured(value: Any) -> str:
    """Serialize ``value`` with stable indentation and insertion key order."""

    return json.dumps(value, indent=JSON_INDENT, ensure_ascii=False, allow_nan=False)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _parse_error_from_decode(exc: JSONDecodeError) -> ParseError:
    lines = (exc.doc or "").splitlines()
    line_index = max(0, (exc.lineno or 1) - 1)
    start = max(0, line_index - _CONTEXT_RADIUS)
    end = min(len(lines), line_index + _CONTEXT_RADIUS + 1)
    return ParseError(
        message=exc.msg,
        position=exc.pos,
        line=exc.lineno,
        column=exc.colno,
        context="\n".join(lines[start:end]),
    )
