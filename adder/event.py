"""The event envelope passed between pipeline stages."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _jsonable(value: Any) -> Any:
    """Turn an event value into plain JSON-compatible data."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, datetime):
        return value.isoformat()
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    to_json = getattr(value, "to_json", None)
    if callable(to_json):
        return to_json()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            _camel(f.name): _jsonable(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return str(value)


@dataclass
class Event:
    """A typed, timestamped event with optional context and a payload."""

    type: str
    timestamp: datetime
    context: Any = None
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the event; a missing context is omitted."""
        out: dict[str, Any] = {
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.context is not None:
            out["context"] = _jsonable(self.context)
        out["payload"] = _jsonable(self.payload)
        return out