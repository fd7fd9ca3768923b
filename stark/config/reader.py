"""Merging change sets and reading typed values from the merged JSON."""

from __future__ import annotations

import copy
import json
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal
from typing import Any

from stark.config.encoders import Encoder, JsonEncoder, default_encoders
from stark.config.source import ChangeSet

_ENV_VAR = re.compile(rb"\$\{([A-Za-z0-9_]+)\}")
_INT = re.compile(r"[+-]?[0-9]+")
_DURATION = re.compile(r"(?:(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:ns|us|µs|μs|ms|s|m|h))+")
_DURATION_PART = re.compile(r"([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

_json = JsonEncoder()


def replace_env_vars(raw: bytes) -> bytes:
    """Replace every ${NAME} with the value of that environment variable."""
    return _ENV_VAR.sub(
        lambda match: os.environ.get(match.group(1).decode("ascii"), "").encode("utf-8"),
        raw,
    )


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (bool, int, float, str, bytes, list, tuple, dict)):
        return not value
    return False


def merge_maps(dst: dict, src: Mapping, override: bool = False) -> dict:
    """Deep-merge src into dst in place and return dst.

    Nested dicts merge key by key. Other values replace what is in dst when
    override is set or the dst value is empty. None in src is ignored.
    """
    for key, value in src.items():
        if value is None:
            continue
        current = dst.get(key)
        if isinstance(value, dict):
            if isinstance(current, dict):
                merge_maps(current, value, override)
            elif _is_empty(current):
                dst[key] = copy.deepcopy(value)
            continue
        if isinstance(value, list) and not value and not _is_empty(current):
            continue
        if override or _is_empty(current):
            dst[key] = copy.deepcopy(value)
    return dst


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "-1.5h" or "2h45m"."""
    body = text
    negative = False
    if body[:1] in ("+", "-"):
        negative = body[0] == "-"
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body or not _DURATION.fullmatch(body):
        raise ValueError(f"invalid duration {text!r}")
    nanos = sum(
        Decimal(number) * _UNIT_NANOS[unit]
        for number, unit in _DURATION_PART.findall(body)
    )
    result = timedelta(microseconds=float(nanos / 1000))
    return -result if negative else result


def _go_format(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        inner = " ".join(f"{key}:{_go_format(value[key])}" for key in sorted(value))
        return f"map[{inner}]"
    if isinstance(value, list):
        return "[" + " ".join(_go_format(item) for item in value) + "]"
    return str(value)


class JsonValue:
    """One value taken from the configuration, with typed accessors."""

    def __init__(self, data: Any = None) -> None:
        self._data = data

    def as_bool(self, default: bool) -> bool:
        if isinstance(self._data, bool):
            return self._data
        if isinstance(self._data, str):
            if self._data in _TRUE:
                return True
            if self._data in _FALSE:
                return False
        return default

    def as_int(self, default: int) -> int:
        data = self._data
        if isinstance(data, int) and not isinstance(data, bool):
            return data
        if isinstance(data, str) and _INT.fullmatch(data):
            return int(data)
        return default

    def as_str(self, default: str) -> str:
        return self._data if isinstance(self._data, str) else default

    def as_float(self, default: float) -> float:
        data = self._data
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return float(data)
        if isinstance(data, str) and data == data.strip():
            try:
                return float(data)
            except ValueError:
                return default
        return default

    def as_duration(self, default: timedelta) -> timedelta:
        if not isinstance(self._data, str):
            return default
        try:
            return parse_duration(self._data)
        except ValueError:
            return default

    def as_string_slice(self, default: list[str] | None) -> list[str] | None:
        data = self._data
        if isinstance(data, str):
            parts = data.split(",")
            if len(parts) > 1:
                return parts
        if isinstance(data, list):
            result = []
            for item in data:
                if item is None:
                    result.append("")
                elif isinstance(item, str):
                    result.append(item)
                else:
                    return default
            return result
        return default

    def as_string_map(self, default: dict[str, str] | None) -> dict[str, str] | None:
        if not isinstance(self._data, dict):
            return default
        return {key: _go_format(item) for key, item in self._data.items()}

    def scan(self) -> Any:
        """Return a copy of the value as plain Python data."""
        return copy.deepcopy(self._data)

    def data(self) -> bytes:
        """Return a string value's text, or the value encoded as JSON."""
        if isinstance(self._data, str):
            return self._data.encode("utf-8")
        try:
            return _json.encode(self._data)
        except (TypeError, ValueError):
            return b""


class JsonValues:
    """The whole configuration tree of a JSON change set."""

    def __init__(self, change_set: ChangeSet) -> None:
        data = replace_env_vars(change_set.data)
        try:
            self._root: Any = json.loads(data)
        except ValueError:
            self._root = change_set.data.decode("utf-8", errors="replace")
        self._change_set = change_set

    def get(self, *path: str) -> JsonValue:
        node = self._root
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        return JsonValue(node)

    def delete(self, *path: str) -> None:
        if not path:
            self._root = {}
            return
        parent = self.get(*path[:-1])._data
        if isinstance(parent, dict):
            parent.pop(path[-1], None)

    def set(self, value: Any, *path: str) -> None:
        if not path:
            self._root = value
            return
        if not isinstance(self._root, dict):
            raise TypeError("cannot set a path inside a non-object value")
        node = self._root
        for key in path[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[path[-1]] = value

    def data(self) -> bytes:
        return _json.encode(self._root)

    def as_dict(self) -> dict[str, Any]:
        return self._root if isinstance(self._root, dict) else {}

    def scan(self) -> Any:
        """Return a copy of the whole tree as plain Python data."""
        return copy.deepcopy(self._root)

    def __str__(self) -> str:
        return "json"


class Reader(ABC):
    """Merges change sets and gives access to their values."""

    name: str = ""

    @abstractmethod
    def merge(self, *change_sets: ChangeSet | None) -> ChangeSet:
        """Merge change sets, later ones overriding earlier ones."""

    @abstractmethod
    def values(self, change_set: ChangeSet | None) -> JsonValues:
        """Return the values held by a change set."""

    def __str__(self) -> str:
        return self.name


class JsonReader(Reader):
    """A reader whose merged output is JSON."""

    name = "json"

    def __init__(self, encoders: Mapping[str, Encoder] | None = None) -> None:
        self._encoders = default_encoders()
        if encoders:
            self._encoders.update(encoders)
        self._json = JsonEncoder()

    def merge(self, *change_sets: ChangeSet | None) -> ChangeSet:
        merged: dict | None = None
        for change_set in change_sets:
            if change_set is None or not change_set.data:
                continue
            codec = self._encoders.get(change_set.format, self._json)
            data = codec.decode(change_set.data)
            if data is None:
                continue
            if not isinstance(data, dict):
                raise ValueError(
                    f"{change_set.format or 'json'} data is not a mapping of keys to values"
                )
            if merged is None:
                merged = {}
            merge_maps(merged, data, override=True)

        result = ChangeSet(
            data=self._json.encode(merged),
            source="json",
            format=self._json.name,
        )
        result.checksum = result.sum()
        return result

    def values(self, change_set: ChangeSet | None) -> JsonValues:
        if change_set is None:
            raise ValueError("changeset is nil")
        if change_set.format != "json":
            raise ValueError("unsupported format")
        return JsonValues(change_set)