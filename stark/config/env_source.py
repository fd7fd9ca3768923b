"""Configuration read from environment variables.

Underscores in a variable name separate nesting levels and keys are lower
cased, so ``DATABASE_SERVER_HOST=localhost`` becomes
``{"database": {"server": {"host": "localhost"}}}``.
"""

from __future__ import annotations

import os
import re
import threading
from collections.abc import Iterable
from typing import Any

from stark.config.encoders import Encoder, JsonEncoder
from stark.config.reader import merge_maps
from stark.config.source import ChangeSet, Source, Watcher, WatcherStoppedError

DEFAULT_PREFIXES: list[str] = []

_INT = re.compile(r"[+-]?[0-9]+")
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _append_underscore(prefixes: Iterable[str]) -> list[str]:
    return [prefix if prefix.endswith("_") else prefix + "_" for prefix in prefixes]


def _match_prefix(prefixes: Iterable[str], text: str) -> str | None:
    for prefix in prefixes:
        if text.startswith(prefix):
            return prefix
    return None


def _convert(value: str) -> Any:
    """Turn a variable's text into an int, a bool or leave it a string."""
    if _INT.fullmatch(value):
        number = int(value)
        if _INT_MIN <= number <= _INT_MAX:
            return number
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return value


class EnvWatcher(Watcher):
    """Environment variables never change while watched: next() waits for stop()."""

    def __init__(self) -> None:
        self._exit = threading.Event()

    def next(self) -> ChangeSet:
        self._exit.wait()
        raise WatcherStoppedError()

    def stop(self) -> None:
        self._exit.set()


class EnvSource(Source):
    """A source built from the process environment.

    ``prefixes`` limits the variables read to those starting with one of them;
    ``stripped_prefixes`` does the same and removes the prefix from the key.
    An underscore is appended to every prefix that lacks one.
    """

    name = "env"

    def __init__(
        self,
        prefixes: Iterable[str] | None = None,
        stripped_prefixes: Iterable[str] | None = None,
        encoder: Encoder | None = None,
    ) -> None:
        stripped = _append_underscore(stripped_prefixes or ())
        kept = _append_underscore(prefixes or ())
        if stripped or kept:
            kept = kept + list(DEFAULT_PREFIXES)
        self._prefixes = kept
        self._stripped_prefixes = stripped
        self._encoder = encoder or JsonEncoder()

    def read(self) -> ChangeSet:
        changes: dict[str, Any] | None = None

        for key, value in os.environ.items():
            entry = f"{key}={value}"
            if self._prefixes or self._stripped_prefixes:
                found = _match_prefix(self._prefixes, entry) is not None
                stripped = _match_prefix(self._stripped_prefixes, entry)
                if stripped is not None:
                    entry = entry[len(stripped):]
                    found = True
                if not found:
                    continue

            variable, _, text = entry.partition("=")
            node: Any = _convert(text)
            for part in reversed(variable.lower().split("_")):
                node = {part: node}

            if changes is None:
                changes = {}
            merge_maps(changes, node)

        change_set = ChangeSet(
            format=self._encoder.name,
            data=self._encoder.encode(changes),
            source=self.name,
        )
        change_set.checksum = change_set.sum()
        return change_set

    def watch(self) -> EnvWatcher:
        return EnvWatcher()