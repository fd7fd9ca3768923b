"""Configuration read from a file, watched by polling its metadata."""

from __future__ import annotations

import os
import threading
from datetime import datetime, timezone

from stark.config.encoders import Encoder, JsonEncoder
from stark.config.source import ChangeSet, Source, Watcher, WatcherStoppedError

DEFAULT_PATH = "config.json"


def file_format(path: str, encoder: Encoder) -> str:
    """Return the format named by the path's extension, else the encoder's."""
    parts = path.split(".")
    if len(parts) > 1:
        return parts[-1]
    return str(encoder)


class FileSource(Source):
    """A source that reads one file."""

    name = "file"

    def __init__(
        self,
        path: str | os.PathLike[str] = DEFAULT_PATH,
        encoder: Encoder | None = None,
    ) -> None:
        self.path = os.fspath(path)
        self._encoder = encoder or JsonEncoder()

    def read(self) -> ChangeSet:
        with open(self.path, "rb") as handle:
            data = handle.read()
            stat = os.fstat(handle.fileno())
        change_set = ChangeSet(
            format=file_format(self.path, self._encoder),
            source=self.name,
            timestamp=datetime.fromtimestamp(stat.st_mtime, timezone.utc),
            data=data,
        )
        change_set.checksum = change_set.sum()
        return change_set

    def watch(self) -> FileWatcher:
        """Watch the file; raises FileNotFoundError if it does not exist."""
        os.stat(self.path)
        return FileWatcher(self)


class FileWatcher(Watcher):
    """Reports a new change set whenever the file's metadata changes."""

    def __init__(self, source: FileSource, interval: float = 0.1) -> None:
        self._source = source
        self._interval = interval
        self._exit = threading.Event()
        self._last = self._signature()

    def _signature(self) -> tuple[int, int, int] | None:
        try:
            stat = os.stat(self._source.path)
        except FileNotFoundError:
            return None
        return (stat.st_ino, stat.st_size, stat.st_mtime_ns)

    def next(self) -> ChangeSet:
        while not self._exit.is_set():
            current = self._signature()
            if current != self._last:
                self._last = current
                return self._source.read()
            self._exit.wait(self._interval)
        raise WatcherStoppedError()

    def stop(self) -> None:
        self._exit.set()