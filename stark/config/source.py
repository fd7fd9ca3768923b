"""Change sets and the source and watcher interfaces for configuration."""

from __future__ import annotations

import hashlib
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WatcherStoppedError(Exception):
    """Raised by a watcher whose stop() has been called."""

    def __init__(self, message: str = "watcher stopped") -> None:
        super().__init__(message)


@dataclass
class ChangeSet:
    """A set of configuration data read from one source."""

    data: bytes = b""
    checksum: str = ""
    format: str = ""
    source: str = ""
    timestamp: datetime = field(default_factory=_now)

    def sum(self) -> str:
        """Return the MD5 checksum of the data as hex."""
        return hashlib.md5(self.data, usedforsecurity=False).hexdigest()


class Watcher(ABC):
    """Waits for changes of a source."""

    @abstractmethod
    def next(self) -> ChangeSet:
        """Block until the next change and return it."""

    @abstractmethod
    def stop(self) -> None:
        """Stop watching."""

    def __iter__(self) -> Iterator[ChangeSet]:
        while True:
            try:
                yield self.next()
            except WatcherStoppedError:
                return


class Source(ABC):
    """Somewhere configuration is loaded from."""

    name: str = "source"

    @abstractmethod
    def read(self) -> ChangeSet:
        """Read the current data."""

    @abstractmethod
    def watch(self) -> Watcher:
        """Return a watcher for changes of this source."""

    def __str__(self) -> str:
        return self.name


class NoopWatcher(Watcher):
    """A watcher that blocks in next() until stop() is called."""

    def __init__(self) -> None:
        self._exit = threading.Event()

    def next(self) -> ChangeSet:
        self._exit.wait()
        raise WatcherStoppedError("noopWatcher stopped")

    def stop(self) -> None:
        self._exit.set()