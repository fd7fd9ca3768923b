"""An in-memory configuration source that is updated by hand."""

from __future__ import annotations

import dataclasses
import queue
import threading
import uuid

from stark.config.source import ChangeSet, Source, Watcher, WatcherStoppedError

_QUEUE_SIZE = 100


class MemoryWatcher(Watcher):
    """Receives the change sets passed to MemorySource.update()."""

    def __init__(self, source: MemorySource) -> None:
        self.id = str(uuid.uuid4())
        self._source = source
        self._updates: queue.Queue[ChangeSet] = queue.Queue(_QUEUE_SIZE)
        self._stopped = threading.Event()

    def _offer(self, change_set: ChangeSet) -> None:
        try:
            self._updates.put_nowait(change_set)
        except queue.Full:
            pass

    def next(self) -> ChangeSet:
        while not self._stopped.is_set():
            try:
                return self._updates.get(timeout=0.1)
            except queue.Empty:
                continue
        raise WatcherStoppedError()

    def stop(self) -> None:
        self._source._remove_watcher(self.id)
        self._stopped.set()


class MemorySource(Source):
    """A source holding one change set, replaced with update()."""

    name = "memory"

    def __init__(self, change_set: ChangeSet | None = None) -> None:
        self._lock = threading.Lock()
        self._change_set: ChangeSet | None = None
        self._watchers: dict[str, MemoryWatcher] = {}
        if change_set is not None:
            self.update(change_set)

    @classmethod
    def from_json(cls, data: bytes | str) -> MemorySource:
        if isinstance(data, str):
            data = data.encode("utf-8")
        return cls(ChangeSet(data=data, format="json"))

    @classmethod
    def from_yaml(cls, data: bytes | str) -> MemorySource:
        if isinstance(data, str):
            data = data.encode("utf-8")
        return cls(ChangeSet(data=data, format="yaml"))

    def read(self) -> ChangeSet:
        """Return a copy of the current change set; ValueError if there is none."""
        with self._lock:
            if self._change_set is None:
                raise ValueError("memory source has no change set")
            return dataclasses.replace(self._change_set)

    def watch(self) -> MemoryWatcher:
        watcher = MemoryWatcher(self)
        with self._lock:
            self._watchers[watcher.id] = watcher
        return watcher

    def update(self, change_set: ChangeSet | None) -> None:
        """Replace the data and notify watchers; None is ignored."""
        if change_set is None:
            return
        with self._lock:
            current = ChangeSet(
                data=change_set.data,
                format=change_set.format,
                source=self.name,
            )
            current.checksum = current.sum()
            self._change_set = current
            for watcher in self._watchers.values():
                watcher._offer(current)

    def _remove_watcher(self, watcher_id: str) -> None:
        with self._lock:
            self._watchers.pop(watcher_id, None)