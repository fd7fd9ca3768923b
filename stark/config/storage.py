"""File backup storage for the last loaded configuration."""

from __future__ import annotations

import os

_PERM = 0o644


class FileStorage:
    """Stores configuration bytes in one file."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = os.fspath(path)

    def exists(self) -> bool:
        return os.path.exists(self._path)

    def file_name(self) -> str:
        return self._path

    def write(self, data: bytes) -> None:
        """Write the data, creating parent directories as needed."""
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _PERM)
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)

    def load(self) -> bytes:
        """Return the stored bytes; raises FileNotFoundError if none were stored."""
        with open(self._path, "rb") as handle:
            return handle.read()