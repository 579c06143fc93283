"""Durable key-value blob storage.

The automation engine persists two independent blobs: the automation
collection and the execution history.  It only needs "load the bytes for a
key" and "save the bytes for a key", so storage backends implement the
small ``BlobStore`` interface below.

Error policy
------------
- Reads never raise: a missing, unreadable or otherwise broken blob is
  reported as ``None`` ("no data") and logged.
- Writes raise ``StorageError`` so the caller of a mutating operation
  learns that its change was not made durable.
"""

from __future__ import annotations

import abc
import os
import re
from pathlib import Path

from loguru import logger

from iotdash.errors import StorageError

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class BlobStore(abc.ABC):
    """Durable mapping from a string key to an opaque byte blob."""

    @abc.abstractmethod
    def load_blob(self, key: str) -> bytes | None:
        """Return the stored bytes for *key*, or None if there is no data."""

    @abc.abstractmethod
    def save_blob(self, key: str, data: bytes) -> None:
        """Replace the bytes stored under *key*."""


class MemoryBlobStore(BlobStore):
    """Process-local blob store, useful for tests and ephemeral setups."""

    def __init__(self, initial: dict[str, bytes] | None = None):
        self.blobs: dict[str, bytes] = dict(initial or {})

    def load_blob(self, key: str) -> bytes | None:
        return self.blobs.get(key)

    def save_blob(self, key: str, data: bytes) -> None:
        self.blobs[key] = bytes(data)


class FileBlobStore(BlobStore):
    """One file per key inside a directory.

    Writes go to a temporary sibling file first and are moved into place
    with ``os.replace`` so a crash never leaves a half-written blob.
    """

    def __init__(self, directory: str | Path, suffix: str = ".json"):
        self.directory = Path(directory).expanduser()
        self.suffix = suffix

    def path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid blob key {key!r}")
        return self.directory / f"{key}{self.suffix}"

    def load_blob(self, key: str) -> bytes | None:
        path = self.path_for(key)
        if not path.exists():
            logger.debug(f"[Storage] no blob at {path}")
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            logger.error(f"[Storage] failed to read {path}: {exc}")
            return None

    def save_blob(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(str(tmp), str(path))
        except OSError as exc:
            logger.error(f"[Storage] failed to save {path}: {exc}")
            raise StorageError(f"Failed to save blob '{key}': {exc}") from exc
