"""Durable snapshot storage — one named blob per client process.

The container only ever reads once (rehydration) and writes the whole blob
after each mutation of the persisted subset.
"""
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from core.exceptions import StorageCorruptError

logger = logging.getLogger(__name__)

STORAGE_KEY = "miktsoan-storage"


class SnapshotStorage(ABC):
    """Abstract key/blob storage for state snapshots."""

    @abstractmethod
    def load(self) -> Optional[str]:
        """Return the stored blob, or None when nothing was saved yet."""
        ...

    @abstractmethod
    def save(self, blob: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemorySnapshotStorage(SnapshotStorage):
    """Process-local storage. Shares a dict so tests can simulate restarts."""

    def __init__(self, backing: Optional[Dict[str, str]] = None, key: str = STORAGE_KEY):
        self._backing = backing if backing is not None else {}
        self._key = key

    def load(self) -> Optional[str]:
        return self._backing.get(self._key)

    def save(self, blob: str) -> None:
        self._backing[self._key] = blob

    def clear(self) -> None:
        self._backing.pop(self._key, None)


class FileSnapshotStorage(SnapshotStorage):
    """JSON file storage with atomic replace on write."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise StorageCorruptError(f"Snapshot is not valid UTF-8: {e.reason}") from e

    def save(self, blob: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(blob)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
        logger.info("[Storage] Snapshot cleared: %s", self.path.name)
