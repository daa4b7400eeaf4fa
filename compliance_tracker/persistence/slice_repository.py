"""
Slice Repository — key/value persistence for dashboard slices.

Each persisted slice (``SliceKey``) is stored independently as JSON-compatible
data.  Three backends:

  memory — dict of deep copies; tests and throwaway sessions
  local  — one ``<key>.json`` file per slice, replaced atomically
  mongo  — one ``{_id: key, data: ...}`` document per slice

Read and write failures surface as ``PersistenceWarning``; the store logs them
and carries on with in-memory state.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import Any

from pymongo.errors import PyMongoError

from compliance_tracker.config import Settings, get_settings
from compliance_tracker.errors import ErrorCode, PersistenceWarning
from compliance_tracker.persistence.mongo_client import MongoClient

logger = logging.getLogger(__name__)


class SliceRepository(ABC):
    """load / save / delete of one slice by key."""

    @abstractmethod
    def load(self, key: str) -> Any | None:
        """Return the stored data, or ``None`` when the slice is absent."""

    @abstractmethod
    def save(self, key: str, data: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def close(self) -> None:
        """Release backend resources (no-op by default)."""


class InMemorySliceRepository(SliceRepository):
    def __init__(self, initial: dict[str, Any] | None = None):
        self._memory_store: dict[str, Any] = deepcopy(initial) if initial else {}

    def load(self, key: str) -> Any | None:
        if key not in self._memory_store:
            return None
        return deepcopy(self._memory_store[key])

    def save(self, key: str, data: Any) -> None:
        self._memory_store[key] = deepcopy(data)

    def delete(self, key: str) -> None:
        self._memory_store.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._memory_store.keys())


class LocalFileSliceRepository(SliceRepository):
    """One JSON file per slice under ``base_path``."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_path / f"{key}.json"

    def load(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceWarning(key, f"unreadable slice file {path}: {exc}",
                                     code=ErrorCode.PERSISTENCE_READ_FAILED) from exc

    def save(self, key: str, data: Any) -> None:
        path = self._path(key)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.base_path, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, ensure_ascii=False, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceWarning(key, f"could not write {path}: {exc}") from exc
        logger.debug(f"Saved slice '{key}' to {path}")

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceWarning(key, f"could not delete slice file: {exc}") from exc


class MongoSliceRepository(SliceRepository):
    """One document per slice: ``{"_id": key, "data": <slice>}``."""

    def __init__(self, client: MongoClient | None = None, collection: Any = None):
        self.client = client
        self._collection = collection

    @property
    def collection(self) -> Any:
        if self._collection is None:
            self.client = self.client or MongoClient()
            self._collection = self.client.get_collection()
        return self._collection

    def load(self, key: str) -> Any | None:
        try:
            doc = self.collection.find_one({"_id": key})
        except PyMongoError as exc:
            raise PersistenceWarning(key, f"MongoDB read failed: {exc}",
                                     code=ErrorCode.PERSISTENCE_READ_FAILED) from exc
        if doc is None:
            return None
        return doc.get("data")

    def save(self, key: str, data: Any) -> None:
        try:
            self.collection.replace_one({"_id": key}, {"_id": key, "data": data}, upsert=True)
        except PyMongoError as exc:
            raise PersistenceWarning(key, f"MongoDB write failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.collection.delete_one({"_id": key})
        except PyMongoError as exc:
            raise PersistenceWarning(key, f"MongoDB delete failed: {exc}") from exc

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


def get_slice_repository(settings: Settings | None = None) -> SliceRepository:
    """Build the repository selected by ``settings.storage_backend``."""
    settings = settings or get_settings()
    backend = settings.storage_backend
    if backend == "memory":
        return InMemorySliceRepository()
    if backend == "local":
        return LocalFileSliceRepository(settings.local_storage_path)
    if backend == "mongo":
        return MongoSliceRepository(MongoClient(settings))
    raise ValueError(f"Unknown storage backend '{backend}'")
