"""
Mongo Client — raw database connection management.
The connection is opened lazily on first use.
"""

from __future__ import annotations

import logging
from typing import Any

from pymongo import MongoClient as PyMongoClient

from compliance_tracker.config import Settings, get_settings

logger = logging.getLogger(__name__)


class MongoClient:
    """Thin wrapper around pymongo, configured from ``Settings``."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client: Any = None
        self._db: Any = None

    def connect(self) -> None:
        """Establish the MongoDB connection."""
        self._client = PyMongoClient(self.settings.mongodb_uri)
        self._db = self._client[self.settings.mongodb_database]
        logger.info(f"Connected to MongoDB: {self.settings.mongodb_database}")

    def get_database(self) -> Any:
        """Return the database handle."""
        if self._db is None:
            self.connect()
        return self._db

    def get_collection(self, name: str | None = None) -> Any:
        """Return a collection handle (defaults to the slice collection)."""
        return self.get_database()[name or self.settings.mongodb_collection]

    def close(self) -> None:
        """Close the connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("MongoDB connection closed")
