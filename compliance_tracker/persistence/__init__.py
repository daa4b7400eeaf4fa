"""Persistence — MongoClient, slice repositories."""

from compliance_tracker.persistence.mongo_client import MongoClient
from compliance_tracker.persistence.slice_repository import (
    InMemorySliceRepository,
    LocalFileSliceRepository,
    MongoSliceRepository,
    SliceRepository,
    get_slice_repository,
)

__all__ = [
    "MongoClient",
    "SliceRepository",
    "InMemorySliceRepository",
    "LocalFileSliceRepository",
    "MongoSliceRepository",
    "get_slice_repository",
]
