"""
Identity and time sources for new records.

Only the reducer mints ids.  Both sources are injectable so tests can make
ids and timestamps deterministic.
"""

from __future__ import annotations

import uuid
from collections.abc import Container
from datetime import datetime, timezone

REQUIREMENT_PREFIX = "REQ"
CAPABILITY_PREFIX = "CAP"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IdFactory:
    """Mints ``PREFIX-XXXXXXXXXXXX`` ids from uuid4, skipping any already taken."""

    def __init__(self, token_length: int = 12):
        self.token_length = token_length

    def _token(self) -> str:
        return uuid.uuid4().hex[: self.token_length].upper()

    def mint(self, prefix: str, taken: Container[str] = ()) -> str:
        while True:
            candidate = f"{prefix}-{self._token()}"
            if candidate not in taken:
                return candidate


class SequentialIdFactory(IdFactory):
    """Monotonic counter ids (``REQ-0001``); predictable, for tests and seeding."""

    def __init__(self, start: int = 1, width: int = 4):
        super().__init__()
        self._next = start
        self.width = width

    def _token(self) -> str:
        token = str(self._next).zfill(self.width)
        self._next += 1
        return token
