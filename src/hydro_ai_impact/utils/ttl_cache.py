"""
In-process TTL cache shared by the HTTP connectors.
"""

import time
from typing import Any, Dict, Optional, Tuple


class TTLCache:
    """Dictionary cache whose entries expire ``ttl_seconds`` after being set."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, data = entry
        if time.monotonic() > expires_at:
            del self._entries[key]
            return None
        return data

    def set(self, key: str, data: Any) -> None:
        # A zero TTL disables caching
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = (time.monotonic() + self.ttl_seconds, data)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
