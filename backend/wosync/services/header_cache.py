from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class HeaderMap:
    headers: list[str]
    index_by_lower: dict[str, int] = field(default_factory=dict)
    fetched_at: float = 0.0

    @classmethod
    def from_headers(cls, headers: list[str], fetched_at: float) -> "HeaderMap":
        index: dict[str, int] = {}
        for i, header in enumerate(headers):
            key = (header or "").strip().lower()
            if key and key not in index:
                index[key] = i
        return cls(headers=list(headers), index_by_lower=index, fetched_at=fetched_at)

    def index_of(self, column: str) -> int | None:
        return self.index_by_lower.get(column.strip().lower())


class HeaderCache:
    """
    Per-process cache of sheet header rows, keyed by spreadsheet and sheet name.

    Cuts one values.get call per legacy write. Entries expire after ttl_seconds
    and are dropped explicitly whenever this process rewrites a header row.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, HeaderMap] = {}

    @staticmethod
    def key(spreadsheet_id: str, sheet_name: str) -> str:
        return f"{spreadsheet_id}:{sheet_name}"

    def get(self, spreadsheet_id: str, sheet_name: str) -> HeaderMap | None:
        cache_key = self.key(spreadsheet_id, sheet_name)
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is None:
                return None
            if self._clock() - entry.fetched_at > self._ttl_seconds:
                self._entries.pop(cache_key, None)
                return None
            return entry

    def put(self, spreadsheet_id: str, sheet_name: str, headers: list[str]) -> HeaderMap:
        entry = HeaderMap.from_headers(headers, fetched_at=self._clock())
        with self._lock:
            self._entries[self.key(spreadsheet_id, sheet_name)] = entry
        return entry

    def invalidate(self, spreadsheet_id: str, sheet_name: str) -> None:
        with self._lock:
            self._entries.pop(self.key(spreadsheet_id, sheet_name), None)
