"""Ordered index of pending job ids."""
from __future__ import annotations

import bisect
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

SortKey = Tuple[int, datetime, int, str]


class PriorityOrder:
    """Keeps pending ids sorted by priority (desc), then creation time (asc).

    The admission sequence number breaks ties between jobs created within the
    same clock tick, so equal-priority jobs always leave in arrival order.
    """

    def __init__(self) -> None:
        self._keys: List[SortKey] = []
        self._by_id: Dict[str, SortKey] = {}

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._by_id

    def __iter__(self) -> Iterator[str]:
        return (key[3] for key in list(self._keys))

    def insert(self, job_id: str, *, priority: int, created_at: datetime, seq: int) -> None:
        """Add or re-key a pending job."""
        if job_id in self._by_id:
            self.remove(job_id)
        key: SortKey = (-priority, created_at, seq, job_id)
        bisect.insort(self._keys, key)
        self._by_id[job_id] = key

    def reprioritise(self, job_id: str, priority: int) -> None:
        _, created_at, seq, _ = self._by_id[job_id]
        self.insert(job_id, priority=priority, created_at=created_at, seq=seq)

    def remove(self, job_id: str) -> bool:
        """Drop the id from the order, returning False when it was absent."""
        key = self._by_id.pop(job_id, None)
        if key is None:
            return False
        index = bisect.bisect_left(self._keys, key)
        del self._keys[index]
        return True

    def position(self, job_id: str) -> Optional[int]:
        """Return the 1-based rank of a pending job."""
        key = self._by_id.get(job_id)
        if key is None:
            return None
        return bisect.bisect_left(self._keys, key) + 1

    def peek(self) -> Optional[str]:
        return self._keys[0][3] if self._keys else None
