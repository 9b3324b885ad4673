from __future__ import annotations

import threading
from typing import Iterable, Iterator


class RegistrationCache:
    """Ids of rate rules this client has already posted to the service.

    Best effort only: ids are never evicted, not even after ``delete_rates``.
    The lock guards the set, it is never held across a network call.
    """

    def __init__(self, ids: Iterable[str] = ()) -> None:
        self._ids: set[str] = set(ids)
        self._lock = threading.Lock()

    def contains(self, rate_id: str) -> bool:
        with self._lock:
            return rate_id in self._ids

    def mark_registered(self, rate_id: str) -> None:
        with self._lock:
            self._ids.add(rate_id)

    def seed(self, ids: Iterable[str]) -> None:
        with self._lock:
            self._ids.update(ids)

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()

    def __contains__(self, rate_id: object) -> bool:
        return isinstance(rate_id, str) and self.contains(rate_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(sorted(self._ids))
