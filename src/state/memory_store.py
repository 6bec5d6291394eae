from __future__ import annotations

import heapq
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .models import ReferenceRecord
from .store import now_ms


@dataclass
class _Entry:
    record: ReferenceRecord
    generation: int


class MemoryReferenceStore:
    """
    A simple thread-safe in-memory `ReferenceStore`.

    - Expiry is enforced lazily on `get`/`has`.
    - With `proactive_eviction=True`, one daemon sweeper thread per store works
      through a heap of `(expires_at, generation, id)` deadlines and evicts
      entries once the store's clock reaches them. A deadline only removes the
      entry generation it was queued for, so an overwritten or deleted record
      never takes a newer one with it.
    - Records are deep-copied on the way in and out.

    Designed for a single process. Contents do not survive a restart.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], int] = now_ms,
        proactive_eviction: bool = True,
    ) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._deadlines: List[Tuple[int, int, str]] = []
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._clock = clock
        self._proactive = proactive_eviction
        self._generation = 0
        self._sweeper: Optional[threading.Thread] = None
        self._closed = False

    def set(self, id: str, record: ReferenceRecord, ttl_ms: int) -> None:
        with self._lock:
            expires_at = self._clock() + ttl_ms
            self._generation += 1
            gen = self._generation
            self._entries[id] = _Entry(
                record=record.model_copy(update={"expires_at": expires_at}, deep=True),
                generation=gen,
            )
            if self._proactive and not self._closed:
                heapq.heappush(self._deadlines, (expires_at, gen, id))
                self._compact_deadlines()
                self._ensure_sweeper()
                self._wakeup.notify()

    def get(self, id: str) -> Optional[ReferenceRecord]:
        with self._lock:
            entry = self._entries.get(id)
            if entry is None:
                return None
            if not self._is_fresh(entry):
                del self._entries[id]
                return None
            return entry.record.model_copy(deep=True)

    def has(self, id: str) -> bool:
        with self._lock:
            entry = self._entries.get(id)
            if entry is None:
                return False
            if not self._is_fresh(entry):
                del self._entries[id]
                return False
            return True

    def delete(self, id: str) -> None:
        with self._lock:
            self._entries.pop(id, None)

    def close(self) -> None:
        """Stop the sweeper. Lazy expiry keeps working."""
        with self._lock:
            self._closed = True
            self._deadlines.clear()
            self._wakeup.notify_all()
            sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # --------------- Internal ---------------
    def _is_fresh(self, entry: _Entry) -> bool:
        expires_at = entry.record.expires_at
        return expires_at is not None and expires_at > self._clock()

    def _ensure_sweeper(self) -> None:
        # Caller holds the lock
        if self._sweeper is None:
            self._sweeper = threading.Thread(target=self._sweep, name="refstate-sweeper", daemon=True)
            self._sweeper.start()

    def _compact_deadlines(self) -> None:
        # Deadlines of overwritten or deleted entries linger until they fall due;
        # rebuild the heap once they clearly outnumber live entries.
        if len(self._deadlines) <= 2 * len(self._entries) + 64:
            return
        self._deadlines = [
            (entry.record.expires_at, entry.generation, id)
            for id, entry in self._entries.items()
            if entry.record.expires_at is not None
        ]
        heapq.heapify(self._deadlines)

    def _sweep(self) -> None:
        with self._wakeup:
            while not self._closed:
                if not self._deadlines:
                    self._wakeup.wait()
                    continue
                expires_at, gen, id = self._deadlines[0]
                remaining = expires_at - self._clock()
                if remaining > 0:
                    self._wakeup.wait(remaining / 1000.0)
                    continue
                heapq.heappop(self._deadlines)
                entry = self._entries.get(id)
                if entry is not None and entry.generation == gen:
                    del self._entries[id]


__all__ = ["MemoryReferenceStore"]
