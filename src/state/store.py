from __future__ import annotations

import time
from typing import Optional, Protocol, runtime_checkable

from .models import ReferenceRecord


DEFAULT_TTL_MS = 7 * 24 * 60 * 60 * 1000  # 7 days


def now_ms() -> int:
    return int(time.time() * 1000)


@runtime_checkable
class ReferenceStore(Protocol):
    """
    Expiring key-value store for server-path references.

    Contract shared by every backend
    - `set(id, record, ttl_ms)` stores the record with `expires_at = now + ttl_ms`,
      replacing any existing record for `id` and resetting its expiry.
    - `get(id)` returns the record only while `expires_at > now`; an expired
      record is removed and None is returned.
    - `has(id)` applies the same freshness check without returning the payload.
    - `delete(id)` removes unconditionally and is idempotent.
    """

    def set(self, id: str, record: ReferenceRecord, ttl_ms: int) -> None: ...

    def get(self, id: str) -> Optional[ReferenceRecord]: ...

    def has(self, id: str) -> bool: ...

    def delete(self, id: str) -> None: ...
