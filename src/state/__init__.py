"""
Reference records and the expiring stores that hold them.

`ReferenceStore` is the extension point: the in-memory and S3 backends
implement the same four operations with the same expiry semantics.
"""

from .memory_store import MemoryReferenceStore
from .models import ClientRefState, ReferenceRecord
from .store import ReferenceStore

__all__ = ["ClientRefState", "ReferenceRecord", "ReferenceStore", "MemoryReferenceStore"]
