"""
Reference-state tokens for document selections.

Typical use:

    manager = RefStateManager(RefStateOptions(encryption_key="..."))
    token = manager.create_ref_state(["doc-1", "doc-2"])
    manager.get_documents_from_ref_state(token)  # ["doc-1", "doc-2"]
"""

from .config import RefStateOptions
from .manager import RefStateEventType, RefStateManager

__all__ = ["RefStateManager", "RefStateOptions", "RefStateEventType"]
