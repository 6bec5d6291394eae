from __future__ import annotations

from enum import Enum


class RefStateErrorType(str, Enum):
    NETWORK = "network"
    ENCRYPTION = "encryption"
    DECRYPTION = "decryption"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    SERVER = "server"


class RefStateError(RuntimeError):
    """Reference-state failure tagged with its error category."""

    def __init__(self, message: str, type: RefStateErrorType) -> None:
        super().__init__(message)
        self.type = type

    def __repr__(self) -> str:
        return f"RefStateError({str(self)!r}, type={self.type.value})"


__all__ = ["RefStateError", "RefStateErrorType"]
