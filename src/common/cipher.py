from __future__ import annotations

import base64
import hashlib
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken


class CipherError(ValueError):
    """Raised when a ciphertext cannot be decrypted with the given key."""


class Cipher(Protocol):
    def encrypt(self, plaintext: str, key: str) -> str: ...

    def decrypt(self, ciphertext: str, key: str) -> str: ...


def derive_fernet_key(secret: str) -> bytes:
    """Map an arbitrary passphrase to a Fernet key (urlsafe base64 of SHA-256)."""
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class FernetCipher:
    """
    Symmetric cipher for client-path tokens.

    The passphrase (app secret + optional salt) is stretched to a Fernet key with
    SHA-256. Fernet authenticates ciphertexts, so any truncation or mutation is
    rejected on decrypt instead of yielding garbage plaintext.
    """

    def encrypt(self, plaintext: str, key: str) -> str:
        token = Fernet(derive_fernet_key(key)).encrypt(plaintext.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, ciphertext: str, key: str) -> str:
        try:
            data = Fernet(derive_fernet_key(key)).decrypt(ciphertext.encode("utf-8"))
        except (InvalidToken, UnicodeEncodeError) as ex:
            raise CipherError("invalid or tampered ciphertext") from ex
        return data.decode("utf-8")


__all__ = ["Cipher", "CipherError", "FernetCipher", "derive_fernet_key"]
