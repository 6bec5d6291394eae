from __future__ import annotations

import base64
import hashlib
import logging
import os
import random
import secrets
import string
import warnings
from typing import Callable, Optional

from state.models import IdFormat


logger = logging.getLogger(__name__)

FORMATS = ("alphanumeric", "hex", "base64")
_ALPHANUMERIC = string.ascii_letters + string.digits

RandomBytes = Callable[[int], bytes]
Digest = Callable[[bytes], bytes]


def default_length(fmt: str) -> int:
    """Default reference-id length for a format: 20 for base64, else 16."""
    return 20 if fmt == "base64" else 16


def _secure_random_source() -> Optional[RandomBytes]:
    try:
        os.urandom(1)
    except NotImplementedError:
        return None
    return secrets.token_bytes


def _insecure_random_source() -> RandomBytes:
    msg = "No secure random source available, reference ids fall back to a non-cryptographic generator"
    logger.warning(msg)
    warnings.warn(msg, RuntimeWarning, stacklevel=3)
    rng = random.Random()
    return rng.randbytes


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


class ReferenceIdGenerator:
    """
    Short, URL-safe reference ids for the server path.

    - Randomness comes from the OS CSPRNG. Where the platform has none, a
      `random.Random` generator is used instead and a RuntimeWarning is issued;
      ids produced that way are not secure.
    - With `use_salt`, the random bytes are mixed with the server salt through
      SHA-256 before rendering, so ids are bound to the server without
      revealing the salt.
    - Sources are resolved once at construction; pass `random_bytes`/`digest`
      to inject them (tests, constrained runtimes).
    """

    def __init__(
        self,
        server_salt: str = "",
        *,
        random_bytes: Optional[RandomBytes] = None,
        digest: Optional[Digest] = None,
    ) -> None:
        self._server_salt = server_salt
        self._random_bytes = random_bytes or _secure_random_source() or _insecure_random_source()
        self._digest = digest or _sha256

    def generate(self, length: int, fmt: IdFormat = "hex", use_salt: bool = False) -> str:
        if length < 1:
            raise ValueError("length must be >= 1")
        if fmt not in FORMATS:
            raise ValueError(f"unknown id format: {fmt!r}")

        nbytes = _bytes_needed(length, fmt)
        raw = self._random_bytes(nbytes)
        if use_salt and self._server_salt:
            raw = self._mix(raw, nbytes)
        return _render(raw, fmt, length)

    def _mix(self, raw: bytes, nbytes: int) -> bytes:
        salt = self._server_salt.encode("utf-8")
        out = b""
        counter = 0
        # Counter-extend the digest until enough bytes are available
        while len(out) < nbytes:
            out += self._digest(raw + salt + counter.to_bytes(4, "big"))
            counter += 1
        return out[:nbytes]


def _bytes_needed(length: int, fmt: str) -> int:
    if fmt == "hex":
        return (length + 1) // 2
    if fmt == "base64":
        return (length * 3 + 3) // 4
    # One byte per base62 digit leaves plenty of entropy per character
    return length


def _render(data: bytes, fmt: str, length: int) -> str:
    if fmt == "hex":
        return data.hex()[:length]
    if fmt == "base64":
        # urlsafe alphabet maps +/ to -_; padding is stripped
        return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")[:length]
    n = int.from_bytes(data, "big")
    chars = []
    for _ in range(length):
        n, rem = divmod(n, len(_ALPHANUMERIC))
        chars.append(_ALPHANUMERIC[rem])
    return "".join(chars)


__all__ = ["ReferenceIdGenerator", "FORMATS", "default_length"]
