from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Callable, Optional

import boto3
from botocore.exceptions import ClientError
from cryptography.fernet import Fernet, InvalidToken

from .models import ReferenceRecord
from .store import now_ms


# Environment variable names for convenience configuration
ENV_BUCKET = "REFSTATE_BUCKET"
ENV_PREFIX = "REFSTATE_PREFIX"
ENV_FERNET_KEY = "REFSTATE_FERNET_KEY"

DEFAULT_PREFIX = "ref-state/"


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a user-provided key.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes),
    as returned by `cryptography.fernet.Fernet.generate_key()`.
    """
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


def _dump_record_json(record: ReferenceRecord) -> bytes:
    # Deterministic JSON: stable key order, no extra whitespace
    payload = json.dumps(
        record.model_dump(by_alias=True), separators=(",", ":"), sort_keys=True
    ).encode("utf-8")
    return payload


def _load_record_json(data: bytes) -> ReferenceRecord:
    raw = json.loads(data.decode("utf-8"))
    return ReferenceRecord.model_validate(raw)


@dataclass
class S3Location:
    bucket: str
    prefix: str

    def key_for(self, id: str) -> str:
        return f"{self.prefix}{id}"


class S3ReferenceStore:
    """
    S3-backed `ReferenceStore`, one encrypted object per reference id.

    Usage
    - Provide an S3 bucket, a key prefix and a Fernet key (from env or injected).
    - Each record is stored as Fernet-encrypted JSON at `{prefix}{id}` with its
      absolute `expiresAt`. Expiry is enforced lazily: `get`/`has` delete and
      report absent once `expiresAt` has passed. A bucket lifecycle rule may
      additionally sweep old objects; it is not required for correctness.

    Environment variables (optional)
    - `REFSTATE_BUCKET`:     S3 bucket for reference objects
    - `REFSTATE_PREFIX`:     key prefix (default "ref-state/")
    - `REFSTATE_FERNET_KEY`: urlsafe base64-encoded key for Fernet
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        prefix: str = DEFAULT_PREFIX,
        fernet_key: str | bytes,
        region_name: Optional[str] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._loc = S3Location(bucket=bucket, prefix=prefix)
        self._fernet = _to_fernet(fernet_key)
        self._clock = clock

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "S3ReferenceStore":
        bucket = os.environ.get(ENV_BUCKET)
        fkey = os.environ.get(ENV_FERNET_KEY)
        prefix = os.environ.get(ENV_PREFIX) or DEFAULT_PREFIX
        if not bucket or not fkey:
            missing = [name for name, val in [(ENV_BUCKET, bucket), (ENV_FERNET_KEY, fkey)] if not val]
            raise RuntimeError(
                f"Missing required environment variables for S3 reference store: {', '.join(missing)}"
            )
        return cls(bucket=bucket, prefix=prefix, fernet_key=fkey)

    # -------- Core operations --------
    def set(self, id: str, record: ReferenceRecord, ttl_ms: int) -> None:
        stored = record.model_copy(update={"expires_at": self._clock() + ttl_ms})
        ciphertext = self._fernet.encrypt(_dump_record_json(stored))
        self._s3.put_object(
            Bucket=self._loc.bucket,
            Key=self._loc.key_for(id),
            Body=ciphertext,
            ContentType="application/octet-stream",
        )

    def get(self, id: str) -> Optional[ReferenceRecord]:
        """Read and decrypt a record.

        Returns None if the object is missing or expired (expired objects are
        deleted). Raises:
        - ValueError if decryption fails or content is invalid JSON.
        - botocore.exceptions.ClientError for other S3 issues.
        """
        try:
            resp = self._s3.get_object(Bucket=self._loc.bucket, Key=self._loc.key_for(id))
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return None
            raise

        body = resp["Body"].read()
        try:
            decrypted = self._fernet.decrypt(body)
        except InvalidToken as ex:
            raise ValueError("Failed to decrypt reference: invalid Fernet token") from ex

        try:
            record = _load_record_json(decrypted)
        except Exception as ex:
            raise ValueError("Failed to parse decrypted reference JSON") from ex

        if record.expires_at is None or record.expires_at <= self._clock():
            self.delete(id)
            return None
        return record

    def has(self, id: str) -> bool:
        return self.get(id) is not None

    def delete(self, id: str) -> None:
        # S3 DeleteObject succeeds for missing keys, which keeps this idempotent
        self._s3.delete_object(Bucket=self._loc.bucket, Key=self._loc.key_for(id))


__all__ = ["S3ReferenceStore", "S3Location"]
