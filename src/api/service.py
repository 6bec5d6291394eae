from __future__ import annotations

import logging
import os
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from common.errors import RefStateError, RefStateErrorType
from common.ids import ReferenceIdGenerator, default_length
from state.models import (
    CreateReferenceResponse,
    GetReferenceResponse,
    IdFormat,
    ReferenceRecord,
)
from state.store import DEFAULT_TTL_MS, ReferenceStore, now_ms


logger = logging.getLogger(__name__)


ENV_REF_KEY_LENGTH = "REFSTATE_REF_KEY_LENGTH"
ENV_ID_FORMAT = "REFSTATE_ID_FORMAT"
ENV_SERVER_SALT = "REFSTATE_SERVER_SALT"
ENV_DEFAULT_EXPIRATION = "REFSTATE_DEFAULT_EXPIRATION"
ENV_BASE_PATH = "REFSTATE_BASE_PATH"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


class ServerOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    ref_key_length: Optional[int] = Field(default=None, ge=1)
    id_format: IdFormat = "hex"
    server_salt: str = "reefer-server-salt"
    default_expiration: int = Field(default=DEFAULT_TTL_MS, gt=0)
    base_path: str = "/api/ref-state"

    def key_length(self, fmt: str) -> int:
        return self.ref_key_length or default_length(fmt)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ServerOptions":
        values: dict = {}
        if _getenv(ENV_REF_KEY_LENGTH):
            values["ref_key_length"] = int(_getenv(ENV_REF_KEY_LENGTH))
        if _getenv(ENV_ID_FORMAT):
            values["id_format"] = _getenv(ENV_ID_FORMAT)
        if _getenv(ENV_SERVER_SALT):
            values["server_salt"] = _getenv(ENV_SERVER_SALT)
        if _getenv(ENV_DEFAULT_EXPIRATION):
            values["default_expiration"] = int(_getenv(ENV_DEFAULT_EXPIRATION))
        if _getenv(ENV_BASE_PATH):
            values["base_path"] = _getenv(ENV_BASE_PATH)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class ReferenceService:
    """
    Create and retrieve server-path references over a `ReferenceStore`.

    Usable directly as the manager's backend (same-process deployments) or
    behind the HTTP handler.
    """

    def __init__(
        self,
        store: ReferenceStore,
        options: Optional[ServerOptions] = None,
        *,
        generator: Optional[ReferenceIdGenerator] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._options = options or ServerOptions()
        self._generator = generator or ReferenceIdGenerator(self._options.server_salt)
        self._clock = clock

    @property
    def options(self) -> ServerOptions:
        return self._options

    def create(
        self,
        document_ids: List[str],
        *,
        salt: bool = False,
        name: Optional[str] = None,
        expire_in: Optional[int] = None,
        id_format: Optional[IdFormat] = None,
    ) -> CreateReferenceResponse:
        if (
            not isinstance(document_ids, list)
            or not document_ids
            or not all(isinstance(d, str) for d in document_ids)
        ):
            raise RefStateError("Invalid document IDs", RefStateErrorType.INVALID)
        if expire_in is not None and expire_in <= 0:
            raise RefStateError("expireIn must be positive", RefStateErrorType.INVALID)

        fmt = id_format or self._options.id_format
        reference_id = self._generator.generate(self._options.key_length(fmt), fmt, use_salt=salt)
        ttl = expire_in or self._options.default_expiration
        now = self._clock()
        record = ReferenceRecord(
            document_ids=list(document_ids),
            name=name or "Unnamed",
            created_at=now,
            salt=bool(salt),
        )
        # Overwrite on id collision is accepted
        self._store.set(reference_id, record, ttl)
        logger.debug("Stored reference %s (%d ids, ttl=%dms)", reference_id, len(document_ids), ttl)
        return CreateReferenceResponse(reference_id=reference_id, expires_at=now + ttl)

    def retrieve(self, reference_id: str) -> GetReferenceResponse:
        record = self._store.get(reference_id)
        if record is None:
            raise RefStateError("Reference not found or expired", RefStateErrorType.NOT_FOUND)
        return GetReferenceResponse(
            document_ids=record.document_ids,
            name=record.name,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )


__all__ = ["ReferenceService", "ServerOptions"]
