from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from state.models import IdFormat
from state.store import DEFAULT_TTL_MS


ENV_MAX_CLIENT_DOCS = "REFSTATE_MAX_CLIENT_DOCS"
ENV_REF_KEY_LENGTH = "REFSTATE_REF_KEY_LENGTH"
ENV_ID_FORMAT = "REFSTATE_ID_FORMAT"
ENV_SERVER_ENDPOINT = "REFSTATE_SERVER_ENDPOINT"
ENV_ENCRYPTION_KEY = "REFSTATE_ENCRYPTION_KEY"
ENV_DEFAULT_EXPIRATION = "REFSTATE_DEFAULT_EXPIRATION"
ENV_DEBUG = "REFSTATE_DEBUG"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _env_flag(name: str) -> bool:
    return (_getenv(name) or "").strip().lower() in ("1", "true", "yes", "on")


class RefStateOptions(BaseModel):
    """
    Manager configuration, fixed at construction.

    - max_client_docs: largest selection always encoded client-side; only
      selections strictly larger consider the server path.
    - ref_key_length: reference-id length; None picks the format default
      (16 for hex/alphanumeric, 20 for base64).
    - encryption_key: app-wide secret for client tokens (salt is appended).
    - default_expiration: server-path TTL in milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    max_client_docs: int = Field(default=50, ge=0)
    ref_key_length: Optional[int] = Field(default=None, ge=1)
    id_format: IdFormat = "hex"
    server_endpoint: str = "/api/ref-state"
    encryption_key: str = "refstate-default-key"
    default_expiration: int = Field(default=DEFAULT_TTL_MS, gt=0)
    debug: bool = False

    @classmethod
    def from_env(cls) -> "RefStateOptions":
        values = {}
        if _getenv(ENV_MAX_CLIENT_DOCS):
            values["max_client_docs"] = int(_getenv(ENV_MAX_CLIENT_DOCS))
        if _getenv(ENV_REF_KEY_LENGTH):
            values["ref_key_length"] = int(_getenv(ENV_REF_KEY_LENGTH))
        if _getenv(ENV_ID_FORMAT):
            values["id_format"] = _getenv(ENV_ID_FORMAT)
        if _getenv(ENV_SERVER_ENDPOINT):
            values["server_endpoint"] = _getenv(ENV_SERVER_ENDPOINT)
        if _getenv(ENV_ENCRYPTION_KEY):
            values["encryption_key"] = _getenv(ENV_ENCRYPTION_KEY)
        if _getenv(ENV_DEFAULT_EXPIRATION):
            values["default_expiration"] = int(_getenv(ENV_DEFAULT_EXPIRATION))
        values["debug"] = _env_flag(ENV_DEBUG)
        return cls(**values)


__all__ = ["RefStateOptions"]
