from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Set
from urllib.parse import quote, unquote

from api.service import ReferenceService, ServerOptions
from common.cipher import Cipher, FernetCipher
from common.errors import RefStateError, RefStateErrorType
from common.page_state import PageState
from common.ref_client import RefStateHttpClient
from state.models import (
    DEFAULT_SELECTION_NAME,
    ClientRefState,
    CreateReferenceResponse,
    GetReferenceResponse,
    IdFormat,
)
from state.store import ReferenceStore, now_ms

from .config import RefStateOptions


logger = logging.getLogger(__name__)

CLIENT_PREFIX = "c:"
SERVER_PREFIX = "s:"


class RefStateEventType(str, Enum):
    CHANGE = "change"
    ERROR = "error"


EventHandler = Callable[[Any], None]


class ReferenceBackend(Protocol):
    """Server-path collaborator: an HTTP client or an in-process service."""

    def create(
        self,
        document_ids: List[str],
        *,
        salt: bool = False,
        name: Optional[str] = None,
        expire_in: Optional[int] = None,
        id_format: Optional[IdFormat] = None,
    ) -> CreateReferenceResponse: ...

    def retrieve(self, reference_id: str) -> GetReferenceResponse: ...


def _dump_client_state(state: ClientRefState) -> str:
    # Canonical form: compact, key-sorted, unset fields omitted
    return json.dumps(state.model_dump(exclude_none=True), separators=(",", ":"), sort_keys=True)


class RefStateManager:
    """
    Encodes document-id selections as reference-state tokens and back.

    Token forms
    - "c:<url-escaped ciphertext>": the ids themselves, encrypted under
      `encryption_key + salt`.
    - "s:<reference id>": the ids live on the server behind a short id.
    - anything else: a legacy client payload without a prefix.

    Behaviour
    - `create_ref_state` uses the server path only when `server_sync` is on and
      the selection is larger than `max_client_docs`; any server failure falls
      back to a client token.
    - `get_documents_from_ref_state` raises on server-path failures but returns
      an empty list for unreadable client tokens.
    - Every error is broadcast to ERROR observers before it is raised or
      absorbed. The server-path fallback is not reported as an error.
    """

    def __init__(
        self,
        options: Optional[RefStateOptions] = None,
        *,
        backend: Optional[ReferenceBackend] = None,
        cipher: Optional[Cipher] = None,
        page_state: Optional[PageState] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._options = options or RefStateOptions()
        self._backend = backend
        self._owned_client: Optional[RefStateHttpClient] = None
        self._cipher: Cipher = cipher or FernetCipher()
        self._page_state = page_state
        self._clock = clock
        self._handlers: Dict[RefStateEventType, Set[EventHandler]] = {t: set() for t in RefStateEventType}
        self._log("RefState initialized with options: %s", self._options.model_dump(exclude={"encryption_key"}))

    @classmethod
    def with_store(
        cls,
        store: ReferenceStore,
        options: Optional[RefStateOptions] = None,
        *,
        server_salt: str = "",
        **kwargs: Any,
    ) -> "RefStateManager":
        """Manager whose server path writes straight to `store` in this process."""
        opts = options or RefStateOptions()
        server_options = ServerOptions(
            ref_key_length=opts.ref_key_length,
            id_format=opts.id_format,
            server_salt=server_salt,
            default_expiration=opts.default_expiration,
            base_path=opts.server_endpoint,
        )
        return cls(opts, backend=ReferenceService(store, server_options), **kwargs)

    @property
    def options(self) -> RefStateOptions:
        return self._options

    def close(self) -> None:
        if self._owned_client is not None:
            self._owned_client.close()
            self._owned_client = None

    # --------------- Tokens ---------------
    def create_ref_state(
        self,
        doc_ids: Sequence[str],
        *,
        server_sync: bool = True,
        salt: str = "",
        name: str = "",
        expire_in: Optional[int] = None,
        id_format: Optional[IdFormat] = None,
    ) -> str:
        """
        Create a token for `doc_ids` (an empty selection is valid).

        Raises RefStateError(INVALID) for non-string ids and
        RefStateError(ENCRYPTION) if the client path fails.
        """
        ids = self._validate_ids(doc_ids)
        self._log("Creating reference state for %d documents", len(ids))

        if server_sync and len(ids) > self._options.max_client_docs:
            try:
                return self._create_server_ref_state(
                    ids, salt=bool(salt), name=name, expire_in=expire_in, id_format=id_format
                )
            except Exception as exc:
                self._log("Server reference creation failed, falling back to client: %s", exc)

        return self._create_client_ref_state(ids, salt=salt, name=name)

    def get_documents_from_ref_state(self, ref_state_token: str, salt: str = "") -> List[str]:
        """
        Resolve a token to its document ids.

        Server tokens raise RefStateError (NOT_FOUND or NETWORK). Client and
        legacy tokens that cannot be decrypted or parsed yield [].
        """
        if not ref_state_token:
            return []

        self._log("Getting documents from reference state: %s", ref_state_token)
        if ref_state_token.startswith(SERVER_PREFIX):
            return self._get_server_ref_documents(ref_state_token[len(SERVER_PREFIX):])
        if ref_state_token.startswith(CLIENT_PREFIX):
            return self._get_client_ref_documents(ref_state_token[len(CLIENT_PREFIX):], salt)
        # Legacy format (no prefix)
        return self._get_client_ref_documents(ref_state_token, salt)

    # --------------- Page state ---------------
    def save_ref_state(self, ref_state_token: str, update_url: bool = True) -> str:
        if not ref_state_token:
            return ""
        self._log("Saving reference state: %s", ref_state_token)
        if self._page_state is None:
            return ref_state_token
        try:
            self._page_state.save(ref_state_token, update_url=update_url)
        except Exception as exc:
            self._log("Error saving reference state: %s", exc)
            return ref_state_token
        self._emit(RefStateEventType.CHANGE, {"ref_state_token": ref_state_token})
        return ref_state_token

    def get_current_ref_state(self) -> str:
        if self._page_state is None:
            return ""
        return self._page_state.load()

    def clear_ref_state(self) -> None:
        self._log("Clearing reference state")
        if self._page_state is None:
            return
        try:
            self._page_state.clear()
        except Exception as exc:
            self._log("Error clearing reference state: %s", exc)
            return
        self._emit(RefStateEventType.CHANGE, {"ref_state_token": None})

    def get_shareable_url(self, base_url: Optional[str] = None) -> str:
        if self._page_state is None:
            return ""
        return self._page_state.shareable_url(base_url)

    # --------------- Events ---------------
    def on(self, event_type: RefStateEventType, handler: EventHandler) -> Callable[[], None]:
        """Register `handler`; returns a callable that unregisters it."""
        self._handlers[event_type].add(handler)

        def _unsubscribe() -> None:
            self._handlers[event_type].discard(handler)

        return _unsubscribe

    # --------------- Internal ---------------
    def _create_client_ref_state(self, ids: List[str], *, salt: str, name: str) -> str:
        try:
            payload = ClientRefState(docs=ids, timestamp=self._clock(), name=name or None)
            encrypted = self._cipher.encrypt(_dump_client_state(payload), self._encryption_key(salt))
            return CLIENT_PREFIX + quote(encrypted, safe="")
        except Exception as exc:
            err = RefStateError(f"Failed to create client reference: {exc}", RefStateErrorType.ENCRYPTION)
            self._emit(RefStateEventType.ERROR, err)
            raise err from exc

    def _create_server_ref_state(
        self,
        ids: List[str],
        *,
        salt: bool,
        name: str,
        expire_in: Optional[int],
        id_format: Optional[IdFormat],
    ) -> str:
        resp = self._server_backend().create(
            ids,
            salt=salt,
            name=name or DEFAULT_SELECTION_NAME,
            expire_in=expire_in or self._options.default_expiration,
            id_format=id_format or self._options.id_format,
        )
        return SERVER_PREFIX + resp.reference_id

    def _get_client_ref_documents(self, encrypted_ref: str, salt: str) -> List[str]:
        try:
            decrypted = self._cipher.decrypt(unquote(encrypted_ref), self._encryption_key(salt))
            state = ClientRefState.model_validate_json(decrypted)
            return list(state.docs)
        except Exception as exc:
            err = RefStateError(f"Invalid client reference token: {exc}", RefStateErrorType.DECRYPTION)
            self._emit(RefStateEventType.ERROR, err)
            self._log("Decryption error: %s", exc)
            return []

    def _get_server_ref_documents(self, reference_id: str) -> List[str]:
        try:
            resp = self._server_backend().retrieve(reference_id)
            return list(resp.document_ids)
        except RefStateError as err:
            if err.type is not RefStateErrorType.NOT_FOUND:
                err = RefStateError(f"Failed to retrieve server reference: {err}", RefStateErrorType.NETWORK)
            self._emit(RefStateEventType.ERROR, err)
            raise err
        except Exception as exc:
            err = RefStateError(f"Failed to retrieve server reference: {exc}", RefStateErrorType.NETWORK)
            self._emit(RefStateEventType.ERROR, err)
            raise err from exc

    def _server_backend(self) -> ReferenceBackend:
        if self._backend is not None:
            return self._backend
        if self._owned_client is None:
            self._owned_client = RefStateHttpClient(self._options.server_endpoint)
        return self._owned_client

    def _encryption_key(self, salt: str = "") -> str:
        return self._options.encryption_key + (salt or "")

    def _validate_ids(self, doc_ids: Sequence[str]) -> List[str]:
        if not isinstance(doc_ids, (list, tuple)) or not all(isinstance(d, str) for d in doc_ids):
            err = RefStateError("Document ids must be a list of strings", RefStateErrorType.INVALID)
            self._emit(RefStateEventType.ERROR, err)
            raise err
        return list(doc_ids)

    def _emit(self, event_type: RefStateEventType, data: Any) -> None:
        for handler in list(self._handlers[event_type]):
            try:
                handler(data)
            except Exception:
                logger.warning("Error in %s event handler", event_type.value, exc_info=True)

    def _log(self, msg: str, *args: Any) -> None:
        if self._options.debug:
            logger.debug("[RefState] " + msg, *args)


__all__ = [
    "RefStateManager",
    "RefStateEventType",
    "ReferenceBackend",
    "CLIENT_PREFIX",
    "SERVER_PREFIX",
]
