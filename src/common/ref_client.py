from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from state.models import DEFAULT_SELECTION_NAME, CreateReferenceResponse, GetReferenceResponse, IdFormat

from .errors import RefStateError, RefStateErrorType


class RefStateHttpClient:
    """
    Minimal client for the reference-state server endpoint.

    Notes
    - `endpoint` is the collection URL, e.g. "https://example.com/api/ref-state";
      `retrieve` appends "/{id}".
    - No retries: a failed call is reported once as an error and the
      caller decides what to do (the manager falls back to client-side tokens).
    - 404 on retrieve maps to NOT_FOUND and 5xx to SERVER.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not endpoint:
            raise ValueError("endpoint is required")
        self._endpoint = endpoint.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "RefStateHttpClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def create(
        self,
        document_ids: List[str],
        *,
        salt: bool = False,
        name: Optional[str] = None,
        expire_in: Optional[int] = None,
        id_format: Optional[IdFormat] = None,
    ) -> CreateReferenceResponse:
        body: Dict[str, Any] = {
            "documentIds": list(document_ids),
            # Only whether a salt was used is sent, never the salt itself
            "salt": bool(salt),
            "name": name or DEFAULT_SELECTION_NAME,
        }
        if expire_in is not None:
            body["expireIn"] = expire_in
        if id_format is not None:
            body["idFormat"] = id_format

        data = self._request("POST", self._endpoint, json=body)
        try:
            return CreateReferenceResponse.model_validate(data)
        except ValidationError as ve:
            raise RefStateError(
                f"Malformed create response from server: {ve}", RefStateErrorType.NETWORK
            ) from ve

    def retrieve(self, reference_id: str) -> GetReferenceResponse:
        data = self._request("GET", f"{self._endpoint}/{reference_id}")
        try:
            return GetReferenceResponse.model_validate(data)
        except ValidationError as ve:
            raise RefStateError(
                f"Malformed reference response from server: {ve}", RefStateErrorType.NETWORK
            ) from ve

    # --------------- Internal ---------------
    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise RefStateError(f"Request to {url} failed: {exc}", RefStateErrorType.NETWORK) from exc

        if resp.status_code == 404 and method == "GET":
            raise RefStateError("Reference not found or expired", RefStateErrorType.NOT_FOUND)
        if resp.is_server_error:
            raise RefStateError(
                f"Server returned {resp.status_code}: {resp.text[:200]}", RefStateErrorType.SERVER
            )
        if not resp.is_success:
            raise RefStateError(
                f"Server returned {resp.status_code}: {resp.text[:200]}", RefStateErrorType.NETWORK
            )
        try:
            payload = resp.json()
        except Exception as exc:  # JSON decode error
            raise RefStateError("Failed to parse JSON from server", RefStateErrorType.NETWORK) from exc
        if not isinstance(payload, dict):
            raise RefStateError("Unexpected response shape from server", RefStateErrorType.NETWORK)
        return payload


__all__ = ["RefStateHttpClient"]
