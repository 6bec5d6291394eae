from __future__ import annotations

import base64
import json
import logging
import os
from typing import Any, Callable, Dict, Iterable, Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import ValidationError

from common.errors import RefStateError, RefStateErrorType
from state.memory_store import MemoryReferenceStore
from state.models import CreateReferenceRequest
from state.s3_store import DEFAULT_PREFIX, S3ReferenceStore

from .service import ReferenceService, ServerOptions


logger = logging.getLogger(__name__)

# Environment configuration
ENV_STATE_BUCKET = "REFSTATE_BUCKET"
ENV_STATE_PREFIX = "REFSTATE_PREFIX"
ENV_FERNET_KEY = "REFSTATE_FERNET_KEY"
ENV_PARAM_PREFIX = "PARAM_PREFIX"

Handler = Callable[[Dict[str, Any], Any], Dict[str, Any]]


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            # Leave as None if parameter missing or access denied
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                out[name] = None
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def _response(status: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body, separators=(",", ":")),
    }


def _error(status: int, message: str) -> Dict[str, Any]:
    return _response(status, {"error": message})


def _method_and_path(event: Dict[str, Any]) -> tuple[str, str]:
    """Extract method and path from API Gateway REST (v1) or HTTP API (v2) events."""
    method = event.get("httpMethod")
    path = event.get("path")
    if not method:
        http = (event.get("requestContext") or {}).get("http") or {}
        method = http.get("method")
        path = event.get("rawPath") or http.get("path")
    return str(method or "").upper(), str(path or "")


def _json_body(event: Dict[str, Any]) -> Any:
    raw = event.get("body")
    if raw is None or raw == "":
        return None
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    if isinstance(raw, (dict, list)):
        return raw
    return json.loads(raw)


def handle(event: Dict[str, Any], service: ReferenceService, base_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Route one API Gateway proxy event.

    - POST {base}       body {documentIds, salt?, name?, expireIn?, idFormat?}
                        -> 200 {referenceId, expiresAt}; 400 on invalid input
    - GET  {base}/{id}  -> 200 {documentIds, name, createdAt, expiresAt}; 404 if absent/expired

    Unknown paths answer 404, wrong methods 405, anything unexpected 500.
    """
    base = (base_path or service.options.base_path).rstrip("/")
    method, path = _method_and_path(event)
    path = path.rstrip("/")

    try:
        if path == base:
            if method != "POST":
                return _error(405, "Method not allowed")
            return _create(event, service)

        if path.startswith(base + "/"):
            ref_id = path[len(base) + 1:]
            if not ref_id or "/" in ref_id:
                return _error(404, "Not found")
            if method != "GET":
                return _error(405, "Method not allowed")
            return _retrieve(ref_id, service)

        return _error(404, "Not found")
    except Exception:
        logger.exception("Unhandled error serving %s %s", method, path)
        return _error(500, "Internal server error")


def _create(event: Dict[str, Any], service: ReferenceService) -> Dict[str, Any]:
    try:
        body = _json_body(event)
        req = CreateReferenceRequest.model_validate(body)
    except (ValueError, ValidationError):
        return _error(400, "Invalid document IDs")

    try:
        resp = service.create(
            req.document_ids,
            salt=req.salt,
            name=req.name,
            expire_in=req.expire_in,
            id_format=req.id_format,
        )
    except RefStateError as err:
        if err.type is RefStateErrorType.INVALID:
            return _error(400, str(err))
        logger.error("Error creating reference state: %s", err)
        return _error(500, "Failed to create reference state")
    return _response(200, resp.model_dump(by_alias=True))


def _retrieve(reference_id: str, service: ReferenceService) -> Dict[str, Any]:
    try:
        resp = service.retrieve(reference_id)
    except RefStateError as err:
        if err.type is RefStateErrorType.NOT_FOUND:
            return _error(404, "Reference not found or expired")
        logger.error("Error retrieving reference state: %s", err)
        return _error(500, "Failed to retrieve reference state")
    return _response(200, resp.model_dump(by_alias=True))


def make_handler(service: ReferenceService, base_path: Optional[str] = None) -> Handler:
    """Bind `handle` to a service, producing a Lambda-compatible callable."""

    def _handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
        return handle(event, service, base_path)

    return _handler


def build_service_from_env() -> ReferenceService:
    """
    Assemble the service from environment configuration.

    - With REFSTATE_BUCKET set, references are kept in S3 (encrypted with
      REFSTATE_FERNET_KEY, or `fernet_key` from SSM under PARAM_PREFIX).
    - Otherwise an in-memory store is used (lives only as long as the process).
    - `server_salt` may also come from SSM under PARAM_PREFIX.
    """
    prefix = _getenv(ENV_PARAM_PREFIX)
    params: Dict[str, Optional[str]] = {}
    if prefix:
        params = _load_ssm_params(prefix, ["server_salt", "fernet_key"])

    options = ServerOptions.from_env(server_salt=params.get("server_salt"))

    bucket = _getenv(ENV_STATE_BUCKET)
    if bucket:
        fernet_key = _getenv(ENV_FERNET_KEY) or params.get("fernet_key")
        fernet_key = _require(fernet_key, f"{ENV_FERNET_KEY} or {prefix or '<PARAM_PREFIX>'}fernet_key")
        store = S3ReferenceStore(
            bucket=bucket,
            prefix=_getenv(ENV_STATE_PREFIX, DEFAULT_PREFIX) or DEFAULT_PREFIX,
            fernet_key=fernet_key,
        )
    else:
        store = MemoryReferenceStore()
    return ReferenceService(store, options)


_service: Optional[ReferenceService] = None


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """AWS Lambda entry behind API Gateway for the reference-state endpoint.

    Environment:
    - REFSTATE_BUCKET, REFSTATE_PREFIX, REFSTATE_FERNET_KEY (optional S3 storage)
    - REFSTATE_SERVER_SALT, REFSTATE_ID_FORMAT, REFSTATE_REF_KEY_LENGTH,
      REFSTATE_DEFAULT_EXPIRATION, REFSTATE_BASE_PATH
    - PARAM_PREFIX: optional SSM prefix providing server_salt, fernet_key
    """
    global _service
    if _service is None:
        _service = build_service_from_env()
    return handle(event, _service)
