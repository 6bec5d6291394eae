from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from api.handler import handle
from api.service import ReferenceService
from common.errors import RefStateError, RefStateErrorType
from common.ref_client import RefStateHttpClient
from refstate import RefStateManager, RefStateOptions
from state.memory_store import MemoryReferenceStore


ENDPOINT = "https://app.example/api/ref-state"


def _gateway_transport(service: ReferenceService, seen: List[httpx.Request]) -> httpx.MockTransport:
    """Serve requests through the Lambda handler, as API Gateway would."""

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        event = {
            "httpMethod": request.method,
            "path": request.url.path,
            "body": request.content.decode("utf-8") or None,
        }
        result = handle(event, service)
        return httpx.Response(result["statusCode"], content=result["body"], headers=result["headers"])

    return httpx.MockTransport(handler)


def test_create_sends_expected_body():
    captured: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["url"] = str(request.url)
        captured["json"] = json.loads(request.content)
        return httpx.Response(200, json={"referenceId": "abc123", "expiresAt": 42})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    with RefStateHttpClient(ENDPOINT + "/", client=client) as rc:
        resp = rc.create(["a", "b"], salt=True, expire_in=1000)

    assert resp.reference_id == "abc123"
    assert resp.expires_at == 42
    assert captured["method"] == "POST"
    assert captured["url"] == ENDPOINT
    assert captured["json"] == {
        "documentIds": ["a", "b"],
        "salt": True,
        "name": "Unnamed Selection",
        "expireIn": 1000,
    }


def test_retrieve_404_is_not_found():
    client = httpx.Client(transport=httpx.MockTransport(lambda _: httpx.Response(404, json={"error": "x"})))
    rc = RefStateHttpClient(ENDPOINT, client=client)

    with pytest.raises(RefStateError) as ei:
        rc.retrieve("nope")
    assert ei.value.type is RefStateErrorType.NOT_FOUND


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": "Invalid document IDs"}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["unexpected"]),
        httpx.Response(200, json={"no": "referenceId"}),
    ],
)
def test_create_failures_are_network_errors(response):
    client = httpx.Client(transport=httpx.MockTransport(lambda _: response))
    rc = RefStateHttpClient(ENDPOINT, client=client)

    with pytest.raises(RefStateError) as ei:
        rc.create(["a"])
    assert ei.value.type is RefStateErrorType.NETWORK


@pytest.mark.parametrize("status", [500, 502, 503])
def test_5xx_is_server_error(status):
    client = httpx.Client(transport=httpx.MockTransport(lambda _: httpx.Response(status, text="boom")))
    rc = RefStateHttpClient(ENDPOINT, client=client)

    with pytest.raises(RefStateError) as create_err:
        rc.create(["a"])
    with pytest.raises(RefStateError) as retrieve_err:
        rc.retrieve("abc")

    assert create_err.value.type is RefStateErrorType.SERVER
    assert retrieve_err.value.type is RefStateErrorType.SERVER


def test_manager_reports_server_error_on_resolve_as_network():
    client = httpx.Client(transport=httpx.MockTransport(lambda _: httpx.Response(500, text="boom")))
    manager = RefStateManager(backend=RefStateHttpClient(ENDPOINT, client=client))

    with pytest.raises(RefStateError) as ei:
        manager.get_documents_from_ref_state("s:abc")
    assert ei.value.type is RefStateErrorType.NETWORK


def test_transport_error_is_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    rc = RefStateHttpClient(ENDPOINT, client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(RefStateError) as ei:
        rc.retrieve("abc")
    assert ei.value.type is RefStateErrorType.NETWORK


def test_manager_over_http_end_to_end():
    store = MemoryReferenceStore(proactive_eviction=False)
    seen: List[httpx.Request] = []
    client = httpx.Client(transport=_gateway_transport(ReferenceService(store), seen))
    backend = RefStateHttpClient(ENDPOINT, client=client)
    manager = RefStateManager(RefStateOptions(max_client_docs=50), backend=backend)

    ids = [f"doc-{i}" for i in range(51)]
    token = manager.create_ref_state(ids, name="Large")

    assert token.startswith("s:")
    assert seen[0].method == "POST"
    assert manager.get_documents_from_ref_state(token) == ids
    assert seen[1].url.path == f"/api/ref-state/{token[2:]}"

    store.delete(token[2:])
    with pytest.raises(RefStateError) as ei:
        manager.get_documents_from_ref_state(token)
    assert ei.value.type is RefStateErrorType.NOT_FOUND


def test_manager_falls_back_when_server_rejects():
    client = httpx.Client(transport=httpx.MockTransport(lambda _: httpx.Response(503, text="down")))
    manager = RefStateManager(backend=RefStateHttpClient(ENDPOINT, client=client))

    ids = [f"doc-{i}" for i in range(51)]
    token = manager.create_ref_state(ids)

    assert token.startswith("c:")
    assert manager.get_documents_from_ref_state(token) == ids
