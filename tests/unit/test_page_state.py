from __future__ import annotations

from typing import Any, List
from urllib.parse import parse_qs, urlsplit

from common.page_state import JsonFileSlot, UrlPageState
from refstate import RefStateEventType, RefStateManager


def _param(url: str, name: str = "refstate") -> List[str]:
    return parse_qs(urlsplit(url).query).get(name, [])


def test_save_updates_slot_and_url():
    slot: dict = {}
    page = UrlPageState("https://app.example/docs?page=2", slot)

    page.save("c:abc%3D")

    assert slot == {"refstate": "c:abc%3D"}
    assert _param(page.url) == ["c:abc%3D"]
    assert _param(page.url, "page") == ["2"]
    assert page.load() == "c:abc%3D"


def test_save_without_url_update():
    page = UrlPageState("https://app.example/docs", {})
    page.save("s:123", update_url=False)
    assert page.url == "https://app.example/docs"
    assert page.load() == "s:123"


def test_url_parameter_wins_and_is_persisted():
    slot = {"refstate": "s:old"}
    page = UrlPageState("https://app.example/?refstate=s%3Anew", slot)

    assert page.load() == "s:new"
    assert slot["refstate"] == "s:new"


def test_clear_removes_both():
    slot: dict = {}
    page = UrlPageState("https://app.example/docs?x=1", slot)
    page.save("s:123")

    page.clear()

    assert slot == {}
    assert _param(page.url) == []
    assert _param(page.url, "x") == ["1"]
    assert page.load() == ""


def test_shareable_url():
    page = UrlPageState("https://app.example/docs", {})
    assert page.shareable_url() == "https://app.example/docs"

    page.save("s:123", update_url=False)
    assert _param(page.shareable_url()) == ["s:123"]
    shared = page.shareable_url("https://share.example/view?a=b")
    assert shared.startswith("https://share.example/view?")
    assert _param(shared) == ["s:123"]


def test_custom_param_and_storage_key():
    slot: dict = {}
    page = UrlPageState("https://app.example/", slot, param="sel", storage_key="app.sel")
    page.save("s:1")
    assert slot == {"app.sel": "s:1"}
    assert _param(page.url, "sel") == ["s:1"]


def test_json_file_slot_persists(tmp_path):
    path = tmp_path / "nested" / "slot.json"
    slot = JsonFileSlot(path)
    slot["refstate"] = "c:xyz"

    reopened = JsonFileSlot(path)
    assert reopened["refstate"] == "c:xyz"
    del reopened["refstate"]
    assert dict(JsonFileSlot(path)) == {}


def test_json_file_slot_ignores_corrupt_file(tmp_path):
    path = tmp_path / "slot.json"
    path.write_text("{not json", encoding="utf-8")

    slot = JsonFileSlot(path)
    assert len(slot) == 0
    slot["k"] = "v"
    assert JsonFileSlot(path)["k"] == "v"


def test_json_file_slot_default_location(tmp_path, monkeypatch):
    monkeypatch.setenv("REFSTATE_CACHE_DIR", str(tmp_path))
    JsonFileSlot()["refstate"] = "s:1"
    assert (tmp_path / "refstate.json").exists()


def test_manager_page_state_flow(tmp_path):
    page = UrlPageState("https://app.example/docs", JsonFileSlot(tmp_path / "slot.json"))
    manager = RefStateManager(page_state=page)
    changes: List[Any] = []
    manager.on(RefStateEventType.CHANGE, changes.append)

    token = manager.create_ref_state(["a", "b"])
    assert manager.save_ref_state(token) == token
    assert manager.get_current_ref_state() == token
    assert manager.get_documents_from_ref_state(manager.get_current_ref_state()) == ["a", "b"]

    shared = manager.get_shareable_url("https://share.example/")
    receiver = RefStateManager(page_state=UrlPageState(shared, {}))
    assert receiver.get_documents_from_ref_state(receiver.get_current_ref_state()) == ["a", "b"]

    manager.clear_ref_state()
    assert manager.get_current_ref_state() == ""
    assert changes == [{"ref_state_token": token}, {"ref_state_token": None}]


def test_manager_without_page_state_is_headless():
    manager = RefStateManager()
    assert manager.save_ref_state("c:abc") == "c:abc"
    assert manager.save_ref_state("") == ""
    assert manager.get_current_ref_state() == ""
    assert manager.get_shareable_url() == ""
    manager.clear_ref_state()
