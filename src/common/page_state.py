from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, Iterator, MutableMapping, Optional, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


DEFAULT_CACHE_DIR_ENV = "REFSTATE_CACHE_DIR"
DEFAULT_PARAM = "refstate"


def _default_slot_file() -> Path:
    # Prefer explicit env var, else project-local .cache folder
    base = os.environ.get(DEFAULT_CACHE_DIR_ENV)
    if base:
        return Path(base) / "refstate.json"
    return Path(".cache") / "refstate.json"


class PageState(Protocol):
    def load(self) -> str: ...

    def save(self, token: str, *, update_url: bool = True) -> None: ...

    def clear(self) -> None: ...

    def shareable_url(self, base_url: Optional[str] = None) -> str: ...


class JsonFileSlot(MutableMapping[str, str]):
    """
    Tiny JSON-file persistence slot, the local equivalent of browser storage.

    - Backed by a single JSON object file: { key: value, ... }
    - Loaded lazily on first access; written through on every change.
    - A corrupt file is ignored and replaced on the next write; write failures
      are ignored (best-effort persistence).
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = Path(path) if path else _default_slot_file()
        self._data: Dict[str, str] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            if self._path.exists():
                with self._path.open("r", encoding="utf-8") as f:
                    raw = json.load(f)
                    if isinstance(raw, dict):
                        self._data = {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}
        except Exception:
            # Corrupt slot: ignore and start fresh
            self._data = {}

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
        except Exception:
            pass

    def __getitem__(self, key: str) -> str:
        self._ensure_loaded()
        return self._data[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._ensure_loaded()
        self._data[key] = value
        self._save()

    def __delitem__(self, key: str) -> None:
        self._ensure_loaded()
        del self._data[key]
        self._save()

    def __iter__(self) -> Iterator[str]:
        self._ensure_loaded()
        return iter(dict(self._data))

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._data)


def _with_param(url: str, param: str, value: Optional[str]) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != param]
    if value is not None:
        query.append((param, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def _get_param(url: str, param: str) -> Optional[str]:
    for k, v in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if k == param:
            return v
    return None


class UrlPageState:
    """
    Page state held as a current URL plus a persistence slot.

    - `load()` prefers the URL query parameter (shared links) and copies it into
      the slot; otherwise it falls back to the slot.
    - `save()` writes the slot and, when `update_url`, replaces the parameter in
      the current URL.
    - `clear()` removes the token from both places.

    `url` is whatever the host considers the current page address; read it back
    through the `url` property after `save`/`clear`.
    """

    def __init__(
        self,
        url: str = "",
        slot: Optional[MutableMapping[str, str]] = None,
        *,
        param: str = DEFAULT_PARAM,
        storage_key: str = DEFAULT_PARAM,
    ) -> None:
        self._url = url
        self._slot: MutableMapping[str, str] = slot if slot is not None else {}
        self._param = param
        self._storage_key = storage_key

    @property
    def url(self) -> str:
        return self._url

    def load(self) -> str:
        from_url = _get_param(self._url, self._param) if self._url else None
        if from_url:
            self._slot[self._storage_key] = from_url
            return from_url
        return self._slot.get(self._storage_key) or ""

    def save(self, token: str, *, update_url: bool = True) -> None:
        self._slot[self._storage_key] = token
        if update_url and self._url:
            self._url = _with_param(self._url, self._param, token)

    def clear(self) -> None:
        self._slot.pop(self._storage_key, None)
        if self._url and _get_param(self._url, self._param) is not None:
            self._url = _with_param(self._url, self._param, None)

    def shareable_url(self, base_url: Optional[str] = None) -> str:
        token = self.load()
        if not token:
            return self._url
        return _with_param(base_url or self._url, self._param, token)


__all__ = ["PageState", "UrlPageState", "JsonFileSlot"]
