from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[dict]: ...

    def set(self, key: str, value: Mapping[str, Any]) -> None: ...

    def query(self, prefix: str, where: Optional[Mapping[str, Any]] = None) -> list[dict]: ...


def _matches(value: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
    if not where:
        return True
    return all(value.get(k) == v for k, v in where.items())


class MemoryStore:
    """In-process store. Values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            v = self._data.get(key)
            return None if v is None else copy.deepcopy(v)

    def set(self, key: str, value: Mapping[str, Any]) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(dict(value))

    def query(self, prefix: str, where: Optional[Mapping[str, Any]] = None) -> list[dict]:
        with self._lock:
            return [copy.deepcopy(v) for k, v in self._data.items() if k.startswith(prefix) and _matches(v, where)]


class JsonFileStore:
    """Whole store kept in one JSON document, rewritten through a temp file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, dict] = self._read()

    def _read(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            raise ValueError(f"Store file {self.path} does not hold a JSON object")
        return raw

    def _write(self, data: Mapping[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, separators=(",", ":"), ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            v = self._data.get(key)
            return None if v is None else copy.deepcopy(v)

    def set(self, key: str, value: Mapping[str, Any]) -> None:
        with self._lock:
            data = dict(self._data)
            data[key] = json.loads(json.dumps(dict(value), default=str))
            self._write(data)
            self._data = data

    def query(self, prefix: str, where: Optional[Mapping[str, Any]] = None) -> list[dict]:
        with self._lock:
            return [copy.deepcopy(v) for k, v in self._data.items() if k.startswith(prefix) and _matches(v, where)]
