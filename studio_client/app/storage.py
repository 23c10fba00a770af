"""클라이언트 영구 캐시 (key-value).

서버의 값이 항상 우선하며, 여기 저장된 값은 새로고침 후 화면을 빠르게 복원하는 용도다.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Protocol


logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Any | None:  # pragma: no cover - Protocol
        ...

    def set(self, key: str, value: Any) -> None:  # pragma: no cover - Protocol
        ...

    def delete(self, key: str) -> None:  # pragma: no cover - Protocol
        ...


class InMemoryStorage(KeyValueStorage):
    """프로세스 메모리 저장소. 값은 JSON 으로 직렬화해 복사본을 보관한다."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class JsonFileStorage(KeyValueStorage):
    """디렉토리 안에 key 하나당 JSON 파일 하나로 저장한다."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self._dir / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        with self._lock:
            if not path.is_file():
                return None
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                # 손상된 캐시는 없는 것으로 취급한다
                logger.warning("ignoring unreadable client cache %s: %s", path, exc)
                return None

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        raw = json.dumps(value, ensure_ascii=False)
        with self._lock:
            tmp.write_text(raw, encoding="utf-8")
            tmp.replace(path)

    def delete(self, key: str) -> None:
        with self._lock:
            self._path(key).unlink(missing_ok=True)
