"""클라이언트 quota 캐시.

화면의 "생성" 버튼이 서버 왕복 없이 바로 잔액을 판단할 수 있도록 유저별 마지막
잔액을 들고 있다. 최종 판단은 항상 서버의 예약(reserve)이 한다.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

from pydantic import ValidationError

from common.types.datetime import Clock, utc_now

from .config import ClientConfig
from .exceptions import QuotaApiError
from .models import QuotaSnapshot
from .storage import KeyValueStorage


logger = logging.getLogger(__name__)

QUOTA_STORAGE_KEY = "quota-snapshots"


class QuotaFetcher(Protocol):
    def get_quota(self, user_id: str) -> QuotaSnapshot:  # pragma: no cover - Protocol
        ...


class ClientQuotaCache:
    """유저별 QuotaSnapshot 캐시. 인스턴스가 자기 상태를 소유하며 스레드 안전하다."""

    def __init__(
        self,
        api: QuotaFetcher,
        storage: KeyValueStorage,
        config: ClientConfig | None = None,
        clock: Clock = utc_now,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._api = api
        self._storage = storage
        self._config = config or ClientConfig()
        self._clock = clock
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="quota-refresh"
        )
        self._owns_executor = executor is None
        self._lock = threading.Lock()
        self._in_flight: dict[str, Future] = {}
        self._snapshots: dict[str, QuotaSnapshot] = self._load()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "ClientQuotaCache":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------- 조회 --------

    def get(self, user_id: str) -> QuotaSnapshot | None:
        with self._lock:
            return self._snapshots.get(user_id)

    def is_fresh(self, user_id: str) -> bool:
        snapshot = self.get(user_id)
        return snapshot is not None and snapshot.is_fresh(
            self._clock(), self._config.quota_fresh_for
        )

    def check_quota(self, user_id: str, image_count: int = 1) -> bool:
        """image_count 장을 생성할 잔액이 있는지 즉시 판단한다.

        - 캐시가 신선하면 캐시로 답하고 백그라운드 갱신을 건다.
        - 없거나 오래됐으면 동기로 조회한다. 조회 실패 시 True (서버 예약이 최종 판단).
        """
        snapshot = self.get(user_id)
        if snapshot is not None and snapshot.is_fresh(
            self._clock(), self._config.quota_fresh_for
        ):
            self.refresh_in_background(user_id)
            return snapshot.remaining_quota >= image_count

        try:
            snapshot = self.refresh(user_id)
        except QuotaApiError as exc:
            logger.warning("quota check failed, allowing request: %s", exc)
            return True
        return snapshot.remaining_quota >= image_count

    # -------- 갱신 --------

    def refresh(self, user_id: str) -> QuotaSnapshot:
        """서버에서 잔액을 다시 읽어 캐시에 반영한다."""
        snapshot = self._api.get_quota(user_id)
        self._store(user_id, snapshot)
        return snapshot

    def refresh_in_background(self, user_id: str) -> Future | None:
        """유저당 하나의 갱신만 동시에 돈다. 이미 진행 중이면 None."""
        with self._lock:
            if user_id in self._in_flight:
                return None
            future = self._executor.submit(self.refresh, user_id)
            self._in_flight[user_id] = future

        future.add_done_callback(lambda f: self._on_refreshed(user_id, f))
        return future

    def apply_available(self, user_id: str, available: int) -> None:
        """예약 응답의 available 로 캐시를 낙관적으로 맞춘다."""
        with self._lock:
            current = self._snapshots.get(user_id)
            if current is None:
                return
            spent = current.remaining_quota - available
            updated = current.model_copy(
                update={
                    "remaining_quota": available,
                    "used_count": max(0, current.used_count + spent),
                }
            )
            self._snapshots[user_id] = updated
            self._persist_locked()

    def clear(self, user_id: str | None = None) -> None:
        with self._lock:
            if user_id is None:
                self._snapshots.clear()
            else:
                self._snapshots.pop(user_id, None)
            self._persist_locked()

    # -------- 내부 헬퍼 --------

    def _on_refreshed(self, user_id: str, future: Future) -> None:
        with self._lock:
            self._in_flight.pop(user_id, None)
        exc = future.exception()
        if exc is not None:
            logger.warning("background quota refresh failed for %s: %s", user_id, exc)

    def _store(self, user_id: str, snapshot: QuotaSnapshot) -> None:
        with self._lock:
            self._snapshots[user_id] = snapshot
            self._persist_locked()

    def _load(self) -> dict[str, QuotaSnapshot]:
        raw = self._storage.get(QUOTA_STORAGE_KEY) or {}
        snapshots: dict[str, QuotaSnapshot] = {}
        for user_id, item in raw.items():
            try:
                snapshots[user_id] = QuotaSnapshot.model_validate(item)
            except ValidationError as exc:
                logger.warning("dropping unreadable quota snapshot: %s", exc)
        return snapshots

    def _persist_locked(self) -> None:
        self._storage.set(
            QUOTA_STORAGE_KEY,
            {
                user_id: snapshot.model_dump(mode="json", by_alias=True)
                for user_id, snapshot in self._snapshots.items()
            },
        )
