"""클라이언트 태스크 미러.

진행 중인 생성 태스크와 슬롯별 상태를 로컬에 들고 있어, 화면이 서버를 매번
폴링하지 않고 진행 상황을 그릴 수 있게 한다.

- 슬롯 상태: pending -> generating -> completed | failed
- 태스크 상태는 슬롯 상태에서 계산된다 (ClientTask.status)
- 변경될 때마다 이미지 데이터를 뺀 축약본을 저장소에 기록한다
- 새로고침으로 복원할 때, 오래 진행 중인 태스크는 실패로 확정한다
  (새로고침이 진행 중 콜백을 끊어 버리므로 스스로는 끝날 수 없다)
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from common.types.datetime import Clock, utc_now

from .config import ClientConfig
from .exceptions import TaskNotFoundError
from .models import ClientTask, ImageSlot, SlotStatus, TaskStatus
from .storage import KeyValueStorage


logger = logging.getLogger(__name__)

TASKS_STORAGE_KEY = "generation-tasks"
INLINE_IMAGE_PLACEHOLDER = "[inline-image]"
STALE_TASK_ERROR = "timeout"

_SLOT_FIELDS = ("status", "image_url", "model_type", "gen_mode", "error")


def _elide_inline_image(url: str | None) -> str | None:
    if url and url.startswith("data:"):
        return INLINE_IMAGE_PLACEHOLDER
    return url


class ClientTaskMirror:
    """태스크 상태 저장소. 인스턴스가 자기 상태를 소유하며 스레드 안전하다."""

    def __init__(
        self,
        storage: KeyValueStorage,
        config: ClientConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._storage = storage
        self._config = config or ClientConfig()
        self._clock = clock
        self._tasks: dict[str, ClientTask] = {}
        self._lock = threading.Lock()

    # -------- 조회 --------

    def get_task(self, task_id: str) -> ClientTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def tasks(self) -> list[ClientTask]:
        """최신순 전체 태스크."""
        with self._lock:
            return [task.model_copy(deep=True) for task in self._ordered()]

    def active_tasks(self) -> list[ClientTask]:
        return [task for task in self.tasks() if not task.status.terminal]

    def completed_tasks(self) -> list[ClientTask]:
        return [task for task in self.tasks() if task.status == TaskStatus.COMPLETED]

    # -------- 변경 --------

    def add_task(
        self,
        task_type: str,
        expected_image_count: int = 0,
        task_id: str | None = None,
    ) -> ClientTask:
        """예약 직전에 pending 태스크를 만든다. 슬롯은 아직 없다."""
        task = ClientTask(
            id=task_id or uuid.uuid4().hex,
            type=task_type,
            expected_image_count=expected_image_count,
            created_at=self._clock(),
        )
        with self._lock:
            self._tasks[task.id] = task
            self._persist_locked()
            return task.model_copy(deep=True)

    def init_slots(self, task_id: str, count: int) -> ClientTask:
        """예약이 확정되면 count 개의 pending 슬롯을 만든다."""
        if count <= 0:
            raise ValueError(f"slot count must be positive: {count}")
        with self._lock:
            task = self._require(task_id)
            task.image_slots = [ImageSlot(index=i) for i in range(count)]
            task.expected_image_count = count
            self._persist_locked()
            return task.model_copy(deep=True)

    def update_slot(self, task_id: str, index: int, **patch: Any) -> ClientTask:
        """슬롯 하나에 patch 를 덮어쓴다.

        patch 키: status, image_url, model_type, gen_mode, error
        """
        unknown = set(patch) - set(_SLOT_FIELDS)
        if unknown:
            raise ValueError(f"unknown slot fields: {sorted(unknown)}")

        with self._lock:
            task = self._require(task_id)
            if index < 0 or index >= len(task.image_slots):
                raise IndexError(
                    f"slot {index} out of range for task {task_id} "
                    f"({len(task.image_slots)} slots)"
                )
            slot = task.image_slots[index]
            task.image_slots[index] = ImageSlot.model_validate(
                {**slot.model_dump(), **patch}
            )
            self._persist_locked()
            return task.model_copy(deep=True)

    def remove_task(self, task_id: str) -> bool:
        with self._lock:
            removed = self._tasks.pop(task_id, None) is not None
            if removed:
                self._persist_locked()
            return removed

    # -------- 복원 / 정리 --------

    def rehydrate(self) -> list[str]:
        """저장된 축약본으로 상태를 복원하고 오래된 진행 중 태스크를 정리한다.

        Returns:
            실패로 확정된 태스크 id 목록
        """
        raw = self._storage.get(TASKS_STORAGE_KEY) or []
        restored: dict[str, ClientTask] = {}
        for item in raw:
            try:
                task = ClientTask.model_validate(item)
            except ValidationError as exc:
                logger.warning("dropping unreadable persisted task: %s", exc)
                continue
            restored[task.id] = task

        with self._lock:
            self._tasks = restored

        return self.cleanup_stale()

    def cleanup_stale(self, now: datetime | None = None) -> list[str]:
        """stale_after 보다 오래 진행 중인 태스크를 timeout 실패로 확정한다."""
        now = now or self._clock()
        expired: list[str] = []

        with self._lock:
            for task in self._tasks.values():
                if task.status.terminal:
                    continue
                if now - task.created_at <= self._config.stale_after:
                    continue

                task.forced_status = TaskStatus.FAILED
                task.error = STALE_TASK_ERROR
                task.image_slots = [
                    slot
                    if slot.status.terminal
                    else slot.model_copy(
                        update={"status": SlotStatus.FAILED, "error": STALE_TASK_ERROR}
                    )
                    for slot in task.image_slots
                ]
                expired.append(task.id)

            if expired:
                logger.info("marked %s stale tasks as failed", len(expired))
                self._persist_locked()

        return expired

    def snapshot(self) -> list[dict[str, Any]]:
        """저장소에 기록되는 축약본과 같은 값."""
        with self._lock:
            return self._snapshot_locked()

    # -------- 내부 헬퍼 --------

    def _require(self, task_id: str) -> ClientTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"task not found: {task_id}")
        return task

    def _ordered(self) -> list[ClientTask]:
        return sorted(self._tasks.values(), key=lambda t: t.created_at, reverse=True)

    def _snapshot_locked(self) -> list[dict[str, Any]]:
        limit = self._config.max_persisted_tasks
        kept = [
            task
            for rank, task in enumerate(self._ordered())
            if rank < limit or not task.status.terminal
        ]

        items: list[dict[str, Any]] = []
        for task in kept:
            data = task.model_dump(mode="json", by_alias=True)
            for slot in data["imageSlots"]:
                slot["imageUrl"] = _elide_inline_image(slot.get("imageUrl"))
            items.append(data)
        return items

    def _persist_locked(self) -> None:
        self._storage.set(TASKS_STORAGE_KEY, self._snapshot_locked())
