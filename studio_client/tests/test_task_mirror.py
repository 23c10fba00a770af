from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from studio_client.app.config import ClientConfig
from studio_client.app.exceptions import TaskNotFoundError
from studio_client.app.models import SlotStatus, TaskStatus
from studio_client.app.storage import InMemoryStorage, JsonFileStorage
from studio_client.app.task_mirror import (
    INLINE_IMAGE_PLACEHOLDER,
    TASKS_STORAGE_KEY,
    ClientTaskMirror,
)


T0 = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)
EPSILON = timedelta(seconds=1)


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _build_mirror(storage=None, max_persisted_tasks: int = 10):
    clock = MutableClock(T0)
    mirror = ClientTaskMirror(
        storage or InMemoryStorage(),
        ClientConfig(max_persisted_tasks=max_persisted_tasks),
        clock=clock,
    )
    return mirror, clock


def test_task_status_is_derived_from_slots() -> None:
    mirror, _ = _build_mirror()

    task = mirror.add_task("model_studio", task_id="task-1")
    assert task.status == TaskStatus.PENDING

    task = mirror.init_slots("task-1", 2)
    assert task.status == TaskStatus.GENERATING
    assert [slot.status for slot in task.image_slots] == [SlotStatus.PENDING] * 2

    mirror.update_slot("task-1", 0, status=SlotStatus.GENERATING)
    task = mirror.update_slot(
        "task-1", 0, status=SlotStatus.COMPLETED, image_url="https://cdn/0.png"
    )
    assert task.status == TaskStatus.GENERATING

    task = mirror.update_slot("task-1", 1, status=SlotStatus.FAILED, error="nsfw")
    assert task.status == TaskStatus.COMPLETED
    assert task.image_slots[0].image_url == "https://cdn/0.png"


def test_all_failed_slots_fail_the_task() -> None:
    mirror, _ = _build_mirror()
    mirror.add_task("model_studio", task_id="task-1")
    mirror.init_slots("task-1", 2)

    mirror.update_slot("task-1", 0, status=SlotStatus.FAILED)
    task = mirror.update_slot("task-1", 1, status=SlotStatus.FAILED)

    assert task.status == TaskStatus.FAILED
    assert mirror.active_tasks() == []
    assert mirror.completed_tasks() == []


def test_update_slot_validates_input() -> None:
    mirror, _ = _build_mirror()
    mirror.add_task("model_studio", task_id="task-1")
    mirror.init_slots("task-1", 1)

    with pytest.raises(TaskNotFoundError):
        mirror.update_slot("missing", 0, status=SlotStatus.COMPLETED)
    with pytest.raises(IndexError):
        mirror.update_slot("task-1", 3, status=SlotStatus.COMPLETED)
    with pytest.raises(ValueError):
        mirror.update_slot("task-1", 0, colour="red")


def test_cleanup_stale_respects_the_window_boundary() -> None:
    mirror, _ = _build_mirror()
    mirror.add_task("model_studio", task_id="task-1")
    window = ClientConfig().stale_after

    untouched = mirror.cleanup_stale(T0 + window - EPSILON)
    assert untouched == []
    assert mirror.get_task("task-1").status == TaskStatus.PENDING

    expired = mirror.cleanup_stale(T0 + window + EPSILON)
    task = mirror.get_task("task-1")
    assert expired == ["task-1"]
    assert task.status == TaskStatus.FAILED
    assert task.error == "timeout"


def test_cleanup_stale_fails_in_flight_slots_only() -> None:
    mirror, _ = _build_mirror()
    mirror.add_task("model_studio", task_id="task-1")
    mirror.init_slots("task-1", 2)
    mirror.update_slot("task-1", 0, status=SlotStatus.COMPLETED, image_url="https://cdn/0.png")

    mirror.cleanup_stale(T0 + timedelta(minutes=6))

    task = mirror.get_task("task-1")
    assert task.image_slots[0].status == SlotStatus.COMPLETED
    assert task.image_slots[1].status == SlotStatus.FAILED
    assert task.image_slots[1].error == "timeout"


def test_cleanup_stale_leaves_finished_tasks_alone() -> None:
    mirror, _ = _build_mirror()
    mirror.add_task("model_studio", task_id="task-1")
    mirror.init_slots("task-1", 1)
    mirror.update_slot("task-1", 0, status=SlotStatus.COMPLETED)

    assert mirror.cleanup_stale(T0 + timedelta(hours=1)) == []
    assert mirror.get_task("task-1").status == TaskStatus.COMPLETED


def test_rehydrate_restores_and_fails_stale_tasks(tmp_path) -> None:
    storage = JsonFileStorage(tmp_path)
    mirror, clock = _build_mirror(storage)
    mirror.add_task("model_studio", task_id="old")
    mirror.init_slots("old", 2)
    clock.now = T0 + timedelta(minutes=4)
    mirror.add_task("model_studio", task_id="recent")

    reloaded, reloaded_clock = _build_mirror(storage)
    reloaded_clock.now = T0 + timedelta(minutes=6)
    expired = reloaded.rehydrate()

    assert expired == ["old"]
    assert reloaded.get_task("old").status == TaskStatus.FAILED
    assert reloaded.get_task("recent").status == TaskStatus.PENDING
    assert [task.id for task in reloaded.active_tasks()] == ["recent"]


def test_persisted_snapshot_elides_inline_images() -> None:
    storage = InMemoryStorage()
    mirror, _ = _build_mirror(storage)
    mirror.add_task("model_studio", task_id="task-1")
    mirror.init_slots("task-1", 2)
    mirror.update_slot(
        "task-1", 0, status=SlotStatus.COMPLETED, image_url="data:image/png;base64,AAAA"
    )
    mirror.update_slot(
        "task-1", 1, status=SlotStatus.COMPLETED, image_url="https://cdn/1.png"
    )

    persisted = storage.get(TASKS_STORAGE_KEY)

    slots = persisted[0]["imageSlots"]
    assert slots[0]["imageUrl"] == INLINE_IMAGE_PLACEHOLDER
    assert slots[1]["imageUrl"] == "https://cdn/1.png"
    # 메모리 상태는 원본 그대로
    assert mirror.get_task("task-1").image_slots[0].image_url.startswith("data:")


def test_persisted_snapshot_keeps_recent_and_active_tasks() -> None:
    storage = InMemoryStorage()
    mirror, clock = _build_mirror(storage, max_persisted_tasks=2)

    mirror.add_task("model_studio", task_id="active-old")
    mirror.init_slots("active-old", 1)
    for i in range(3):
        clock.now = T0 + timedelta(seconds=i + 1)
        mirror.add_task("model_studio", task_id=f"done-{i}")
        mirror.init_slots(f"done-{i}", 1)
        mirror.update_slot(f"done-{i}", 0, status=SlotStatus.COMPLETED)

    persisted_ids = [item["id"] for item in storage.get(TASKS_STORAGE_KEY)]

    assert persisted_ids == ["done-2", "done-1", "active-old"]
    assert len(mirror.tasks()) == 4


def test_remove_task() -> None:
    storage = InMemoryStorage()
    mirror, _ = _build_mirror(storage)
    mirror.add_task("model_studio", task_id="task-1")

    assert mirror.remove_task("task-1") is True
    assert mirror.remove_task("task-1") is False
    assert mirror.get_task("task-1") is None
    assert storage.get(TASKS_STORAGE_KEY) == []


def test_mirrors_are_independent() -> None:
    first, _ = _build_mirror()
    second, _ = _build_mirror()

    first.add_task("model_studio", task_id="task-1")

    assert second.get_task("task-1") is None
