from __future__ import annotations

import itertools
import logging

import pytest

from quota_service.app.exceptions import GenerationNotFoundError, InvalidRequestError
from quota_service.app.models.generation import (
    GenerationRecord,
    GenerationStatus,
    SlotState,
)
from quota_service.app.services.generation_record_service import (
    GenerationRecordService,
)

from .quota_fakes import FIXED_NOW, FakeGenerationRepository, fixed_clock


USER = "user-001"


def _build_service(total: int = 3) -> tuple[GenerationRecordService, FakeGenerationRepository]:
    repo = FakeGenerationRepository()
    repo.insert(
        GenerationRecord(
            user_id=USER,
            task_id="task-1",
            total_images_count=total,
            reserved_count=total,
            created_at=FIXED_NOW,
            updated_at=FIXED_NOW,
        )
    )
    return GenerationRecordService(repo, clock=fixed_clock), repo


def _url(index: int) -> str:
    return f"https://cdn.example.com/task-1/{index}.png"


def test_append_all_slots_completes_generation() -> None:
    service, _ = _build_service(total=3)

    statuses = []
    for index in range(3):
        record = service.append(USER, "task-1", index, _url(index), model_type="pro")
        statuses.append(record.status)

    assert statuses == [
        GenerationStatus.PENDING,
        GenerationStatus.PENDING,
        GenerationStatus.COMPLETED,
    ]
    record = service.get(USER, task_id="task-1")
    assert record.total_images_count == 3
    assert record.output_image_urls == [_url(0), _url(1), _url(2)]
    assert record.output_model_types == ["pro", "pro", "pro"]


def test_append_overwrites_the_same_index() -> None:
    service, _ = _build_service(total=2)

    service.append(USER, "task-1", 0, _url(0))
    record = service.append(USER, "task-1", 0, _url(9))

    assert record.output_image_urls == [_url(9), None]
    assert record.status == GenerationStatus.PENDING


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_settlement_does_not_depend_on_write_order(order: tuple[int, ...]) -> None:
    service, _ = _build_service(total=3)

    for index in order:
        if index == 1:
            service.mark_failed(USER, "task-1", index)
        else:
            service.append(USER, "task-1", index, _url(index))

    record = service.get(USER, task_id="task-1")
    assert record.status == GenerationStatus.COMPLETED
    assert record.total_images_count == 2
    assert record.slots[1].state == SlotState.FAILED


def test_all_failed_slots_fail_generation() -> None:
    service, _ = _build_service(total=2)

    service.mark_failed(USER, "task-1", 0)
    record = service.mark_failed(USER, "task-1", 1)

    assert record is not None
    assert record.status == GenerationStatus.FAILED
    assert record.total_images_count == 0


def test_failed_slot_is_distinct_from_unattempted() -> None:
    service, _ = _build_service(total=3)

    record = service.mark_failed(USER, "task-1", 1)

    assert record is not None
    assert 0 not in record.slots
    assert record.slots[1].state == SlotState.FAILED
    assert record.status == GenerationStatus.PENDING


def test_append_on_missing_record_creates_orphan(caplog: pytest.LogCaptureFixture) -> None:
    repo = FakeGenerationRepository()
    service = GenerationRecordService(repo, clock=fixed_clock)

    with caplog.at_level(logging.WARNING):
        record = service.append(USER, "late-task", 2, _url(2))

    assert record.status == GenerationStatus.PENDING
    assert record.total_images_count == 3
    assert record.reserved_count == 0
    assert record.output_image_urls == [None, None, _url(2)]
    assert "orphan" in caplog.text


def test_mark_failed_on_missing_record_is_ignored() -> None:
    repo = FakeGenerationRepository()
    service = GenerationRecordService(repo, clock=fixed_clock)

    assert service.mark_failed(USER, "missing", 0) is None
    assert repo.records == {}


def test_negative_index_is_rejected() -> None:
    service, _ = _build_service()

    with pytest.raises(InvalidRequestError):
        service.append(USER, "task-1", -1, _url(0))


def test_finalize_is_idempotent() -> None:
    service, _ = _build_service(total=2)

    first = service.finalize(USER, "task-1", success_count=1)
    second = service.finalize(USER, "task-1", success_count=1)

    assert first == second == GenerationStatus.COMPLETED
    record = service.get(USER, task_id="task-1")
    assert record.status == GenerationStatus.COMPLETED
    assert record.total_images_count == 2


def test_finalize_without_successes_fails_generation() -> None:
    service, _ = _build_service()

    assert service.finalize(USER, "task-1", success_count=0) == GenerationStatus.FAILED


def test_finalize_unknown_task_raises() -> None:
    service, _ = _build_service()

    with pytest.raises(GenerationNotFoundError):
        service.finalize(USER, "missing", success_count=1)


def test_settled_generation_is_not_settled_again() -> None:
    service, _ = _build_service(total=1)
    service.finalize(USER, "task-1", success_count=0)

    record = service.append(USER, "task-1", 0, _url(0))

    assert record.status == GenerationStatus.FAILED


def test_update_inputs_and_get_by_id() -> None:
    service, repo = _build_service()
    record_id = next(iter(repo.records))

    service.update_inputs(USER, "task-1", {"prompt": "white studio", "seed": 7})

    record = service.get(USER, record_id=record_id)
    assert record.input_params == {"prompt": "white studio", "seed": 7}


def test_get_requires_identifier_and_owner() -> None:
    service, repo = _build_service()
    record_id = next(iter(repo.records))

    with pytest.raises(InvalidRequestError):
        service.get(USER)
    with pytest.raises(GenerationNotFoundError):
        service.get("someone-else", record_id=record_id)
