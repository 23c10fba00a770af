"""생성 기록(슬롯별 진행 상황) 서비스.

이미지 생성 워커들이 슬롯 하나가 끝날 때마다 호출한다. 같은 태스크의 서로 다른
슬롯은 동시에 기록될 수 있으므로 슬롯 쓰기는 인덱스 단위 원자적 갱신으로만 한다.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends

from common.types.datetime import Clock, utc_now

from ..exceptions import (
    DuplicateGenerationError,
    GenerationNotFoundError,
    InvalidRequestError,
)
from ..models.generation import (
    DEFAULT_TASK_TYPE,
    GenerationRecord,
    GenerationStatus,
    SlotOutcome,
    SlotState,
)
from ..repositories.interfaces import GenerationRepositoryInterface
from .reservation_service import get_generation_repository


logger = logging.getLogger(__name__)


class GenerationRecordService:
    """생성 기록 관련 비즈니스 로직."""

    def __init__(
        self,
        repo: GenerationRepositoryInterface,
        clock: Clock = utc_now,
    ) -> None:
        self._repo = repo
        self._clock = clock

    def get(
        self,
        user_id: str,
        record_id: str | None = None,
        task_id: str | None = None,
    ) -> GenerationRecord:
        if not record_id and not task_id:
            raise InvalidRequestError("id or taskId is required")
        record = self._repo.find(user_id, record_id=record_id, task_id=task_id)
        if record is None:
            raise GenerationNotFoundError(
                f"generation not found (user_id={user_id} id={record_id} task_id={task_id})"
            )
        return record

    def append(
        self,
        user_id: str,
        task_id: str,
        index: int,
        image_url: str,
        model_type: str | None = None,
        gen_mode: str | None = None,
        prompt: str | None = None,
    ) -> GenerationRecord:
        """index 슬롯에 성공 결과를 기록한다. 같은 인덱스를 다시 쓰면 덮어쓴다.

        기록이 없으면(예약 해제 이후 도착한 늦은 쓰기 등) pending 기록을 새로 만든다.
        """
        outcome = SlotOutcome(
            state=SlotState.SUCCEEDED,
            image_url=image_url,
            model_type=model_type,
            gen_mode=gen_mode,
            prompt=prompt,
        )
        record = self._write_slot(user_id, task_id, index, outcome, create_missing=True)
        if record is None:
            raise RuntimeError(f"slot write returned no record (task_id={task_id})")
        return self._settle_if_visited(record)

    def mark_failed(
        self, user_id: str, task_id: str, index: int
    ) -> GenerationRecord | None:
        """index 슬롯을 "처리했지만 실패" 로 기록한다. 기록이 없으면 None."""
        outcome = SlotOutcome(state=SlotState.FAILED)
        record = self._write_slot(user_id, task_id, index, outcome, create_missing=False)
        if record is None:
            return None
        return self._settle_if_visited(record)

    def finalize(
        self, user_id: str, task_id: str, success_count: int
    ) -> GenerationStatus:
        """최종 상태를 기록한다. 여러 번 호출해도 결과가 같다."""
        if success_count < 0:
            raise InvalidRequestError("successCount must not be negative")

        status = (
            GenerationStatus.COMPLETED if success_count > 0 else GenerationStatus.FAILED
        )
        if not self._repo.settle(user_id, task_id, status):
            raise GenerationNotFoundError(
                f"generation not found (user_id={user_id} task_id={task_id})"
            )
        logger.info(
            "finalized generation as %s",
            status.value,
            extra={"user_id": user_id, "task_id": task_id},
        )
        return status

    def update_inputs(
        self, user_id: str, task_id: str, input_params: dict[str, Any]
    ) -> None:
        if not self._repo.update_inputs(user_id, task_id, input_params):
            raise GenerationNotFoundError(
                f"generation not found (user_id={user_id} task_id={task_id})"
            )

    # -------- 내부 헬퍼 --------

    def _write_slot(
        self,
        user_id: str,
        task_id: str,
        index: int,
        outcome: SlotOutcome,
        create_missing: bool,
    ) -> GenerationRecord | None:
        if index < 0:
            raise InvalidRequestError(f"slot index must not be negative: {index}")

        record = self._repo.set_slot(user_id, task_id, index, outcome)
        if record is not None:
            return record

        if not create_missing:
            logger.warning(
                "slot failure reported for unknown generation, ignoring",
                extra={"user_id": user_id, "task_id": task_id},
            )
            return None

        logger.warning(
            "slot written for unknown generation, creating orphan record",
            extra={"user_id": user_id, "task_id": task_id},
        )
        now = self._clock()
        orphan = GenerationRecord(
            user_id=user_id,
            task_id=task_id,
            task_type=DEFAULT_TASK_TYPE,
            status=GenerationStatus.PENDING,
            total_images_count=index + 1,
            reserved_count=0,
            slots={index: outcome},
            created_at=now,
            updated_at=now,
        )
        try:
            return self._repo.insert(orphan)
        except DuplicateGenerationError:
            # 다른 슬롯 쓰기가 먼저 기록을 만들었다
            record = self._repo.set_slot(user_id, task_id, index, outcome)
            if record is None:
                raise
            return record

    def _settle_if_visited(self, record: GenerationRecord) -> GenerationRecord:
        if record.status != GenerationStatus.PENDING or not record.all_visited():
            return record

        successes = sum(
            1
            for index in range(record.total_images_count)
            if record.slots[index].succeeded
        )
        if successes == 0:
            status, total = GenerationStatus.FAILED, 0
        else:
            status, total = GenerationStatus.COMPLETED, successes

        settled = self._repo.settle(
            record.user_id,
            record.task_id,
            status,
            total_images_count=total,
            only_if_status=GenerationStatus.PENDING,
        )
        if not settled:
            # 다른 쓰기가 먼저 정산했다
            return record

        logger.info(
            "generation settled as %s with %s images",
            status.value,
            total,
            extra={"user_id": record.user_id, "task_id": record.task_id},
        )
        return record.model_copy(
            update={"status": status, "total_images_count": total}
        )


def get_generation_record_service(
    repo: GenerationRepositoryInterface = Depends(get_generation_repository),
) -> GenerationRecordService:
    """FastAPI DI용 GenerationRecordService 팩토리."""

    return GenerationRecordService(repo)
