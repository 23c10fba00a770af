"""generations MongoDB 도큐먼트.

슬롯 결과는 {"<index>": {...}} 형태의 서브도큐먼트 맵으로 저장한다.
Mongo 필드 키는 문자열이어야 하므로 인덱스/풀 키를 문자열로 변환해 둔다.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from common.mongo.types import BaseDocument, from_object_id

from ...models.generation import (
    DEFAULT_TASK_TYPE,
    GenerationRecord,
    GenerationStatus,
    SlotOutcome,
    SlotState,
)
from ...models.quota import CreditPool


class SlotDocument(BaseModel):
    state: SlotState
    image_url: str | None = None
    model_type: str | None = None
    gen_mode: str | None = None
    prompt: str | None = None

    @classmethod
    def from_domain(cls, outcome: SlotOutcome) -> "SlotDocument":
        return cls.model_validate(outcome.model_dump())

    def to_mongo_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_domain(self) -> SlotOutcome:
        return SlotOutcome.model_validate(self.model_dump())


class GenerationDocument(BaseDocument):
    """MongoDB generations 컬렉션 도큐먼트 모델."""

    user_id: str
    task_id: str
    task_type: str = DEFAULT_TASK_TYPE
    status: GenerationStatus = GenerationStatus.PENDING
    total_images_count: int = 0
    reserved_count: int = 0
    refunded_count: int = 0
    held_pools: dict[str, int] = {}
    slots: dict[str, SlotDocument] = {}
    input_params: dict[str, Any] | None = None

    @classmethod
    def from_domain(cls, record: GenerationRecord) -> "GenerationDocument":
        return cls.model_validate(
            {
                "_id": record.id,
                "user_id": record.user_id,
                "task_id": record.task_id,
                "task_type": record.task_type,
                "status": record.status,
                "total_images_count": record.total_images_count,
                "reserved_count": record.reserved_count,
                "refunded_count": record.refunded_count,
                "held_pools": pools_to_mongo(record.held_pools),
                "slots": {
                    str(index): SlotDocument.from_domain(outcome)
                    for index, outcome in record.slots.items()
                },
                "input_params": record.input_params,
                "created_at": record.created_at,
                "updated_at": record.updated_at,
            }
        )

    def to_mongo_record(self) -> dict[str, Any]:
        record = super().to_mongo_record()
        record["status"] = self.status.value
        record["slots"] = {
            key: slot.to_mongo_record() for key, slot in self.slots.items()
        }
        return record

    def to_domain(self) -> GenerationRecord:
        slots: dict[int, SlotOutcome] = {}
        for key, slot in self.slots.items():
            # 숫자가 아닌 키는 스키마 밖의 값이므로 무시한다.
            if key.isdigit():
                slots[int(key)] = slot.to_domain()

        held_pools: dict[CreditPool, int] = {}
        for key, amount in self.held_pools.items():
            try:
                held_pools[CreditPool(key)] = amount
            except ValueError:
                continue

        return GenerationRecord(
            id=from_object_id(self.id),
            user_id=self.user_id,
            task_id=self.task_id,
            task_type=self.task_type,
            status=self.status,
            total_images_count=max(0, self.total_images_count),
            reserved_count=self.reserved_count,
            refunded_count=self.refunded_count,
            held_pools=held_pools,
            slots=slots,
            input_params=self.input_params,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


def pools_to_mongo(pools: dict[CreditPool, int]) -> dict[str, int]:
    return {pool.value: amount for pool, amount in pools.items() if amount > 0}
