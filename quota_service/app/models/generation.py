"""생성 기록 도메인 모델.

태스크당 하나의 기록이 존재하며, 슬롯(이미지 인덱스)별 결과를 인덱스 키 맵으로 보관한다.
맵에 없는 인덱스는 "아직 시도되지 않음", FAILED 는 "처리되었지만 실패"를 뜻한다.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .quota import CreditPool


DEFAULT_TASK_TYPE = "model_studio"


class GenerationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class SlotState(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SlotOutcome(BaseModel):
    """하나의 이미지 슬롯 결과."""

    state: SlotState
    image_url: str | None = None
    model_type: str | None = None
    gen_mode: str | None = None
    prompt: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == SlotState.SUCCEEDED


class GenerationRecord(BaseModel):
    """generations 도메인 모델.

    - total_images_count: 현재 기준 이미지 수 (partial update / 슬롯 정산으로 줄어들 수 있음)
    - reserved_count: 예약 시 차감한 크레딧 수 (불변)
    - refunded_count: 지금까지 환불된 크레딧 수
    - held_pools: 아직 이 예약이 붙잡고 있는 풀별 크레딧 (환불 상한)
    """

    id: str | None = None
    user_id: str
    task_id: str
    task_type: str = DEFAULT_TASK_TYPE
    status: GenerationStatus = GenerationStatus.PENDING
    total_images_count: int = Field(ge=0)
    reserved_count: int = Field(default=0, ge=0)
    refunded_count: int = Field(default=0, ge=0)
    held_pools: dict[CreditPool, int] = Field(default_factory=dict)
    slots: dict[int, SlotOutcome] = Field(default_factory=dict)
    input_params: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def held_count(self) -> int:
        return max(0, self.reserved_count - self.refunded_count)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.slots.values() if outcome.succeeded)

    def all_visited(self) -> bool:
        """[0, total_images_count) 의 모든 인덱스가 성공 또는 실패로 기록되었는지."""
        if self.total_images_count <= 0:
            return False
        return all(index in self.slots for index in range(self.total_images_count))

    def _slot_length(self) -> int:
        highest = max(self.slots) + 1 if self.slots else 0
        return max(self.total_images_count, highest)

    def _project(self, attr: str) -> list[str | None]:
        values: list[str | None] = []
        for index in range(self._slot_length()):
            outcome = self.slots.get(index)
            values.append(getattr(outcome, attr) if outcome else None)
        return values

    @property
    def output_image_urls(self) -> list[str | None]:
        return self._project("image_url")

    @property
    def output_model_types(self) -> list[str | None]:
        return self._project("model_type")

    @property
    def output_gen_modes(self) -> list[str | None]:
        return self._project("gen_mode")

    @property
    def prompts(self) -> list[str | None]:
        return self._project("prompt")
