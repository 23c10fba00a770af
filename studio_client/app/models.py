"""클라이언트 측 상태 모델.

서버 기록의 낙관적 사본이며, 저장 시 camelCase JSON 으로 직렬화된다.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from common.types.datetime import UtcDateTime


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SlotStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SlotStatus.COMPLETED, SlotStatus.FAILED)


class TaskStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class ImageSlot(_CamelModel):
    index: int = Field(ge=0)
    status: SlotStatus = SlotStatus.PENDING
    image_url: str | None = None
    model_type: str | None = None
    gen_mode: str | None = None
    error: str | None = None


class ClientTask(_CamelModel):
    """화면에 진행 상황을 그리기 위한 태스크 사본.

    status 는 슬롯 상태에서 계산된다. forced_status 는 시간 초과 등으로
    슬롯과 무관하게 확정된 상태다.
    """

    id: str
    type: str
    image_slots: list[ImageSlot] = Field(default_factory=list)
    expected_image_count: int = Field(default=0, ge=0)
    created_at: UtcDateTime
    forced_status: TaskStatus | None = None
    error: str | None = None

    @property
    def status(self) -> TaskStatus:
        if self.forced_status is not None:
            return self.forced_status
        if not self.image_slots:
            return TaskStatus.PENDING
        if any(not slot.status.terminal for slot in self.image_slots):
            return TaskStatus.GENERATING
        if any(slot.status == SlotStatus.COMPLETED for slot in self.image_slots):
            return TaskStatus.COMPLETED
        return TaskStatus.FAILED


class CreditsInfo(_CamelModel):
    available: int = 0
    daily: int = 0
    subscription: int = 0
    signup: int = 0
    admin_give: int = 0
    purchased: int = 0
    daily_expired: bool = False


class QuotaSnapshot(_CamelModel):
    """마지막으로 확인한 유저 잔액. fetched_at 으로 신선도를 판단한다."""

    total_quota: int
    used_count: int
    remaining_quota: int
    credits: CreditsInfo | None = None
    fetched_at: UtcDateTime

    def is_fresh(self, now: datetime, fresh_for: timedelta) -> bool:
        return now - self.fetched_at < fresh_for


class ReserveResult(_CamelModel):
    reservation_id: str
    image_count: int
    available: int
    reused: bool = False
