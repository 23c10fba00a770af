from __future__ import annotations

from pydantic import Field

from ...models.quota import CreditsInfo, QuotaSummary
from .common import CamelModel


class CreditsBody(CamelModel):
    available: int
    daily: int
    subscription: int
    signup: int
    admin_give: int
    purchased: int
    daily_expired: bool

    @classmethod
    def from_domain(cls, info: CreditsInfo) -> "CreditsBody":
        return cls.model_validate(info.model_dump())


class QuotaResponse(CamelModel):
    """GET /quota 응답."""

    total_quota: int
    used_count: int
    remaining_quota: int
    credits: CreditsBody

    @classmethod
    def from_domain(cls, summary: QuotaSummary) -> "QuotaResponse":
        return cls(
            total_quota=summary.total_quota,
            used_count=summary.used_count,
            remaining_quota=summary.remaining_quota,
            credits=CreditsBody.from_domain(summary.credits),
        )


class ReserveRequest(CamelModel):
    task_id: str = Field(min_length=1)
    image_count: int = Field(gt=0)
    task_type: str | None = None


class AvailableCredits(CamelModel):
    available: int


class ReserveResponse(CamelModel):
    success: bool = True
    reservation_id: str
    image_count: int
    credits: AvailableCredits
    reused: bool = False


class InsufficientCredits(CamelModel):
    available: int
    required: int


class InsufficientQuotaResponse(CamelModel):
    """403 응답 본문."""

    error: str = "Insufficient quota"
    credits: InsufficientCredits


class PartialUpdateRequest(CamelModel):
    reservation_id: str | None = None
    task_id: str | None = None
    actual_image_count: int = Field(ge=0)
    refund_count: int | None = Field(default=None, ge=0)


class RefundResponse(CamelModel):
    success: bool = True
    refunded_count: int


class DailyRewardStatusResponse(CamelModel):
    can_claim: bool
    already_claimed: bool
    reward_amount: int


class DailyRewardResponse(CamelModel):
    success: bool = True
    credited: bool
    credits_added: int
    is_new_user: bool
    quota: QuotaResponse
