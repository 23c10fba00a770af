"""크레딧 원장 도메인 모델.

유저당 하나의 quota 레코드가 여러 크레딧 풀(daily/subscription/signup/admin_give/purchased)의
잔액을 가진다. 각 풀 값은 "남은 잔액"이며, 누적 지급량이 아니다.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class CreditPool(str, Enum):
    """크레딧 풀 종류."""

    DAILY = "daily"  # 일일 보상, 당일만 유효
    SUBSCRIPTION = "subscription"  # 구독 지급, 갱신 시 리셋
    SIGNUP = "signup"  # 가입 보너스, 영구
    ADMIN_GIVE = "admin_give"  # 관리자 지급/시스템 보상, 영구
    PURCHASED = "purchased"  # 유료 구매, 영구

    @property
    def field_name(self) -> str:
        return f"{self.value}_credits"


# 차감 우선순위: 만료가 빠른 풀부터, 유료 구매분은 마지막
DEBIT_ORDER: tuple[CreditPool, ...] = (
    CreditPool.DAILY,
    CreditPool.SUBSCRIPTION,
    CreditPool.SIGNUP,
    CreditPool.ADMIN_GIVE,
    CreditPool.PURCHASED,
)

# 환불은 차감의 역순 (유료 구매분부터 되돌린다)
REFUND_ORDER: tuple[CreditPool, ...] = tuple(reversed(DEBIT_ORDER))


class CreditBalances(BaseModel):
    """풀별 잔액 스냅샷. 원장 계산 결과로 반환되고, 호출자가 직접 저장한다."""

    daily_credits: int = Field(default=0, ge=0)
    subscription_credits: int = Field(default=0, ge=0)
    signup_credits: int = Field(default=0, ge=0)
    admin_give_credits: int = Field(default=0, ge=0)
    purchased_credits: int = Field(default=0, ge=0)

    def get(self, pool: CreditPool) -> int:
        return getattr(self, pool.field_name)

    def as_pools(self) -> dict[CreditPool, int]:
        return {pool: self.get(pool) for pool in DEBIT_ORDER}

    @classmethod
    def from_pools(cls, pools: dict[CreditPool, int]) -> "CreditBalances":
        return cls(**{pool.field_name: amount for pool, amount in pools.items()})


class QuotaRecord(CreditBalances):
    """user_quotas 도메인 모델.

    - daily_credits_date: daily 풀이 마지막으로 지급된 날짜 (UTC 'YYYY-MM-DD')
    - used_credits: 누적 사용량. 환불 시에만 감소한다.
    - version: 조건부 갱신(compare-and-set)용 카운터
    """

    user_id: str
    daily_credits_date: str | None = None
    used_credits: int = Field(default=0, ge=0)
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def balances(self) -> CreditBalances:
        return CreditBalances(
            **{pool.field_name: self.get(pool) for pool in DEBIT_ORDER}
        )


class CreditsInfo(BaseModel):
    """가용 크레딧 계산 결과."""

    available: int
    daily: int
    subscription: int
    signup: int
    admin_give: int
    purchased: int
    daily_expired: bool

    @property
    def per_pool(self) -> dict[CreditPool, int]:
        return {
            CreditPool.DAILY: self.daily,
            CreditPool.SUBSCRIPTION: self.subscription,
            CreditPool.SIGNUP: self.signup,
            CreditPool.ADMIN_GIVE: self.admin_give,
            CreditPool.PURCHASED: self.purchased,
        }


class QuotaSummary(BaseModel):
    """GET /quota 응답의 도메인 표현."""

    user_id: str
    total_quota: int
    used_count: int
    remaining_quota: int
    credits: CreditsInfo


class DailyRewardResult(BaseModel):
    credited: bool
    credits_added: int
    is_new_user: bool = False
    summary: QuotaSummary


class DailyRewardStatus(BaseModel):
    can_claim: bool
    already_claimed: bool
    reward_amount: int


class Reservation(BaseModel):
    """예약 결과. reused=True 면 같은 task_id 의 기존 예약을 그대로 돌려준 것."""

    reservation_id: str
    task_id: str
    image_count: int
    available: int
    reused: bool = False
