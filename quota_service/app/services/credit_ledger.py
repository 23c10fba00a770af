"""크레딧 원장 계산 (순수 함수).

I/O 없이 QuotaRecord 스냅샷만 보고 가용량, 차감, 환불 결과를 계산한다.
결과 저장은 호출자(ReservationService)의 몫이다.

- 차감 순서: daily -> subscription -> signup -> admin_give -> purchased
- 환불 순서: 차감의 역순. 풀별 상한(caps)을 넘겨 되돌리지 않는다.
- 만료된 daily 풀로는 환불하지 않는다 (해당 몫은 버린다).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from common.types.datetime import to_utc_date_string, utc_now

from ..models.quota import (
    DEBIT_ORDER,
    REFUND_ORDER,
    CreditBalances,
    CreditPool,
    CreditsInfo,
    QuotaRecord,
)


@dataclass(frozen=True)
class ConsumeResult:
    balances: CreditBalances
    drawn: dict[CreditPool, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    balances: CreditBalances
    credited: dict[CreditPool, int] = field(default_factory=dict)
    # 만료된 daily 풀 몫이라 되돌리지 않고 버린 수량
    dropped: int = 0

    @property
    def refunded(self) -> int:
        return sum(self.credited.values())


def today_string(now: datetime | None = None) -> str:
    return to_utc_date_string(now or utc_now())


def is_today(date_string: str | None, today: str | None = None) -> bool:
    """'YYYY-MM-DD' 문자열이 오늘(UTC)인지 비교한다."""
    if not date_string:
        return False
    return date_string == (today or today_string())


def available_credits(record: QuotaRecord, today: str | None = None) -> CreditsInfo:
    """가용 크레딧 계산.

    daily 풀은 daily_credits_date 가 오늘일 때만 available 에 포함된다.
    만료된 경우 값은 그대로 보고하되 합계에서 제외하고 daily_expired 로 표시한다.
    """
    daily_live = is_today(record.daily_credits_date, today)
    effective_daily = record.daily_credits if daily_live else 0

    available = (
        effective_daily
        + record.subscription_credits
        + record.signup_credits
        + record.admin_give_credits
        + record.purchased_credits
    )
    return CreditsInfo(
        available=available,
        daily=record.daily_credits,
        subscription=record.subscription_credits,
        signup=record.signup_credits,
        admin_give=record.admin_give_credits,
        purchased=record.purchased_credits,
        daily_expired=not daily_live and record.daily_credits > 0,
    )


def consume(
    record: QuotaRecord, count: int, today: str | None = None
) -> ConsumeResult | None:
    """우선순위대로 count 만큼 차감한 새 잔액을 계산한다.

    가용량이 부족하면 None 을 반환한다 (부분 차감 없음).
    만료된 daily 잔액은 건드리지 않는다.
    """
    if count < 0:
        raise ValueError(f"consume count must not be negative: {count}")

    if available_credits(record, today).available < count:
        return None

    daily_live = is_today(record.daily_credits_date, today)
    pools = record.balances().as_pools()
    drawn: dict[CreditPool, int] = {}
    remaining = count

    for pool in DEBIT_ORDER:
        if remaining <= 0:
            break
        if pool is CreditPool.DAILY and not daily_live:
            continue
        deduct = min(remaining, pools[pool])
        if deduct <= 0:
            continue
        pools[pool] -= deduct
        drawn[pool] = deduct
        remaining -= deduct

    return ConsumeResult(balances=CreditBalances.from_pools(pools), drawn=drawn)


def refund(
    record: QuotaRecord,
    count: int,
    caps: dict[CreditPool, int],
    today: str | None = None,
) -> RefundResult:
    """count 만큼 되돌린 새 잔액을 계산한다.

    caps 는 환불 대상 예약이 아직 붙잡고 있는 풀별 수량이다. 역순으로 상한까지
    채우고, 상한이 흡수하지 못한 나머지는 admin_give 풀에 시스템 보상으로 적립한다.
    차감 전 풀 구성을 그대로 복구하려면 consume 의 drawn 을 caps 로 넘겨야 한다.
    caps 가 비어 있으면(풀별 내역이 없는 오래된 예약) 전량이 admin_give 로 간다.
    """
    if count < 0:
        raise ValueError(f"refund count must not be negative: {count}")

    daily_live = is_today(record.daily_credits_date, today)
    pools = record.balances().as_pools()
    credited: dict[CreditPool, int] = {}
    dropped = 0
    remaining = count

    if caps:
        for pool in REFUND_ORDER:
            if remaining <= 0:
                break
            amount = min(remaining, max(0, caps.get(pool, 0)))
            if amount <= 0:
                continue
            remaining -= amount
            if pool is CreditPool.DAILY and not daily_live:
                # use it or lose it: 날짜가 바뀐 daily 몫은 복구하지 않는다
                dropped += amount
                continue
            pools[pool] += amount
            credited[pool] = amount

    if remaining > 0:
        pools[CreditPool.ADMIN_GIVE] += remaining
        credited[CreditPool.ADMIN_GIVE] = credited.get(CreditPool.ADMIN_GIVE, 0) + remaining

    return RefundResult(
        balances=CreditBalances.from_pools(pools),
        credited=credited,
        dropped=dropped,
    )


def split_holdings(
    held: dict[CreditPool, int], amount: int
) -> tuple[dict[CreditPool, int], dict[CreditPool, int]]:
    """예약이 붙잡고 있는 풀별 수량에서 amount 만큼을 환불 순서대로 떼어낸다.

    Returns:
        (이번에 풀어줄 풀별 수량, 남는 풀별 수량)
    """
    released: dict[CreditPool, int] = {}
    kept = {pool: value for pool, value in held.items() if value > 0}
    remaining = amount

    for pool in REFUND_ORDER:
        if remaining <= 0:
            break
        take = min(remaining, kept.get(pool, 0))
        if take <= 0:
            continue
        released[pool] = take
        kept[pool] -= take
        remaining -= take

    return released, {pool: value for pool, value in kept.items() if value > 0}


def grant_daily(
    record: QuotaRecord, amount: int, today: str | None = None
) -> QuotaRecord | None:
    """일일 보상 지급. 오늘 이미 지급된 경우 None.

    전날 남은 daily 잔액은 이월되지 않고 amount 로 덮어쓴다.
    """
    today = today or today_string()
    if is_today(record.daily_credits_date, today):
        return None
    return record.model_copy(
        update={"daily_credits": amount, "daily_credits_date": today}
    )


def default_quota(user_id: str, signup_credits: int) -> QuotaRecord:
    """첫 예약 시 lazily 생성되는 기본 quota 레코드."""
    return QuotaRecord(user_id=user_id, signup_credits=signup_credits)
