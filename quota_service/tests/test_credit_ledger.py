from __future__ import annotations

import pytest

from quota_service.app.models.quota import CreditPool, QuotaRecord
from quota_service.app.services import credit_ledger

from .quota_fakes import TODAY, YESTERDAY


def _quota(**pools: int | str | None) -> QuotaRecord:
    return QuotaRecord(user_id="user-001", **pools)


def _with_balances(record: QuotaRecord, result) -> QuotaRecord:
    return record.model_copy(update=result.balances.model_dump())


def test_available_counts_daily_only_when_granted_today() -> None:
    fresh = _quota(daily_credits=5, daily_credits_date=TODAY, signup_credits=3)
    stale = _quota(daily_credits=5, daily_credits_date=YESTERDAY, signup_credits=3)

    fresh_info = credit_ledger.available_credits(fresh, TODAY)
    stale_info = credit_ledger.available_credits(stale, TODAY)

    assert fresh_info.available == 8
    assert fresh_info.daily_expired is False
    assert stale_info.available == 3
    assert stale_info.daily == 5
    assert stale_info.daily_expired is True


def test_is_today_rejects_missing_date() -> None:
    assert credit_ledger.is_today(None, TODAY) is False
    assert credit_ledger.is_today("", TODAY) is False
    assert credit_ledger.is_today(TODAY, TODAY) is True


def test_consume_follows_debit_priority() -> None:
    record = _quota(
        daily_credits=2,
        daily_credits_date=TODAY,
        subscription_credits=1,
        signup_credits=1,
        admin_give_credits=1,
        purchased_credits=10,
    )

    result = credit_ledger.consume(record, 7, TODAY)

    assert result is not None
    assert result.drawn == {
        CreditPool.DAILY: 2,
        CreditPool.SUBSCRIPTION: 1,
        CreditPool.SIGNUP: 1,
        CreditPool.ADMIN_GIVE: 1,
        CreditPool.PURCHASED: 2,
    }
    assert result.balances.purchased_credits == 8
    assert result.balances.daily_credits == 0


def test_consume_returns_none_without_partial_debit() -> None:
    record = _quota(signup_credits=2, purchased_credits=1)

    assert credit_ledger.consume(record, 4, TODAY) is None


def test_consume_skips_expired_daily_pool() -> None:
    record = _quota(daily_credits=5, daily_credits_date=YESTERDAY, signup_credits=3)

    result = credit_ledger.consume(record, 3, TODAY)

    assert result is not None
    assert result.drawn == {CreditPool.SIGNUP: 3}
    assert result.balances.daily_credits == 5
    assert credit_ledger.consume(record, 4, TODAY) is None


def test_consume_rejects_negative_count() -> None:
    with pytest.raises(ValueError):
        credit_ledger.consume(_quota(signup_credits=1), -1, TODAY)


def test_consume_then_refund_restores_pools() -> None:
    record = _quota(
        daily_credits=2,
        daily_credits_date=TODAY,
        signup_credits=3,
        purchased_credits=10,
    )

    consumed = credit_ledger.consume(record, 6, TODAY)
    assert consumed is not None
    debited = _with_balances(record, consumed)
    refunded = credit_ledger.refund(debited, 6, caps=consumed.drawn, today=TODAY)

    assert refunded.balances == record.balances()
    assert refunded.dropped == 0
    assert refunded.refunded == 6


def test_refund_drops_daily_portion_after_day_boundary() -> None:
    record = _quota(
        daily_credits=2,
        daily_credits_date=YESTERDAY,
        signup_credits=3,
    )
    # 어제 daily 2 + signup 1 을 차감한 예약
    consumed = credit_ledger.consume(record, 3, YESTERDAY)
    assert consumed is not None
    debited = _with_balances(record, consumed)

    refunded = credit_ledger.refund(debited, 3, caps=consumed.drawn, today=TODAY)

    assert refunded.dropped == 2
    assert refunded.credited == {CreditPool.SIGNUP: 1}
    assert refunded.balances.daily_credits == 0
    assert refunded.balances.signup_credits == 3


def test_refund_goes_in_reverse_order_within_caps() -> None:
    record = _quota(signup_credits=0, purchased_credits=8)
    caps = {CreditPool.SIGNUP: 3, CreditPool.PURCHASED: 2}

    refunded = credit_ledger.refund(record, 3, caps=caps, today=TODAY)

    assert refunded.credited == {CreditPool.PURCHASED: 2, CreditPool.SIGNUP: 1}
    assert refunded.balances.purchased_credits == 10
    assert refunded.balances.signup_credits == 1


def test_refund_without_caps_compensates_to_admin_give() -> None:
    record = _quota(signup_credits=1)

    refunded = credit_ledger.refund(record, 4, caps={}, today=TODAY)

    assert refunded.credited == {CreditPool.ADMIN_GIVE: 4}
    assert refunded.balances.admin_give_credits == 4
    assert refunded.balances.signup_credits == 1


def test_refund_beyond_caps_compensates_remainder_to_admin_give() -> None:
    record = _quota(signup_credits=0, purchased_credits=0)

    refunded = credit_ledger.refund(
        record, 5, caps={CreditPool.SIGNUP: 2}, today=TODAY
    )

    assert refunded.credited == {CreditPool.SIGNUP: 2, CreditPool.ADMIN_GIVE: 3}
    assert refunded.balances.purchased_credits == 0
    assert refunded.refunded == 5


def test_split_holdings_releases_purchased_first() -> None:
    held = {CreditPool.SIGNUP: 3, CreditPool.PURCHASED: 2}

    released, kept = credit_ledger.split_holdings(held, 3)

    assert released == {CreditPool.PURCHASED: 2, CreditPool.SIGNUP: 1}
    assert kept == {CreditPool.SIGNUP: 2}


def test_grant_daily_overwrites_previous_day_once_per_day() -> None:
    record = _quota(daily_credits=1, daily_credits_date=YESTERDAY)

    granted = credit_ledger.grant_daily(record, 5, TODAY)

    assert granted is not None
    assert granted.daily_credits == 5
    assert granted.daily_credits_date == TODAY
    assert credit_ledger.grant_daily(granted, 5, TODAY) is None


@pytest.mark.parametrize(
    "operations",
    [
        [("consume", 3), ("refund", 2), ("consume", 4), ("refund", 5)],
        [("consume", 13), ("refund", 13), ("consume", 1)],
        [("refund", 2), ("consume", 15)],
    ],
)
def test_available_never_negative(operations: list[tuple[str, int]]) -> None:
    record = _quota(signup_credits=3, purchased_credits=10)

    for op, count in operations:
        if op == "consume":
            result = credit_ledger.consume(record, count, TODAY)
            if result is None:
                continue
        else:
            result = credit_ledger.refund(record, count, caps={}, today=TODAY)
        record = _with_balances(record, result)
        assert credit_ledger.available_credits(record, TODAY).available >= 0


def test_default_quota_uses_signup_credits() -> None:
    record = credit_ledger.default_quota("user-009", 10)

    assert record.signup_credits == 10
    assert credit_ledger.available_credits(record, TODAY).available == 10
