from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Annotated, Callable

from pydantic.functional_serializers import PlainSerializer


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """tz-aware UTC 현재 시각. 서비스/클라이언트의 기본 Clock 으로 주입된다."""
    return datetime.now(timezone.utc)


def to_utc_date_string(value: datetime | date) -> str:
    """datetime/date 를 UTC 기준 'YYYY-MM-DD' 문자열로 변환한다.

    daily 크레딧의 유효일은 타임존과 무관한 이 문자열 형태로만 비교한다.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc).date()
    return value.isoformat()


def serialize_datetime_to_utc_iso8601(value: datetime) -> str:
    """모든 datetime을 UTC 기준 ISO8601(+타임존) 문자열로 직렬화한다."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


UtcDateTime = Annotated[
    datetime,
    PlainSerializer(
        serialize_datetime_to_utc_iso8601,
        return_type=str,
        when_used="json",
    ),
]
