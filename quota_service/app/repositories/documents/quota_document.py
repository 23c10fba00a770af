"""user_quotas MongoDB 도큐먼트."""

from __future__ import annotations

from datetime import datetime, timezone

from common.mongo.types import BaseDocument

from ...models.quota import QuotaRecord


class QuotaDocument(BaseDocument):
    """MongoDB user_quotas 컬렉션 도큐먼트 모델.

    초기 스키마 문서에는 version/used_credits 가 없을 수 있어 기본값을 둔다.
    """

    user_id: str
    daily_credits: int = 0
    daily_credits_date: str | None = None
    subscription_credits: int = 0
    signup_credits: int = 0
    admin_give_credits: int = 0
    purchased_credits: int = 0
    used_credits: int = 0
    version: int = 0

    @classmethod
    def from_domain(cls, record: QuotaRecord) -> "QuotaDocument":
        now = datetime.now(timezone.utc)
        data = record.model_dump(exclude={"created_at", "updated_at"})
        data["created_at"] = record.created_at or now
        data["updated_at"] = record.updated_at or now
        return cls.model_validate(data)

    def to_domain(self) -> QuotaRecord:
        return QuotaRecord(
            user_id=self.user_id,
            daily_credits=max(0, self.daily_credits),
            daily_credits_date=self.daily_credits_date,
            subscription_credits=max(0, self.subscription_credits),
            signup_credits=max(0, self.signup_credits),
            admin_give_credits=max(0, self.admin_give_credits),
            purchased_credits=max(0, self.purchased_credits),
            used_credits=max(0, self.used_credits),
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
