"""user_quotas 레포지토리 구현체.

잔액 갱신은 version 필드에 대한 compare-and-set 으로만 수행해
동시 예약 간 lost-update 를 막는다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.client import QUOTAS_COLLECTION

from ..models.quota import CreditBalances, QuotaRecord
from .documents.quota_document import QuotaDocument
from .interfaces import QuotaRepositoryInterface


logger = logging.getLogger(__name__)


class QuotaRepository(QuotaRepositoryInterface):
    """user_quotas 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[QUOTAS_COLLECTION]

    @staticmethod
    def _from_document(doc: dict) -> QuotaRecord:
        return QuotaDocument.model_validate(doc).to_domain()

    @staticmethod
    def _version_filter(expected_version: int) -> dict[str, Any]:
        # version 필드가 없는 초기 스키마 문서는 version 0 으로 취급한다.
        if expected_version == 0:
            return {"$or": [{"version": 0}, {"version": {"$exists": False}}]}
        return {"version": expected_version}

    def find_by_user_id(self, user_id: str) -> QuotaRecord | None:
        doc = self._col.find_one({"user_id": user_id})
        if not doc:
            return None
        return self._from_document(doc)

    def get_or_create(self, defaults: QuotaRecord) -> QuotaRecord:
        payload = QuotaDocument.from_domain(defaults).to_mongo_record()
        payload.pop("user_id", None)

        try:
            doc = self._col.find_one_and_update(
                {"user_id": defaults.user_id},
                {"$setOnInsert": payload},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # 동시에 첫 요청이 들어와 다른 요청이 먼저 insert 한 경우
            doc = self._col.find_one({"user_id": defaults.user_id})

        if not doc:
            raise RuntimeError(
                f"quota upsert returned no document (user_id={defaults.user_id})"
            )
        return self._from_document(doc)

    def compare_and_set(
        self,
        user_id: str,
        expected_version: int,
        balances: CreditBalances,
        used_credits: int,
        daily_credits_date: str | None,
    ) -> QuotaRecord | None:
        now = datetime.now(timezone.utc)
        query: dict[str, Any] = {"user_id": user_id, **self._version_filter(expected_version)}

        doc = self._col.find_one_and_update(
            query,
            {
                "$set": {
                    **balances.model_dump(),
                    "used_credits": max(0, used_credits),
                    "daily_credits_date": daily_credits_date,
                    "updated_at": now,
                },
                "$inc": {"version": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            logger.debug(
                "quota compare-and-set lost (user_id=%s expected_version=%s)",
                user_id,
                expected_version,
            )
            return None
        return self._from_document(doc)
