"""generations 레포지토리 구현체.

슬롯 결과는 `slots.<index>` 경로에 대한 단일 $set 으로 기록되므로
서로 다른 인덱스에 대한 동시 쓰기가 서로를 덮어쓰지 않는다.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.client import GENERATIONS_COLLECTION
from common.mongo.types import try_object_id

from ..exceptions import DuplicateGenerationError
from ..models.generation import GenerationRecord, GenerationStatus, SlotOutcome
from ..models.quota import CreditPool
from .documents.generation_document import (
    GenerationDocument,
    SlotDocument,
    pools_to_mongo,
)
from .interfaces import GenerationRepositoryInterface


class GenerationRepository(GenerationRepositoryInterface):
    """generations 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[GENERATIONS_COLLECTION]

    @staticmethod
    def _from_document(doc: dict) -> GenerationRecord:
        return GenerationDocument.model_validate(doc).to_domain()

    @staticmethod
    def _lookup_filter(
        user_id: str, record_id: str | None, task_id: str | None
    ) -> dict[str, Any] | None:
        query: dict[str, Any] = {"user_id": user_id}
        if record_id:
            object_id = try_object_id(record_id)
            if object_id is None:
                return None
            query["_id"] = object_id
        elif task_id:
            query["task_id"] = task_id
        else:
            return None
        return query

    def find(
        self,
        user_id: str,
        *,
        record_id: str | None = None,
        task_id: str | None = None,
    ) -> GenerationRecord | None:
        query = self._lookup_filter(user_id, record_id, task_id)
        if query is None:
            return None
        doc = self._col.find_one(query)
        if not doc:
            return None
        return self._from_document(doc)

    def insert(self, record: GenerationRecord) -> GenerationRecord:
        payload = GenerationDocument.from_domain(record).to_mongo_record()
        try:
            result = self._col.insert_one(payload)
        except DuplicateKeyError as exc:
            raise DuplicateGenerationError(
                f"generation already exists (user_id={record.user_id} task_id={record.task_id})"
            ) from exc
        payload["_id"] = result.inserted_id
        return self._from_document(payload)

    def delete(
        self, user_id: str, record_id: str, statuses: list[GenerationStatus]
    ) -> bool:
        object_id = try_object_id(record_id)
        if object_id is None:
            return False
        result = self._col.delete_one(
            {
                "_id": object_id,
                "user_id": user_id,
                "status": {"$in": [status.value for status in statuses]},
            }
        )
        return result.deleted_count > 0

    def set_slot(
        self, user_id: str, task_id: str, index: int, outcome: SlotOutcome
    ) -> GenerationRecord | None:
        now = datetime.now(timezone.utc)
        doc = self._col.find_one_and_update(
            {"user_id": user_id, "task_id": task_id},
            {
                "$set": {
                    f"slots.{index}": SlotDocument.from_domain(outcome).to_mongo_record(),
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return self._from_document(doc)

    def settle(
        self,
        user_id: str,
        task_id: str,
        status: GenerationStatus,
        total_images_count: int | None = None,
        only_if_status: GenerationStatus | None = None,
    ) -> bool:
        query: dict[str, Any] = {"user_id": user_id, "task_id": task_id}
        if only_if_status is not None:
            query["status"] = only_if_status.value

        updates: dict[str, Any] = {
            "status": status.value,
            "updated_at": datetime.now(timezone.utc),
        }
        if total_images_count is not None:
            updates["total_images_count"] = total_images_count

        result = self._col.update_one(query, {"$set": updates})
        return result.matched_count > 0

    def apply_refund(
        self,
        user_id: str,
        record_id: str,
        expected_refunded_count: int,
        total_images_count: int,
        status: GenerationStatus,
        refunded_count: int,
        held_pools: dict[CreditPool, int],
    ) -> bool:
        object_id = try_object_id(record_id)
        if object_id is None:
            return False

        query: dict[str, Any] = {"_id": object_id, "user_id": user_id}
        if expected_refunded_count == 0:
            query["$or"] = [
                {"refunded_count": 0},
                {"refunded_count": {"$exists": False}},
            ]
        else:
            query["refunded_count"] = expected_refunded_count

        result = self._col.update_one(
            query,
            {
                "$set": {
                    "total_images_count": total_images_count,
                    "status": status.value,
                    "refunded_count": refunded_count,
                    "held_pools": pools_to_mongo(held_pools),
                    "updated_at": datetime.now(timezone.utc),
                }
            },
        )
        return result.matched_count > 0

    def update_inputs(
        self, user_id: str, task_id: str, input_params: dict[str, Any]
    ) -> bool:
        result = self._col.update_one(
            {"user_id": user_id, "task_id": task_id},
            {
                "$set": {
                    "input_params": input_params,
                    "updated_at": datetime.now(timezone.utc),
                }
            },
        )
        return result.matched_count > 0
