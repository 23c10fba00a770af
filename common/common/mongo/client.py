from __future__ import annotations

import logging
import threading
from typing import Optional, cast

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from .config import (
    get_mongo_db_name,
    get_mongo_uri,
    get_server_selection_timeout_ms,
)


logger = logging.getLogger(__name__)


QUOTAS_COLLECTION = "user_quotas"
GENERATIONS_COLLECTION = "generations"

_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()


def get_client() -> MongoClient:
    """전역 MongoClient 싱글톤을 반환한다.

    - MONGO_URI 에서 URI 를 읽어온다.
    - ping 으로 연결을 검증한다.
    - URI 에 기본 데이터베이스가 포함되어 있지 않으면 에러를 발생시킨다.
    - user_quotas / generations 컬렉션에 필요한 인덱스를 한 번만 생성한다.
    """

    global _client, _db

    if _client is not None:
        return _client

    with _lock:
        if _client is not None:
            return _client

        uri = get_mongo_uri()
        client = MongoClient(
            uri,
            serverSelectionTimeoutMS=get_server_selection_timeout_ms(),
            tz_aware=True,
        )

        try:
            client.admin.command("ping")
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(f"failed to connect to MongoDB: {exc}") from exc

        db_name = get_mongo_db_name()
        try:
            if db_name:
                db = client[db_name]
            else:
                db = client.get_default_database()
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(
                "MongoDB database name must be specified via MONGO_DB_NAME or in MONGO_URI (mongodb://.../db_name)",
            ) from exc

        _client = client
        _db = db

        try:
            _ensure_indexes(_db)
        except Exception as exc:  # noqa: BLE001
            logger.error("failed to ensure MongoDB indexes: %s", exc)
            raise

        safe_db = cast(Database, _db)
        logger.info("MongoDB connected and indexes ensured (db=%s)", safe_db.name)
        return _client


def get_database() -> Database:
    """전역 기본 Database 객체를 반환한다."""

    global _db

    if _db is None:
        get_client()
    assert _db is not None
    return _db


def _ensure_indexes(db: Database) -> None:
    """원장/생성 기록 컬렉션의 필수 인덱스를 생성한다.

    중복 생성해도 MongoDB 가 처리하므로 idempotent 하다.
    """

    quotas = db[QUOTAS_COLLECTION]

    # 유저당 quota 문서는 하나뿐이다 (get_or_create upsert 의 전제)
    quotas.create_index(
        [("user_id", ASCENDING)],
        name="uniq_user_id",
        unique=True,
    )

    generations = db[GENERATIONS_COLLECTION]

    # task_id 는 유저 범위에서 유일한 correlation key 이다.
    generations.create_index(
        [("user_id", ASCENDING), ("task_id", ASCENDING)],
        name="uniq_user_task_id",
        unique=True,
    )

    generations.create_index(
        [("user_id", ASCENDING), ("status", ASCENDING), ("created_at", -1)],
        name="idx_user_status_created_at",
    )
