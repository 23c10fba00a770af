from __future__ import annotations

import os


MONGO_URI_ENV = "MONGO_URI"
MONGO_DB_NAME_ENV = "MONGO_DB_NAME"
MONGO_TIMEOUT_MS_ENV = "MONGO_SERVER_SELECTION_TIMEOUT_MS"

DEFAULT_SERVER_SELECTION_TIMEOUT_MS = 5000


def get_mongo_uri() -> str:
    """MongoDB 연결에 사용할 URI를 반환한다.

    설정되지 않은 경우 애플리케이션이 즉시 실패하도록 RuntimeError를 발생시킨다.
    """

    value = os.getenv(MONGO_URI_ENV)
    if not value:
        raise RuntimeError(
            f"{MONGO_URI_ENV} environment variable is required for MongoDB",
        )
    return value


def get_mongo_db_name() -> str | None:
    """MONGO_DB_NAME 이 없으면 None 을 반환하고, 클라이언트는 URI의 기본 DB를 사용한다."""

    value = os.getenv(MONGO_DB_NAME_ENV, "").strip()
    return value or None


def get_server_selection_timeout_ms() -> int:
    raw = os.getenv(MONGO_TIMEOUT_MS_ENV, "").strip()
    if not raw:
        return DEFAULT_SERVER_SELECTION_TIMEOUT_MS
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(
            f"invalid {MONGO_TIMEOUT_MS_ENV}: {raw!r}",
        ) from exc
