from __future__ import annotations

from fastapi import Header, HTTPException, status

from common.middleware.request_trace import USER_ID_HEADER


def get_current_user_id(
    user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> str:
    """앞단 게이트웨이가 인증 후 채워 넣은 요청 주체 ID."""
    if not user_id or not user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user_id.strip()
