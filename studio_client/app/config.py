from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta


DEFAULT_BASE_URL = "http://localhost:8003"


@dataclass(slots=True)
class ClientConfig:
    """스튜디오 클라이언트 설정."""

    base_url: str = DEFAULT_BASE_URL
    # 새로고침 후 이 시간보다 오래 진행 중인 태스크는 실패로 간주한다
    stale_after: timedelta = timedelta(minutes=5)
    # 영구 저장할 최근 태스크 수 (진행 중인 태스크는 항상 저장)
    max_persisted_tasks: int = 10
    # quota 스냅샷을 검증 없이 믿는 시간
    quota_fresh_for: timedelta = timedelta(seconds=60)
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """QUOTA_SERVICE_URL / QUOTA_CLIENT_TIMEOUT_SECONDS 환경변수를 반영한다."""
        defaults = cls()
        return cls(
            base_url=os.getenv("QUOTA_SERVICE_URL", defaults.base_url).rstrip("/"),
            timeout_seconds=float(
                os.getenv("QUOTA_CLIENT_TIMEOUT_SECONDS", str(defaults.timeout_seconds))
            ),
        )
