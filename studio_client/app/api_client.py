"""quota-service HTTP 클라이언트."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from common.middleware.request_trace import USER_ID_HEADER
from common.types.datetime import Clock, utc_now

from .config import ClientConfig
from .exceptions import InsufficientQuotaError, QuotaApiError
from .models import CreditsInfo, QuotaSnapshot, ReserveResult


logger = logging.getLogger(__name__)


class QuotaApiClient:
    """quota-service 의 /api/v1/quota 엔드포인트 래퍼.

    transport 를 주입하면 테스트에서 httpx.MockTransport 로 대체할 수 있다.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config or ClientConfig()
        self._clock = clock
        self._client = httpx.Client(
            base_url=f"{self._config.base_url.rstrip('/')}/api/v1",
            timeout=self._config.timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "QuotaApiClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        user_id: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            resp = self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers={USER_ID_HEADER: user_id},
            )
        except httpx.HTTPError as exc:
            logger.warning("quota service unreachable: %s %s: %s", method, path, exc)
            raise QuotaApiError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 403 and path.startswith("/quota/reserve"):
            credits = _safe_json(resp).get("credits") or {}
            raise InsufficientQuotaError(
                available=int(credits.get("available", 0)),
                required=int(credits.get("required", 0)),
            )

        if resp.status_code >= 400:
            body = _safe_json(resp)
            message = body.get("error") or body.get("detail") or resp.text[:200]
            raise QuotaApiError(
                f"{method} {path} failed: status={resp.status_code} error={message}",
                status_code=resp.status_code,
            )
        return _safe_json(resp)

    def get_quota(self, user_id: str) -> QuotaSnapshot:
        data = self._request("GET", "/quota", user_id)
        return _snapshot_from_response(data, self._clock())

    def reserve(
        self, user_id: str, task_id: str, image_count: int, task_type: str
    ) -> ReserveResult:
        data = self._request(
            "POST",
            "/quota/reserve",
            user_id,
            json={"taskId": task_id, "imageCount": image_count, "taskType": task_type},
        )
        return ReserveResult(
            reservation_id=data["reservationId"],
            image_count=data["imageCount"],
            available=(data.get("credits") or {}).get("available", 0),
            reused=data.get("reused", False),
        )

    def release(
        self,
        user_id: str,
        task_id: str | None = None,
        reservation_id: str | None = None,
    ) -> int:
        params: dict[str, str] = {}
        if reservation_id:
            params["id"] = reservation_id
        if task_id:
            params["taskId"] = task_id
        data = self._request("DELETE", "/quota/reserve", user_id, params=params)
        return int(data.get("refundedCount", 0))

    def partial_update(
        self,
        user_id: str,
        actual_image_count: int,
        task_id: str | None = None,
        reservation_id: str | None = None,
        refund_count: int | None = None,
    ) -> int:
        body: dict[str, Any] = {"actualImageCount": actual_image_count}
        if reservation_id:
            body["reservationId"] = reservation_id
        if task_id:
            body["taskId"] = task_id
        if refund_count is not None:
            body["refundCount"] = refund_count
        data = self._request("PUT", "/quota/reserve", user_id, json=body)
        return int(data.get("refundedCount", 0))


def _safe_json(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _snapshot_from_response(data: dict[str, Any], fetched_at: datetime) -> QuotaSnapshot:
    credits = data.get("credits")
    return QuotaSnapshot(
        total_quota=data.get("totalQuota", 0),
        used_count=data.get("usedCount", 0),
        remaining_quota=data.get("remainingQuota", 0),
        credits=CreditsInfo.model_validate(credits) if credits else None,
        fetched_at=fetched_at,
    )
