"""크레딧 예약/환불 헬퍼.

모든 호출 뒤에 quota 캐시를 다시 맞춘다. 환불은 실패해도 호출자를 막지 않는다.
"""

from __future__ import annotations

import logging

from .api_client import QuotaApiClient
from .exceptions import QuotaApiError
from .models import ReserveResult
from .quota_cache import ClientQuotaCache


logger = logging.getLogger(__name__)


class QuotaReservation:
    def __init__(self, api: QuotaApiClient, cache: ClientQuotaCache) -> None:
        self._api = api
        self._cache = cache

    def reserve(
        self, user_id: str, task_id: str, image_count: int, task_type: str
    ) -> ReserveResult:
        """서버에 예약한다. 잔액 부족이면 InsufficientQuotaError 가 그대로 올라간다."""
        try:
            result = self._api.reserve(user_id, task_id, image_count, task_type)
        except QuotaApiError:
            self._cache.refresh_in_background(user_id)
            raise

        self._cache.apply_available(user_id, result.available)
        self._cache.refresh_in_background(user_id)
        logger.info("reserved %s credits for task %s", image_count, task_id)
        return result

    def refund(self, user_id: str, task_id: str) -> int:
        """태스크 취소/전체 실패 시 전액 환불."""
        refunded = 0
        try:
            refunded = self._api.release(user_id, task_id=task_id)
            logger.info("refunded %s credits for task %s", refunded, task_id)
        except QuotaApiError as exc:
            logger.warning("refund failed for task %s: %s", task_id, exc)
        self._resync(user_id)
        return refunded

    def partial_refund(
        self, user_id: str, task_id: str, actual_success_count: int
    ) -> int:
        """일부만 성공했을 때 차액 환불."""
        refunded = 0
        try:
            refunded = self._api.partial_update(
                user_id, actual_success_count, task_id=task_id
            )
            logger.info(
                "partial refund of %s credits for task %s (actual=%s)",
                refunded,
                task_id,
                actual_success_count,
            )
        except QuotaApiError as exc:
            logger.warning("partial refund failed for task %s: %s", task_id, exc)
        self._resync(user_id)
        return refunded

    def confirm(self, user_id: str) -> None:
        """전부 성공했을 때. 잔액만 다시 맞춘다."""
        self._resync(user_id)

    def _resync(self, user_id: str) -> None:
        try:
            self._cache.refresh(user_id)
        except QuotaApiError as exc:
            logger.warning("quota refresh failed for %s: %s", user_id, exc)
