"""크레딧 조회/예약 API 라우터.

이미지 생성 전에 크레딧을 예약하고, 결과에 따라 전액 또는 부분 환불한다.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..deps import get_current_user_id
from ..schemas.quota import (
    AvailableCredits,
    DailyRewardResponse,
    DailyRewardStatusResponse,
    PartialUpdateRequest,
    QuotaResponse,
    RefundResponse,
    ReserveRequest,
    ReserveResponse,
)
from ...services.reservation_service import (
    ReservationService,
    get_reservation_service,
)


router = APIRouter(prefix="/quota", tags=["quota"])

UserId = Annotated[str, Depends(get_current_user_id)]
Service = Annotated[ReservationService, Depends(get_reservation_service)]


@router.get("", response_model=QuotaResponse, summary="가용 크레딧 조회")
def get_quota(user_id: UserId, service: Service) -> QuotaResponse:
    return QuotaResponse.from_domain(service.get_quota(user_id))


@router.post("/reserve", response_model=ReserveResponse, summary="크레딧 예약")
def reserve(body: ReserveRequest, user_id: UserId, service: Service) -> ReserveResponse:
    """잔액이 부족하면 403, 기록 생성에 실패하면 500 (차감은 되돌려진다)."""
    reservation = service.reserve(
        user_id,
        task_id=body.task_id,
        image_count=body.image_count,
        task_type=body.task_type,
    )
    return ReserveResponse(
        reservation_id=reservation.reservation_id,
        image_count=reservation.image_count,
        credits=AvailableCredits(available=reservation.available),
        reused=reservation.reused,
    )


@router.delete("/reserve", response_model=RefundResponse, summary="예약 취소 (전액 환불)")
def release(
    user_id: UserId,
    service: Service,
    reservation_id: str | None = Query(default=None, alias="id"),
    task_id: str | None = Query(default=None, alias="taskId"),
) -> RefundResponse:
    refunded = service.release(user_id, reservation_id=reservation_id, task_id=task_id)
    return RefundResponse(refunded_count=refunded)


@router.put("/reserve", response_model=RefundResponse, summary="부분 정산 (차액 환불)")
def partial_update(
    body: PartialUpdateRequest, user_id: UserId, service: Service
) -> RefundResponse:
    refunded = service.partial_update(
        user_id,
        actual_image_count=body.actual_image_count,
        reservation_id=body.reservation_id,
        task_id=body.task_id,
        refund_count=body.refund_count,
    )
    return RefundResponse(refunded_count=refunded)


@router.get(
    "/daily-reward",
    response_model=DailyRewardStatusResponse,
    summary="일일 보상 수령 가능 여부",
)
def daily_reward_status(user_id: UserId, service: Service) -> DailyRewardStatusResponse:
    result = service.daily_reward_status(user_id)
    return DailyRewardStatusResponse(
        can_claim=result.can_claim,
        already_claimed=result.already_claimed,
        reward_amount=result.reward_amount,
    )


@router.post("/daily-reward", response_model=DailyRewardResponse, summary="일일 보상 수령")
def claim_daily_reward(user_id: UserId, service: Service) -> DailyRewardResponse:
    result = service.claim_daily_reward(user_id)
    return DailyRewardResponse(
        credited=result.credited,
        credits_added=result.credits_added,
        is_new_user=result.is_new_user,
        quota=QuotaResponse.from_domain(result.summary),
    )
