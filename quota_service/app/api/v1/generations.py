"""생성 기록 내부 API 라우터.

이미지 생성 워커가 슬롯별 결과를 보고하고, 클라이언트가 새로고침 후 태스크를 복구할 때 쓴다.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status

from ..deps import get_current_user_id
from ..schemas.generations import (
    AppendImageRequest,
    FinalizeRequest,
    FinalizeResponse,
    GenerationResponse,
    SlotWriteResponse,
    UpdateInputsRequest,
)
from ...services.generation_record_service import (
    GenerationRecordService,
    get_generation_record_service,
)


router = APIRouter(prefix="/generations", tags=["generations"])

UserId = Annotated[str, Depends(get_current_user_id)]
Service = Annotated[GenerationRecordService, Depends(get_generation_record_service)]
SlotIndex = Annotated[int, Path(ge=0, description="이미지 슬롯 인덱스 (0부터)")]


@router.get("", response_model=GenerationResponse, summary="생성 기록 조회")
def get_generation(
    user_id: UserId,
    service: Service,
    record_id: str | None = Query(default=None, alias="id"),
    task_id: str | None = Query(default=None, alias="taskId"),
) -> GenerationResponse:
    record = service.get(user_id, record_id=record_id, task_id=task_id)
    return GenerationResponse.from_domain(record)


@router.put(
    "/{task_id}/images/{index}",
    response_model=SlotWriteResponse,
    summary="슬롯 성공 결과 기록",
)
def append_image(
    task_id: str,
    index: SlotIndex,
    body: AppendImageRequest,
    user_id: UserId,
    service: Service,
) -> SlotWriteResponse:
    record = service.append(
        user_id,
        task_id,
        index,
        image_url=body.image_url,
        model_type=body.model_type,
        gen_mode=body.gen_mode,
        prompt=body.prompt,
    )
    return SlotWriteResponse(generation=GenerationResponse.from_domain(record))


@router.post(
    "/{task_id}/images/{index}/failed",
    response_model=SlotWriteResponse,
    summary="슬롯 실패 기록",
)
def mark_image_failed(
    task_id: str,
    index: SlotIndex,
    user_id: UserId,
    service: Service,
) -> SlotWriteResponse:
    record = service.mark_failed(user_id, task_id, index)
    if record is None:
        return SlotWriteResponse(success=False)
    return SlotWriteResponse(generation=GenerationResponse.from_domain(record))


@router.post(
    "/{task_id}/finalize",
    response_model=FinalizeResponse,
    summary="최종 상태 기록",
)
def finalize(
    task_id: str,
    body: FinalizeRequest,
    user_id: UserId,
    service: Service,
) -> FinalizeResponse:
    result = service.finalize(user_id, task_id, body.success_count)
    return FinalizeResponse(status=result)


@router.patch(
    "/{task_id}/inputs",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="생성 입력 파라미터 저장",
)
def update_inputs(
    task_id: str,
    body: UpdateInputsRequest,
    user_id: UserId,
    service: Service,
) -> None:
    service.update_inputs(user_id, task_id, body.input_params)
