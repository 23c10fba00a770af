from __future__ import annotations

from typing import Any

from pydantic import Field

from common.types.datetime import UtcDateTime

from ...models.generation import GenerationRecord, GenerationStatus
from .common import CamelModel


class GenerationResponse(CamelModel):
    """생성 기록 응답. output 배열은 슬롯 맵에서 인덱스 순으로 펼친 값이다."""

    id: str | None
    task_id: str
    task_type: str
    status: GenerationStatus
    total_images_count: int
    reserved_count: int
    refunded_count: int
    output_image_urls: list[str | None]
    output_model_types: list[str | None]
    output_gen_modes: list[str | None]
    prompts: list[str | None]
    failed_indices: list[int]
    input_params: dict[str, Any] | None = None
    created_at: UtcDateTime
    updated_at: UtcDateTime

    @classmethod
    def from_domain(cls, record: GenerationRecord) -> "GenerationResponse":
        return cls(
            id=record.id,
            task_id=record.task_id,
            task_type=record.task_type,
            status=record.status,
            total_images_count=record.total_images_count,
            reserved_count=record.reserved_count,
            refunded_count=record.refunded_count,
            output_image_urls=record.output_image_urls,
            output_model_types=record.output_model_types,
            output_gen_modes=record.output_gen_modes,
            prompts=record.prompts,
            failed_indices=sorted(
                index for index, outcome in record.slots.items() if not outcome.succeeded
            ),
            input_params=record.input_params,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class AppendImageRequest(CamelModel):
    image_url: str = Field(min_length=1)
    model_type: str | None = None
    gen_mode: str | None = None
    prompt: str | None = None


class FinalizeRequest(CamelModel):
    success_count: int = Field(ge=0)


class FinalizeResponse(CamelModel):
    success: bool = True
    status: GenerationStatus


class UpdateInputsRequest(CamelModel):
    input_params: dict[str, Any]


class SlotWriteResponse(CamelModel):
    success: bool = True
    generation: GenerationResponse | None = None
