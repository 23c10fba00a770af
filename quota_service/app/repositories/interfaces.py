from __future__ import annotations

from typing import Any, Protocol

from ..models.generation import GenerationRecord, GenerationStatus, SlotOutcome
from ..models.quota import CreditBalances, CreditPool, QuotaRecord


class QuotaRepositoryInterface(Protocol):
    """QuotaRepository가 따라야 할 최소한의 계약.

    - 유저당 quota 문서는 하나뿐이며, 삭제하지 않는다.
    - 잔액 갱신은 version 기반 compare-and-set 으로만 이루어진다.
    """

    def find_by_user_id(
        self, user_id: str
    ) -> QuotaRecord | None:  # pragma: no cover - Protocol
        ...

    def get_or_create(
        self, defaults: QuotaRecord
    ) -> QuotaRecord:  # pragma: no cover - Protocol
        """defaults.user_id 의 문서를 반환하고, 없으면 defaults 로 생성한다."""
        ...

    def compare_and_set(
        self,
        user_id: str,
        expected_version: int,
        balances: CreditBalances,
        used_credits: int,
        daily_credits_date: str | None,
    ) -> QuotaRecord | None:  # pragma: no cover - Protocol
        """version 이 expected_version 일 때만 갱신하고 갱신된 레코드를 반환한다.

        다른 writer 가 먼저 갱신했으면 None 을 반환한다.
        """
        ...


class GenerationRepositoryInterface(Protocol):
    """GenerationRepository가 따라야 할 최소한의 계약.

    - (user_id, task_id) 조합은 유일하다.
    - 슬롯 기록은 인덱스 단위 원자적 쓰기여서 서로 다른 인덱스 쓰기는 순서와 무관하다.
    """

    def find(
        self,
        user_id: str,
        *,
        record_id: str | None = None,
        task_id: str | None = None,
    ) -> GenerationRecord | None:  # pragma: no cover - Protocol
        ...

    def insert(
        self, record: GenerationRecord
    ) -> GenerationRecord:  # pragma: no cover - Protocol
        """중복 task_id 면 DuplicateGenerationError 를 발생시킨다."""
        ...

    def delete(
        self, user_id: str, record_id: str, statuses: list[GenerationStatus]
    ) -> bool:  # pragma: no cover - Protocol
        """status 가 statuses 중 하나일 때만 삭제한다. 실제로 삭제했으면 True."""
        ...

    def set_slot(
        self, user_id: str, task_id: str, index: int, outcome: SlotOutcome
    ) -> GenerationRecord | None:  # pragma: no cover - Protocol
        """인덱스 하나를 기록하고 기록 직후의 레코드를 반환한다. 레코드가 없으면 None."""
        ...

    def settle(
        self,
        user_id: str,
        task_id: str,
        status: GenerationStatus,
        total_images_count: int | None = None,
        only_if_status: GenerationStatus | None = None,
    ) -> bool:  # pragma: no cover - Protocol
        """상태(및 total_images_count)를 기록한다. 조건에 맞는 레코드가 있었으면 True."""
        ...

    def apply_refund(
        self,
        user_id: str,
        record_id: str,
        expected_refunded_count: int,
        total_images_count: int,
        status: GenerationStatus,
        refunded_count: int,
        held_pools: dict[CreditPool, int],
    ) -> bool:  # pragma: no cover - Protocol
        """refunded_count 가 expected_refunded_count 일 때만 갱신한다."""
        ...

    def update_inputs(
        self, user_id: str, task_id: str, input_params: dict[str, Any]
    ) -> bool:  # pragma: no cover - Protocol
        ...
