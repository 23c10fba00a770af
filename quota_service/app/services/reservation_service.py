"""크레딧 예약/해제/부분 정산 서비스.

원장(user_quotas)을 변경하는 유일한 컴포넌트다. 모든 원장 쓰기는
읽기 -> CreditLedger 계산 -> version compare-and-set 순서로 이루어지고,
충돌하면 다시 읽어서 재계산한다.

예약은 "원장 차감 -> 생성 기록 생성" 두 번의 쓰기로 이루어지며 트랜잭션으로
묶여 있지 않다. 두 번째 쓰기가 실패하면 차감을 수동으로 되돌린다.
"""

from __future__ import annotations

import logging

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database
from common.types.datetime import Clock, utc_now

from ..config import QuotaConfig, load_config
from ..exceptions import (
    DuplicateGenerationError,
    InsufficientQuotaError,
    InvalidRequestError,
    QuotaWriteConflictError,
    ReservationPersistenceError,
)
from ..models.generation import (
    DEFAULT_TASK_TYPE,
    GenerationRecord,
    GenerationStatus,
)
from ..models.quota import (
    CreditPool,
    DailyRewardResult,
    DailyRewardStatus,
    QuotaRecord,
    QuotaSummary,
    Reservation,
)
from ..repositories.generation_repository import GenerationRepository
from ..repositories.interfaces import (
    GenerationRepositoryInterface,
    QuotaRepositoryInterface,
)
from ..repositories.quota_repository import QuotaRepository
from . import credit_ledger
from .credit_ledger import RefundResult


logger = logging.getLogger(__name__)

# Release 대상: 아직 진행 중이거나, 슬롯 정산으로 전부 실패 처리된 기록
RELEASABLE_STATUSES = [GenerationStatus.PENDING, GenerationStatus.FAILED]


class ReservationService:
    """크레딧 예약 프로토콜 비즈니스 로직."""

    def __init__(
        self,
        quota_repo: QuotaRepositoryInterface,
        generation_repo: GenerationRepositoryInterface,
        config: QuotaConfig,
        clock: Clock = utc_now,
    ) -> None:
        self._quota_repo = quota_repo
        self._generation_repo = generation_repo
        self._config = config
        self._clock = clock

    # -------- 조회 --------

    def _today(self) -> str:
        return credit_ledger.today_string(self._clock())

    def _load_quota(self, user_id: str) -> QuotaRecord:
        return self._quota_repo.get_or_create(
            credit_ledger.default_quota(user_id, self._config.default_signup_credits)
        )

    def _summarize(self, record: QuotaRecord, today: str) -> QuotaSummary:
        info = credit_ledger.available_credits(record, today)
        return QuotaSummary(
            user_id=record.user_id,
            total_quota=info.available + record.used_credits,
            used_count=record.used_credits,
            remaining_quota=info.available,
            credits=info,
        )

    def get_quota(self, user_id: str) -> QuotaSummary:
        """유저의 가용 크레딧 요약. quota 문서가 없으면 기본값으로 생성한다."""
        return self._summarize(self._load_quota(user_id), self._today())

    @staticmethod
    def _is_reusable(record: GenerationRecord, image_count: int) -> bool:
        return (
            record.status == GenerationStatus.PENDING
            and record.reserved_count > 0
            and record.reserved_count == image_count
        )

    # -------- 예약 --------

    def reserve(
        self,
        user_id: str,
        task_id: str,
        image_count: int,
        task_type: str | None = None,
    ) -> Reservation:
        """image_count 만큼 차감하고 pending 생성 기록을 만든다.

        같은 task_id 로 같은 수량의 pending 예약이 이미 있으면 추가 차감 없이
        기존 예약을 돌려준다. 그 밖의 기존 기록은 DuplicateGenerationError 로
        거절한다.
        """
        if not task_id:
            raise InvalidRequestError("taskId is required")
        if image_count <= 0:
            raise InvalidRequestError("imageCount must be positive")

        existing = self._generation_repo.find(user_id, task_id=task_id)
        if existing is not None and existing.id is not None:
            if not self._is_reusable(existing, image_count):
                logger.warning(
                    "task already has a generation record that cannot be reused",
                    extra={
                        "user_id": user_id,
                        "task_id": task_id,
                        "status": existing.status.value,
                        "reserved_count": existing.reserved_count,
                        "image_count": image_count,
                    },
                )
                raise DuplicateGenerationError(
                    f"generation already exists (user_id={user_id} task_id={task_id})"
                )
            logger.info(
                "reservation already exists, reusing",
                extra={"user_id": user_id, "task_id": task_id, "reservation_id": existing.id},
            )
            return Reservation(
                reservation_id=existing.id,
                task_id=task_id,
                image_count=existing.reserved_count,
                available=self.get_quota(user_id).remaining_quota,
                reused=True,
            )

        updated, drawn = self._debit(user_id, image_count)
        today = self._today()

        now = self._clock()
        record = GenerationRecord(
            user_id=user_id,
            task_id=task_id,
            task_type=task_type or DEFAULT_TASK_TYPE,
            status=GenerationStatus.PENDING,
            total_images_count=image_count,
            reserved_count=image_count,
            held_pools=drawn,
            created_at=now,
            updated_at=now,
        )

        try:
            created = self._generation_repo.insert(record)
        except DuplicateGenerationError:
            # 동시에 들어온 같은 task_id 예약에 졌다
            self._compensate_reserve(user_id, task_id, image_count, drawn)
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "failed to create generation record after debit, compensating: %s",
                exc,
                extra={"user_id": user_id, "task_id": task_id, "image_count": image_count},
            )
            compensated = self._compensate_reserve(user_id, task_id, image_count, drawn)
            raise ReservationPersistenceError(task_id, compensated) from exc

        if created.id is None:
            raise RuntimeError(f"inserted generation has no id (task_id={task_id})")

        available = credit_ledger.available_credits(updated, today).available
        logger.info(
            "reserved credits",
            extra={
                "user_id": user_id,
                "task_id": task_id,
                "reservation_id": created.id,
                "image_count": image_count,
            },
        )
        return Reservation(
            reservation_id=created.id,
            task_id=task_id,
            image_count=image_count,
            available=available,
        )

    def _debit(
        self, user_id: str, image_count: int
    ) -> tuple[QuotaRecord, dict[CreditPool, int]]:
        for _ in range(self._config.max_write_attempts):
            today = self._today()
            quota = self._load_quota(user_id)
            info = credit_ledger.available_credits(quota, today)
            if info.available < image_count:
                raise InsufficientQuotaError(info.available, image_count)

            result = credit_ledger.consume(quota, image_count, today)
            if result is None:
                raise InsufficientQuotaError(info.available, image_count)

            updated = self._quota_repo.compare_and_set(
                user_id,
                quota.version,
                result.balances,
                quota.used_credits + image_count,
                quota.daily_credits_date,
            )
            if updated is not None:
                return updated, dict(result.drawn)

        raise QuotaWriteConflictError(
            f"could not debit {image_count} credits for {user_id}: too many concurrent writes"
        )

    def _compensate_reserve(
        self,
        user_id: str,
        task_id: str,
        image_count: int,
        drawn: dict[CreditPool, int],
    ) -> bool:
        """차감을 되돌린다. 실패하면 재시도하지 않고 수동 정산용 로그를 남긴다."""
        try:
            self._credit_back(user_id, image_count, drawn)
        except Exception:  # noqa: BLE001
            logger.critical(
                "reservation rollback failed, ledger needs manual reconciliation "
                "(user_id=%s task_id=%s image_count=%s drawn=%s)",
                user_id,
                task_id,
                image_count,
                {pool.value: amount for pool, amount in drawn.items()},
                exc_info=True,
            )
            return False

        logger.warning(
            "reservation rolled back",
            extra={"user_id": user_id, "task_id": task_id, "image_count": image_count},
        )
        return True

    def _credit_back(
        self, user_id: str, count: int, caps: dict[CreditPool, int]
    ) -> RefundResult:
        """count 만큼 원장에 되돌리고 used_credits 를 같은 양만큼 줄인다 (0 하한)."""
        for _ in range(self._config.max_write_attempts):
            today = self._today()
            quota = self._load_quota(user_id)
            result = credit_ledger.refund(quota, count, caps=caps, today=today)
            updated = self._quota_repo.compare_and_set(
                user_id,
                quota.version,
                result.balances,
                max(0, quota.used_credits - count),
                quota.daily_credits_date,
            )
            if updated is not None:
                if result.dropped:
                    logger.info(
                        "dropped %s expired daily credits while refunding",
                        result.dropped,
                        extra={"user_id": user_id},
                    )
                return result

        raise QuotaWriteConflictError(
            f"could not refund {count} credits for {user_id}: too many concurrent writes"
        )

    @staticmethod
    def _log_lost_refund(
        message: str,
        user_id: str,
        task_id: str,
        amount: int,
        pools: dict[CreditPool, int],
    ) -> None:
        """생성 기록은 이미 환불 처리됐는데 원장 쓰기가 실패한 경우.

        재시도해도 다시 환불되지 않으므로 수동 정산에 필요한 풀별 수량을 남긴다.
        """
        logger.critical(
            "%s, ledger needs manual reconciliation "
            "(user_id=%s task_id=%s amount=%s pools=%s)",
            message,
            user_id,
            task_id,
            amount,
            {pool.value: value for pool, value in pools.items()},
            exc_info=True,
        )

    # -------- 해제 (전액 환불) --------

    def release(
        self,
        user_id: str,
        reservation_id: str | None = None,
        task_id: str | None = None,
    ) -> int:
        """예약을 취소하고 붙잡고 있던 크레딧을 전부 환불한다.

        일치하는 기록이 없으면 0 을 반환한다. 기록 삭제는 조건부이므로
        중복 호출 중 하나만 환불한다. 환불 쓰기 실패는 로그만 남기고 0 을 반환한다.
        """
        if not reservation_id and not task_id:
            raise InvalidRequestError("id or taskId is required")

        record = self._generation_repo.find(
            user_id, record_id=reservation_id, task_id=task_id
        )
        if (
            record is None
            or record.id is None
            or record.status not in RELEASABLE_STATUSES
        ):
            logger.info(
                "nothing to release",
                extra={"user_id": user_id, "task_id": task_id, "reservation_id": reservation_id},
            )
            return 0

        if not self._generation_repo.delete(user_id, record.id, RELEASABLE_STATUSES):
            return 0

        amount = record.held_count
        if amount <= 0:
            return 0

        try:
            self._credit_back(user_id, amount, record.held_pools)
        except Exception:  # noqa: BLE001
            self._log_lost_refund(
                "failed to refund released reservation",
                user_id,
                record.task_id,
                amount,
                record.held_pools,
            )
            return 0

        logger.info(
            "released reservation",
            extra={
                "user_id": user_id,
                "task_id": record.task_id,
                "reservation_id": record.id,
                "refunded_count": amount,
            },
        )
        return amount

    # -------- 부분 정산 --------

    def partial_update(
        self,
        user_id: str,
        actual_image_count: int,
        reservation_id: str | None = None,
        task_id: str | None = None,
        refund_count: int | None = None,
    ) -> int:
        """실제 생성된 이미지 수로 기록을 정산하고 차액을 환불한다.

        기본 환불량은 (아직 붙잡고 있는 크레딧 - actual_image_count) 이고,
        refund_count 가 주어지면 그 값을 쓰되 붙잡고 있는 양을 넘지 않는다.
        """
        if not reservation_id and not task_id:
            raise InvalidRequestError("reservationId or taskId is required")
        if actual_image_count < 0:
            raise InvalidRequestError("actualImageCount must not be negative")
        if refund_count is not None and refund_count < 0:
            raise InvalidRequestError("refundCount must not be negative")

        status = (
            GenerationStatus.COMPLETED
            if actual_image_count > 0
            else GenerationStatus.FAILED
        )

        for _ in range(self._config.max_write_attempts):
            record = self._generation_repo.find(
                user_id, record_id=reservation_id, task_id=task_id
            )
            if record is None or record.id is None:
                logger.warning(
                    "partial update for unknown reservation",
                    extra={"user_id": user_id, "task_id": task_id, "reservation_id": reservation_id},
                )
                return 0

            held = record.held_count
            requested = (
                refund_count
                if refund_count is not None
                else max(0, held - actual_image_count)
            )
            amount = min(requested, held)
            released, kept = credit_ledger.split_holdings(record.held_pools, amount)

            applied = self._generation_repo.apply_refund(
                user_id,
                record.id,
                expected_refunded_count=record.refunded_count,
                total_images_count=actual_image_count,
                status=status,
                refunded_count=record.refunded_count + amount,
                held_pools=kept,
            )
            if applied:
                break
        else:
            raise QuotaWriteConflictError(
                f"could not update reservation {reservation_id or task_id}: too many concurrent writes"
            )

        if amount <= 0:
            return 0

        try:
            self._credit_back(user_id, amount, released)
        except Exception:  # noqa: BLE001
            self._log_lost_refund(
                "failed to refund partial reservation",
                user_id,
                record.task_id,
                amount,
                released,
            )
            return 0

        logger.info(
            "partially refunded reservation",
            extra={
                "user_id": user_id,
                "task_id": record.task_id,
                "reservation_id": record.id,
                "image_count": actual_image_count,
                "refunded_count": amount,
            },
        )
        return amount

    # -------- 일일 보상 --------

    def daily_reward_status(self, user_id: str) -> DailyRewardStatus:
        quota = self._quota_repo.find_by_user_id(user_id)
        claimed = quota is not None and credit_ledger.is_today(
            quota.daily_credits_date, self._today()
        )
        return DailyRewardStatus(
            can_claim=not claimed,
            already_claimed=claimed,
            reward_amount=self._config.daily_reward_credits,
        )

    def claim_daily_reward(self, user_id: str) -> DailyRewardResult:
        """오늘의 daily 크레딧을 지급한다. 이미 받았으면 credited=False."""
        is_new_user = self._quota_repo.find_by_user_id(user_id) is None
        amount = self._config.daily_reward_credits

        for _ in range(self._config.max_write_attempts):
            today = self._today()
            quota = self._load_quota(user_id)
            granted = credit_ledger.grant_daily(quota, amount, today)
            if granted is None:
                return DailyRewardResult(
                    credited=False,
                    credits_added=0,
                    summary=self._summarize(quota, today),
                )

            updated = self._quota_repo.compare_and_set(
                user_id,
                quota.version,
                granted.balances(),
                quota.used_credits,
                granted.daily_credits_date,
            )
            if updated is not None:
                logger.info(
                    "granted daily reward of %s credits",
                    amount,
                    extra={"user_id": user_id},
                )
                return DailyRewardResult(
                    credited=True,
                    credits_added=amount,
                    is_new_user=is_new_user,
                    summary=self._summarize(updated, today),
                )

        raise QuotaWriteConflictError(
            f"could not grant daily reward for {user_id}: too many concurrent writes"
        )


def get_quota_repository(
    db: Database = Depends(get_database),
) -> QuotaRepositoryInterface:
    """FastAPI DI용 QuotaRepository 팩토리."""

    return QuotaRepository(db)


def get_generation_repository(
    db: Database = Depends(get_database),
) -> GenerationRepositoryInterface:
    """FastAPI DI용 GenerationRepository 팩토리."""

    return GenerationRepository(db)


def get_reservation_service(
    quota_repo: QuotaRepositoryInterface = Depends(get_quota_repository),
    generation_repo: GenerationRepositoryInterface = Depends(get_generation_repository),
) -> ReservationService:
    """FastAPI DI용 ReservationService 팩토리."""

    return ReservationService(quota_repo, generation_repo, load_config().quota)
