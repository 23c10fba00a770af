from __future__ import annotations


class QuotaServiceError(Exception):
    """Base exception for all quota-service errors."""


class InvalidRequestError(QuotaServiceError):
    """Malformed reservation/generation requests (missing ids, negative counts)."""


class InsufficientQuotaError(QuotaServiceError):
    """Available credits are lower than the requested image count. Nothing was mutated."""

    def __init__(self, available: int, required: int) -> None:
        super().__init__(f"insufficient quota: available={available} required={required}")
        self.available = available
        self.required = required


class ReservationPersistenceError(QuotaServiceError):
    """The ledger debit succeeded but the generation record could not be created.

    compensated=False means the rollback write failed too and the ledger needs
    manual reconciliation.
    """

    def __init__(self, task_id: str, compensated: bool) -> None:
        super().__init__(
            f"failed to persist reservation for task {task_id} (compensated={compensated})"
        )
        self.task_id = task_id
        self.compensated = compensated


class QuotaWriteConflictError(QuotaServiceError):
    """Conditional writes kept losing against concurrent writers."""


class GenerationNotFoundError(QuotaServiceError):
    """No generation record for the given task id / reservation id."""


class DuplicateGenerationError(QuotaServiceError):
    """A generation record for the same (user_id, task_id) already exists."""
