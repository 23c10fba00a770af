from __future__ import annotations


class StudioClientError(Exception):
    """Base exception for the studio client."""


class QuotaApiError(StudioClientError):
    """The quota service answered with an error or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InsufficientQuotaError(QuotaApiError):
    """The quota service refused a reservation (HTTP 403)."""

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"insufficient quota: available={available} required={required}",
            status_code=403,
        )
        self.available = available
        self.required = required


class TaskNotFoundError(StudioClientError):
    """No client task with the given id."""
