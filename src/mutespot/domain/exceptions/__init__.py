"""Domain exceptions."""

from typing import Any

from mutespot.domain.entities.error_codes import (
    EnforcementErrorCode,
    get_error_description,
    is_recoverable_error,
)


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so handlers can read it without
    # parsing str(exception). Don't raise this directly - use a specific subclass so
    # callers (and the FastAPI handlers) can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found.

    HTTP Status: 404
    """

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when input violates a business rule (empty block list, bad options).

    HTTP Status: 422
    """

    pass


class InvalidStateException(DomainException):
    """Raised when an entity is in the wrong state for the requested operation.

    Example: rolling back a dry-run batch, or a batch that is still in progress.
    These are caller errors - rejected before any network call, never retried.

    HTTP Status: 409
    """

    pass


class DuplicateEntityException(DomainException):
    """Raised when a uniqueness rule is violated (e.g. idempotency key already used).

    The executor catches this one itself to resolve concurrent submissions, so it
    should rarely reach the HTTP layer.

    HTTP Status: 409
    """

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} already exists")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ConfigurationError(DomainException):
    """Application misconfiguration (missing provider client, unknown provider).

    HTTP Status: 503
    """

    pass


class ProviderCallError(DomainException):
    """Typed failure of one provider call.

    Hey future me - this is what IProviderActionClient raises for anything that is not
    a success. It carries enough structure for the backoff wrapper (recoverable?
    retry_after?) and the state machine (error_code, retry_count) to act on it
    without ever looking at an httpx object.
    """

    def __init__(
        self,
        message: str,
        error_code: EnforcementErrorCode | str,
        status_code: int | None = None,
        retry_after: float | None = None,
        remaining: int | None = None,
        reset_at: float | None = None,
    ) -> None:
        super().__init__(message or get_error_description(error_code))
        self.error_code = EnforcementErrorCode(error_code)
        self.status_code = status_code
        self.retry_after = retry_after
        self.remaining = remaining
        self.reset_at = reset_at
        # Set by the backoff wrapper when it gives up
        self.retry_count = 0

    @property
    def recoverable(self) -> bool:
        """True for transient failures (429, timeout, 5xx, connection errors)."""
        return is_recoverable_error(self.error_code)

    @property
    def is_rate_limited(self) -> bool:
        return self.error_code == EnforcementErrorCode.RATE_LIMITED


__all__ = [
    "DomainException",
    "EntityNotFoundException",
    "ValidationException",
    "InvalidStateException",
    "DuplicateEntityException",
    "ConfigurationError",
    "ProviderCallError",
]
