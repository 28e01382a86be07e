"""Enforcement error codes - standardized failure classification.

Hey future me - this module decides WHICH provider failures are worth retrying!

RECOVERABLE (transient - the backoff wrapper retries them, and if the attempts run
out the item is failed with is_recoverable=True so a resubmit can pick it up):
- RATE_LIMITED: 429 from the provider
- TIMEOUT: our 30s request timeout fired
- CONNECTION_ERROR: DNS, TLS, connection reset...
- SERVER_ERROR: any 5xx

PERMANENT (retrying won't help - failed immediately, is_recoverable=False):
- NOT_FOUND: 404, the entity is gone
- VALIDATION_FAILED: 400/422, the provider rejected the payload
- UNAUTHORIZED / FORBIDDEN: 401/403, token problem (re-auth is a user action)
- BAD_RESPONSE: 2xx but the body was not what we expected
- UNSUPPORTED_ACTION: the provider has no call for this verb

USAGE:
    code = error_code_for_status(response.status_code)
    if is_recoverable_error(code):
        ...
"""

from enum import StrEnum


class EnforcementErrorCode(StrEnum):
    """Standardized error codes for failed action items.

    StrEnum means values ARE strings, so they go into the DB as-is.
    """

    # Recoverable
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    SERVER_ERROR = "server_error"

    # Permanent
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    BAD_RESPONSE = "bad_response"
    UNSUPPORTED_ACTION = "unsupported_action"


RECOVERABLE_ERRORS: frozenset[str] = frozenset(
    {
        EnforcementErrorCode.RATE_LIMITED,
        EnforcementErrorCode.TIMEOUT,
        EnforcementErrorCode.CONNECTION_ERROR,
        EnforcementErrorCode.SERVER_ERROR,
    }
)

PERMANENT_ERRORS: frozenset[str] = frozenset(
    {
        EnforcementErrorCode.NOT_FOUND,
        EnforcementErrorCode.VALIDATION_FAILED,
        EnforcementErrorCode.UNAUTHORIZED,
        EnforcementErrorCode.FORBIDDEN,
        EnforcementErrorCode.BAD_RESPONSE,
        EnforcementErrorCode.UNSUPPORTED_ACTION,
    }
)

ERROR_DESCRIPTIONS: dict[str, str] = {
    EnforcementErrorCode.RATE_LIMITED: "Provider rate limit exceeded",
    EnforcementErrorCode.TIMEOUT: "Request to provider timed out",
    EnforcementErrorCode.CONNECTION_ERROR: "Could not connect to provider",
    EnforcementErrorCode.SERVER_ERROR: "Provider returned a server error",
    EnforcementErrorCode.NOT_FOUND: "Entity not found at provider",
    EnforcementErrorCode.VALIDATION_FAILED: "Provider rejected the request",
    EnforcementErrorCode.UNAUTHORIZED: "Access token rejected by provider",
    EnforcementErrorCode.FORBIDDEN: "Access token lacks the required scope",
    EnforcementErrorCode.BAD_RESPONSE: "Unexpected response body from provider",
    EnforcementErrorCode.UNSUPPORTED_ACTION: "Provider does not support this action",
}


def error_code_for_status(status_code: int) -> EnforcementErrorCode:
    """Classify a non-2xx HTTP status into an error code."""
    if status_code == 429:
        return EnforcementErrorCode.RATE_LIMITED
    if status_code >= 500:
        return EnforcementErrorCode.SERVER_ERROR
    if status_code == 404:
        return EnforcementErrorCode.NOT_FOUND
    if status_code == 401:
        return EnforcementErrorCode.UNAUTHORIZED
    if status_code == 403:
        return EnforcementErrorCode.FORBIDDEN
    if status_code == 408:
        return EnforcementErrorCode.TIMEOUT
    return EnforcementErrorCode.VALIDATION_FAILED


def is_recoverable_error(error_code: str | None) -> bool:
    """Check if an error code is recoverable.

    None (no code recorded) is treated as NOT recoverable - we only retry what we
    positively know to be transient.
    """
    return error_code in RECOVERABLE_ERRORS


def get_error_description(error_code: str | None) -> str:
    """Get a human-readable description for an error code."""
    if error_code is None:
        return "Unknown error"
    return ERROR_DESCRIPTIONS.get(error_code, f"Unknown error ({error_code})")
