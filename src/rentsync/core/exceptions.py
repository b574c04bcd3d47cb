"""Exception hierarchy for the sync engine.

Remote failures carry the target system, HTTP status and response body so
the error logger can categorize them without parsing messages.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


class ApiError(SyncError):
    """Non-success response from a remote system."""

    def __init__(
        self,
        system: str,
        status_code: int | None,
        body: str = "",
        method: str | None = None,
        endpoint: str | None = None,
    ) -> None:
        self.system = system
        self.status_code = status_code
        self.body = body
        self.method = method
        self.endpoint = endpoint
        super().__init__(f"{system} API error: {status_code} - {body[:500]}")


class RateLimitError(ApiError):
    """429 responses kept coming after the retry cap was reached."""

    def __init__(self, system: str, endpoint: str | None, attempts: int, method: str | None = None) -> None:
        self.attempts = attempts
        super().__init__(system, 429, f"rate limit hit, max retries ({attempts}) reached", method, endpoint)


class AuthError(ApiError):
    """401/403 from a remote system."""


class ValidationError(ApiError):
    """400/422 from a remote system."""


class ConflictError(ApiError):
    """409 on create: the remote system already holds the object."""

    def __init__(
        self,
        system: str,
        body: str = "",
        existing_id: str | None = None,
        method: str | None = None,
        endpoint: str | None = None,
    ) -> None:
        self.existing_id = existing_id
        super().__init__(system, 409, body, method, endpoint)


class ApiTimeoutError(SyncError):
    """A remote call exceeded its timeout."""

    def __init__(self, system: str, endpoint: str, method: str | None = None) -> None:
        self.system = system
        self.endpoint = endpoint
        self.method = method
        super().__init__(f"{system} request timeout: {method} {endpoint}")


class LockTimeoutError(SyncError):
    """The per-entity lease could not be obtained within the allowed wait."""

    def __init__(self, kind: str, external_id: str, timeout: float) -> None:
        self.kind = kind
        self.external_id = external_id
        self.timeout = timeout
        super().__init__(f"timeout after {timeout}s waiting for {kind}:{external_id} lease")


class MappingError(SyncError):
    """The mapping store holds data the sync cannot proceed with."""


class StageMappingError(SyncError):
    """The status to pipeline-stage table does not cover every status code."""


def status_error(
    system: str,
    status_code: int,
    body: str,
    method: str | None = None,
    endpoint: str | None = None,
) -> ApiError:
    """Build the most specific ApiError subclass for an HTTP status."""
    if status_code in (401, 403):
        return AuthError(system, status_code, body, method, endpoint)
    if status_code in (400, 422):
        return ValidationError(system, status_code, body, method, endpoint)
    return ApiError(system, status_code, body, method, endpoint)
