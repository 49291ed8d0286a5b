"""
core/errors.py -- Error taxonomy shared by services, routes and the CLI.

Services raise HubError subclasses; they never build HTTP responses. The
single handler in api/main.py maps status_code/code/message onto the JSON
error envelope, and web/routes.py maps the issuer's errors onto the
authorize error page.

Messages are user-facing. Keep them free of internal identifiers.
"""

from __future__ import annotations


class HubError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.message
        if code:
            self.code = code
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------


class InvalidRequest(HubError):
    status_code = 400
    code = "invalid_request"
    message = "Invalid request."


class RedirectMismatch(InvalidRequest):
    code = "redirect_mismatch"
    message = "Redirect URI mismatch."


# ---------------------------------------------------------------------------
# 401 / 403
# ---------------------------------------------------------------------------


class Unauthenticated(HubError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class MissingApiKey(Unauthenticated):
    code = "missing_api_key"
    message = "Missing API Key"


class Forbidden(HubError):
    status_code = 403
    code = "forbidden"
    message = "Forbidden."


class AccessDenied(Forbidden):
    """Authenticated but not permitted. reason is the machine-readable cause."""

    code = "access_denied"
    message = "Access denied."

    def __init__(self, message: str | None = None, *, reason: str = "access_denied", code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.reason = reason


class InvalidApiKey(Forbidden):
    code = "invalid_api_key"
    message = "Invalid API Key"


# ---------------------------------------------------------------------------
# 404 / 410
# ---------------------------------------------------------------------------


class NotFound(HubError):
    status_code = 404
    code = "not_found"
    message = "Not found."


class UnknownClient(NotFound):
    code = "unknown_client"
    message = "Unknown client application."


class InvalidOrExpiredCode(NotFound):
    code = "invalid_code"
    message = "Invalid or expired code."


class Gone(HubError):
    status_code = 410
    code = "gone"
    message = "Gone."


class CodeAlreadyUsed(Gone):
    code = "code_already_used"
    message = "Code has already been used."


class CodeExpired(Gone):
    code = "code_expired"
    message = "Code has expired."


# ---------------------------------------------------------------------------
# 429 / 500
# ---------------------------------------------------------------------------


class RateLimited(HubError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after_ms: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms

    @property
    def retry_after_seconds(self) -> int:
        # ceil without importing math; never advertise 0
        return max(1, -(-self.retry_after_ms // 1000))


class InternalError(HubError):
    pass
