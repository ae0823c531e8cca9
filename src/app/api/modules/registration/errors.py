"""Error taxonomy for the registration protection pipeline.

Every terminal state of the orchestrator maps to exactly one of these (or to
a successful result). The HTTP layer turns them into responses without
looking inside ``details`` for anything it would not show a caller.
"""

from typing import Any

GENERIC_SECURITY_MESSAGE = (
    "Registration could not be completed. Please try again later."
)


class RegistrationError(Exception):
    """Base exception for all registration errors."""

    status_code: int = 500
    default_code: str = "REGISTRATION_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class ValidationError(RegistrationError):
    """Malformed input; ``details`` carries field-level messages."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class CaptchaRequiredError(RegistrationError):
    """Control signal: the client must retry the same request with a token."""

    status_code = 400
    default_code = "CAPTCHA_REQUIRED"

    def __init__(
        self,
        provider: str | None = None,
        site_key: str | None = None,
    ) -> None:
        super().__init__(
            "CAPTCHA_REQUIRED",
            details={
                "requireCaptcha": True,
                "captchaProvider": provider,
                "captchaSiteKey": site_key,
            },
        )


class SecurityError(RegistrationError):
    """Blocked IP, denied score or failed CAPTCHA.

    The message shown to the caller is always the generic one; the real
    trigger only travels in ``reason`` for the ledger and the logs.
    """

    status_code = 403
    default_code = "FORBIDDEN"

    def __init__(
        self,
        reason: str,
        message: str = GENERIC_SECURITY_MESSAGE,
    ) -> None:
        self.reason = reason
        super().__init__(message)


class RegistrationDisabledError(SecurityError):
    default_code = "REGISTRATION_DISABLED"

    def __init__(self, reason: str = "registration_disabled") -> None:
        super().__init__(reason, message="Registration is currently closed.")


class RateLimitError(RegistrationError):
    status_code = 429
    default_code = "RATE_LIMITED"

    def __init__(self, retry_after: int, reason: str = "rate_limited") -> None:
        self.retry_after = max(1, int(retry_after))
        self.reason = reason
        super().__init__(
            "Too many registration attempts. Please try again later.",
            details={"retryAfter": self.retry_after},
        )


class ConflictError(RegistrationError):
    status_code = 409
    default_code = "CONFLICT"


class AccountServiceUnavailableError(RegistrationError):
    """The account service timed out or failed; safe to retry."""

    status_code = 503
    default_code = "SERVICE_UNAVAILABLE"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = max(1, int(retry_after))
        super().__init__(
            "Registration is temporarily unavailable. Please try again shortly.",
            details={"retryAfter": self.retry_after},
        )


class ProtectionUnavailableError(RegistrationError):
    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self) -> None:
        super().__init__("Registration failed. Please try again later.")


__all__ = (
    "GENERIC_SECURITY_MESSAGE",
    "AccountServiceUnavailableError",
    "CaptchaRequiredError",
    "ConflictError",
    "ProtectionUnavailableError",
    "RateLimitError",
    "RegistrationDisabledError",
    "RegistrationError",
    "SecurityError",
    "ValidationError",
)
