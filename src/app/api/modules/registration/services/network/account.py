import logging
from typing import Any

import httpx

from app.api.modules.registration.errors import (
    AccountServiceUnavailableError,
    ConflictError,
    ValidationError,
)
from app.api.modules.registration.services.core.ports import (
    AccountRegistration,
    CreatedAccount,
)
from app.settings import Config

logger = logging.getLogger(__name__)


def _error_details(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    if not isinstance(data, dict):
        return {}
    errors = data.get("errors") or data.get("detail")
    return {"errors": errors} if errors else {}


class HttpAccountClient:
    """Hands a decided registration to the account service over HTTP."""

    def __init__(self, client: httpx.AsyncClient, config: Config):
        settings = config.registration
        self._client = client
        self._base_url = settings.account_service_url.rstrip("/")
        self._timeout = settings.account_timeout_seconds
        self._retry_after = settings.account_retry_after_seconds

    async def create_account(self, registration: AccountRegistration) -> CreatedAccount:
        payload = {
            "email": registration.email,
            "username": registration.username,
            "password": registration.password,
            "firstName": registration.first_name,
            "lastName": registration.last_name,
        }
        try:
            response = await self._client.post(
                f"{self._base_url}/accounts",
                json=payload,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Account service request failed",
                extra={"error_type": type(exc).__name__},
            )
            raise AccountServiceUnavailableError(self._retry_after) from exc

        if response.status_code == httpx.codes.CONFLICT:
            raise ConflictError("An account with this email or username already exists.")
        if response.status_code in (
            httpx.codes.BAD_REQUEST,
            httpx.codes.UNPROCESSABLE_ENTITY,
        ):
            raise ValidationError(
                "Registration data was rejected.",
                details=_error_details(response),
            )
        if not response.is_success:
            logger.warning(
                "Account service returned an error",
                extra={"status_code": response.status_code},
            )
            raise AccountServiceUnavailableError(self._retry_after)

        try:
            data = response.json()
        except ValueError:
            data = {}
        user_id = data.get("id") if isinstance(data, dict) else None
        return CreatedAccount(
            email=registration.email,
            user_id=str(user_id) if user_id is not None else None,
        )

    async def resend_verification(self, email: str) -> None:
        try:
            response = await self._client.post(
                f"{self._base_url}/accounts/resend-verification",
                json={"email": email},
                timeout=self._timeout,
            )
        except httpx.HTTPError:
            logger.warning("Resend verification request failed")
            return
        if not response.is_success and response.status_code != httpx.codes.NOT_FOUND:
            logger.warning(
                "Resend verification was not accepted",
                extra={"status_code": response.status_code},
            )


__all__ = ("HttpAccountClient",)
