"""Server-side CAPTCHA token verification.

Only the vendor's siteverify call lives here. Rendering the widget is the
client's job; the registration error carries the provider and site key it
needs for that.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.settings import Config

logger = logging.getLogger(__name__)

SITEVERIFY_ENDPOINTS = {
    "turnstile": "https://challenges.cloudflare.com/turnstile/v0/siteverify",
    "hcaptcha": "https://hcaptcha.com/siteverify",
    "recaptcha": "https://www.google.com/recaptcha/api/siteverify",
}


@dataclass(slots=True)
class CaptchaVerificationResult:
    success: bool
    error_codes: list[str] = field(default_factory=list)
    score: float | None = None
    hostname: str | None = None

    @classmethod
    def rejected(cls, code: str) -> "CaptchaVerificationResult":
        return cls(success=False, error_codes=[code])


def _error_codes(data: dict[str, Any]) -> list[str]:
    raw = data.get("error-codes", data.get("error_codes"))
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list):
        return [str(code) for code in raw if code]
    return []


class CaptchaVerifierService:
    def __init__(self, client: httpx.AsyncClient, config: Config):
        settings = config.registration
        self._client = client
        self._provider = settings.captcha_provider
        self._site_key = settings.captcha_site_key
        self._secret_key = settings.captcha_secret_key
        self._timeout = settings.captcha_timeout_seconds
        self._min_score = settings.captcha_min_score
        self._endpoint = settings.captcha_verify_url or SITEVERIFY_ENDPOINTS.get(
            self._provider
        )

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def site_key(self) -> str | None:
        return self._site_key

    def is_configured(self) -> bool:
        return all((self._secret_key, self._site_key, self._endpoint))

    def _form(self, token: str, remote_ip: str | None) -> dict[str, str]:
        form = {"secret": self._secret_key or "", "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip
        if self._provider == "hcaptcha" and self._site_key:
            form["sitekey"] = self._site_key
        return form

    def _interpret(self, status_code: int, data: dict[str, Any]) -> CaptchaVerificationResult:
        result = CaptchaVerificationResult(
            success=data.get("success") is True,
            error_codes=_error_codes(data),
            hostname=data["hostname"] if isinstance(data.get("hostname"), str) else None,
        )
        if not result.success and not result.error_codes and status_code != 200:
            result.error_codes.append(f"http_{status_code}")

        # reCAPTCHA v3 style vendors answer success with a bot likelihood.
        score = data.get("score")
        if isinstance(score, int | float) and not isinstance(score, bool):
            result.score = float(score)
            if result.success and result.score < self._min_score:
                result.success = False
                result.error_codes.append("score_below_minimum")
        return result

    async def verify(
        self,
        token: str,
        remote_ip: str | None,
    ) -> CaptchaVerificationResult:
        if not self.is_configured():
            return CaptchaVerificationResult.rejected("not_configured")

        try:
            response = await self._client.post(
                self._endpoint or "",
                data=self._form(token, remote_ip),
                timeout=self._timeout,
                follow_redirects=True,
            )
            data = response.json()
        except httpx.HTTPError:
            logger.warning(
                "CAPTCHA siteverify unreachable", extra={"provider": self._provider}
            )
            return CaptchaVerificationResult.rejected("network_error")
        except ValueError:
            logger.warning(
                "CAPTCHA siteverify answered with invalid JSON",
                extra={"provider": self._provider, "status_code": response.status_code},
            )
            return CaptchaVerificationResult.rejected(f"http_{response.status_code}")

        if not isinstance(data, dict):
            return CaptchaVerificationResult.rejected("malformed_response")
        return self._interpret(response.status_code, data)


__all__ = ("SITEVERIFY_ENDPOINTS", "CaptchaVerificationResult", "CaptchaVerifierService")
