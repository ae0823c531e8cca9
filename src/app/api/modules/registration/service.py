import logging

from fastapi import Request

from app.api.modules.registration.schema import (
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    RegistrationStatusResponse,
    ResendVerificationRequest,
)
from app.api.modules.registration.services.core.ports import AccountCreator
from app.api.modules.registration.services.core.utils import normalize_email
from app.api.modules.registration.services.network import IpGeoClient, RequestIpResolver
from app.api.modules.registration.services.orchestrator import (
    ProtectionOrchestrator,
    RegistrationRequest,
)

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"
RESEND_MESSAGE = "If this email is registered, a verification email has been sent."
REGISTERED_MESSAGE = (
    "Registration initiated. Check your email to verify your account."
)


class RegistrationFacadeService:
    def __init__(
        self,
        orchestrator: ProtectionOrchestrator,
        ip_resolver: RequestIpResolver,
        ip_geo_client: IpGeoClient,
        accounts: AccountCreator,
    ):
        self._orchestrator = orchestrator
        self._ip_resolver = ip_resolver
        self._ip_geo_client = ip_geo_client
        self._accounts = accounts

    async def register_request(
        self,
        request: Request,
        payload: RegisterRequest,
    ) -> RegisterResponse:
        request_ip = self._ip_resolver.get_request_ip(request)
        country_iso = await self._ip_geo_client.country_for(request_ip)

        outcome = await self._orchestrator.register(
            RegistrationRequest(
                email=payload.email,
                username=payload.username,
                password=payload.password,
                ip_address=request_ip or UNKNOWN_IP,
                first_name=payload.first_name,
                last_name=payload.last_name,
                fingerprint=payload.fingerprint,
                user_agent=request.headers.get("user-agent"),
                country_iso=country_iso,
                captcha_token=payload.captcha_token,
            )
        )
        return RegisterResponse(
            message=REGISTERED_MESSAGE,
            email=outcome.account.email,
            user_id=outcome.account.user_id,
            requires_verification=outcome.account.requires_verification,
            captcha_verified=outcome.captcha_verified,
        )

    async def status_request(self, request: Request) -> RegistrationStatusResponse:
        availability = await self._orchestrator.availability(
            self._ip_resolver.get_request_ip(request)
        )
        return RegistrationStatusResponse(
            enabled=availability.enabled,
            message=availability.message,
        )

    async def resend_verification(
        self, payload: ResendVerificationRequest
    ) -> MessageResponse:
        # Same answer whether or not the address exists.
        try:
            await self._accounts.resend_verification(normalize_email(payload.email))
        except Exception:
            logger.exception("Resend verification failed")
        return MessageResponse(message=RESEND_MESSAGE)
