from collections.abc import AsyncIterator

import httpx
from dishka import Provider, Scope, provide

from app.api.modules.registration.services.core import AccountCreator, CaptchaVerifier
from app.api.modules.registration.services.network import (
    CaptchaVerifierService,
    HttpAccountClient,
    IpGeoClient,
)
from app.settings import Config

OUTBOUND_USER_AGENT = "registration-guard/1.0"


class HttpClientsProvider(Provider):
    """Outbound integrations: CAPTCHA siteverify, IP geolocation, account service.

    All three share one pooled ``httpx.AsyncClient`` for the lifetime of the
    app and pass their own per-call timeouts.
    """

    @provide(scope=Scope.APP)
    async def get_httpx_client(self) -> AsyncIterator[httpx.AsyncClient]:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=5.0),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            headers={"User-Agent": OUTBOUND_USER_AGENT},
        ) as client:
            yield client

    @provide(scope=Scope.APP)
    def get_ip_geo_client(self, client: httpx.AsyncClient, config: Config) -> IpGeoClient:
        return IpGeoClient(client, config)

    @provide(scope=Scope.APP, provides=CaptchaVerifier)
    def get_captcha_verifier(
        self, client: httpx.AsyncClient, config: Config
    ) -> CaptchaVerifierService:
        return CaptchaVerifierService(client, config)

    @provide(scope=Scope.APP, provides=AccountCreator)
    def get_account_client(
        self, client: httpx.AsyncClient, config: Config
    ) -> HttpAccountClient:
        return HttpAccountClient(client, config)
