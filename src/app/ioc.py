from collections.abc import AsyncIterator
from functools import partial

from dishka import AsyncContainer, Provider, Scope, make_async_container, provide
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.api.modules.registration.service import RegistrationFacadeService
from app.api.modules.registration.services import IpGeoClient, RequestIpResolver
from app.api.modules.registration.services.admin import RegistrationAdminService
from app.api.modules.registration.services.blocks import BlockStore
from app.api.modules.registration.services.core import (
    AccountCreator,
    CaptchaVerifier,
    ProtectionConfig,
    ProtectionConfigProvider,
)
from app.api.modules.registration.services.detection import AttackPatternMonitor
from app.api.modules.registration.services.limits import (
    CounterStore,
    FixedWindowRateLimiter,
    InMemoryCounterStore,
    RedisCounterStore,
)
from app.api.modules.registration.services.orchestrator import ProtectionOrchestrator
from app.api.modules.registration.services.scoring import SuspicionScorer
from app.clients.providers import HttpClientsProvider
from app.database import build_engine, build_session_factory
from app.database.uow import UnitOfWork, open_unit_of_work
from app.settings import Config, RegistrationConfig, get_config


class AppProvider(Provider):
    """Application provider for dependency injection."""

    @provide(scope=Scope.APP)
    def get_config(self) -> Config:
        return get_config()

    @provide(scope=Scope.APP)
    def get_registration_settings(self, config: Config) -> RegistrationConfig:
        return config.registration


class DatabaseProvider(Provider):
    @provide(scope=Scope.APP)
    async def get_engine(self, config: Config) -> AsyncIterator[AsyncEngine]:
        engine = build_engine(config)
        yield engine
        await engine.dispose()

    @provide(scope=Scope.APP)
    def get_session_factory(
        self, engine: AsyncEngine
    ) -> async_sessionmaker[AsyncSession]:
        return build_session_factory(engine)

    @provide(scope=Scope.REQUEST)
    async def get_session(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    @provide(scope=Scope.REQUEST)
    def get_unit_of_work(self, session: AsyncSession) -> UnitOfWork:
        return UnitOfWork(session)


class ServicesProvider(Provider):
    """Services provider for dependency injection."""

    @provide(scope=Scope.APP)
    async def get_counter_store(self, config: Config) -> AsyncIterator[CounterStore]:
        if config.registration.counter_backend != "redis":
            yield InMemoryCounterStore()
            return

        redis = Redis.from_url(config.redis_url, decode_responses=True)
        try:
            yield RedisCounterStore(redis)
        finally:
            await redis.aclose()

    @provide(scope=Scope.APP)
    def get_rate_limiter(self, store: CounterStore) -> FixedWindowRateLimiter:
        return FixedWindowRateLimiter(store)

    @provide(scope=Scope.APP)
    def get_config_provider(
        self, settings: RegistrationConfig
    ) -> ProtectionConfigProvider:
        return ProtectionConfigProvider(ProtectionConfig.from_settings(settings))

    @provide(scope=Scope.APP)
    def get_attack_pattern_monitor(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: RegistrationConfig,
        config_provider: ProtectionConfigProvider,
    ) -> AttackPatternMonitor:
        return AttackPatternMonitor(
            uow_factory=partial(open_unit_of_work, session_factory),
            settings=settings,
            config_provider=config_provider,
        )

    @provide(scope=Scope.APP)
    def get_scorer(self) -> SuspicionScorer:
        return SuspicionScorer()

    @provide(scope=Scope.APP)
    def get_request_ip_resolver(self, config: Config) -> RequestIpResolver:
        return RequestIpResolver(config)

    @provide(scope=Scope.REQUEST)
    def get_block_store(self, uow: UnitOfWork) -> BlockStore:
        return BlockStore(uow)

    @provide(scope=Scope.REQUEST)
    def get_protection_orchestrator(
        self,
        uow: UnitOfWork,
        config_provider: ProtectionConfigProvider,
        block_store: BlockStore,
        rate_limiter: FixedWindowRateLimiter,
        scorer: SuspicionScorer,
        captcha_verifier: CaptchaVerifier,
        accounts: AccountCreator,
        settings: RegistrationConfig,
        monitor: AttackPatternMonitor,
    ) -> ProtectionOrchestrator:
        return ProtectionOrchestrator(
            uow=uow,
            config_provider=config_provider,
            block_store=block_store,
            rate_limiter=rate_limiter,
            scorer=scorer,
            captcha_verifier=captcha_verifier,
            accounts=accounts,
            settings=settings,
            on_attempt_recorded=monitor.notify_attempt,
        )

    @provide(scope=Scope.REQUEST)
    def get_admin_service(
        self,
        uow: UnitOfWork,
        block_store: BlockStore,
        config_provider: ProtectionConfigProvider,
    ) -> RegistrationAdminService:
        return RegistrationAdminService(
            uow=uow,
            block_store=block_store,
            config_provider=config_provider,
        )

    @provide(scope=Scope.REQUEST)
    def get_registration_facade_service(
        self,
        orchestrator: ProtectionOrchestrator,
        request_ip_resolver: RequestIpResolver,
        ip_geo_client: IpGeoClient,
        accounts: AccountCreator,
    ) -> RegistrationFacadeService:
        return RegistrationFacadeService(
            orchestrator=orchestrator,
            ip_resolver=request_ip_resolver,
            ip_geo_client=ip_geo_client,
            accounts=accounts,
        )


def get_async_container(*overrides: Provider) -> AsyncContainer:
    return make_async_container(
        AppProvider(),
        DatabaseProvider(),
        ServicesProvider(),
        HttpClientsProvider(),
        *overrides,
    )
