from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from app.api.modules.registration import models  # noqa: F401
from app.api.modules.registration.services.blocks import BlockStore
from app.api.modules.registration.services.core import (
    ProtectionConfig,
    ProtectionConfigProvider,
)
from app.api.modules.registration.services.limits import (
    FixedWindowRateLimiter,
    InMemoryCounterStore,
)
from app.api.modules.registration.services.orchestrator import (
    ProtectionOrchestrator,
    RegistrationRequest,
)
from app.api.modules.registration.services.scoring import SuspicionScorer
from app.database import Base, build_session_factory
from app.settings import RegistrationConfig
from tests.fakes import (
    BROWSER_UA,
    FakeAccountCreator,
    FakeCaptchaVerifier,
    FakeClock,
    FakeTimer,
    FakeUnitOfWork,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def uow() -> FakeUnitOfWork:
    return FakeUnitOfWork()


@pytest.fixture
def block_store(uow: FakeUnitOfWork, clock: FakeClock) -> BlockStore:
    return BlockStore(uow, clock=clock)


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def rate_limiter(counter_store: InMemoryCounterStore, timer: FakeTimer) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(counter_store, clock=timer)


@pytest.fixture
def config_provider() -> ProtectionConfigProvider:
    return ProtectionConfigProvider(ProtectionConfig())


@pytest.fixture
def captcha() -> FakeCaptchaVerifier:
    return FakeCaptchaVerifier()


@pytest.fixture
def accounts() -> FakeAccountCreator:
    return FakeAccountCreator()


@pytest.fixture
def settings() -> RegistrationConfig:
    return RegistrationConfig(account_timeout_seconds=0.05, account_retry_after_seconds=30)


@pytest.fixture
def recorded() -> list[int]:
    return []


@pytest.fixture
def orchestrator(
    uow: FakeUnitOfWork,
    config_provider: ProtectionConfigProvider,
    block_store: BlockStore,
    rate_limiter: FixedWindowRateLimiter,
    captcha: FakeCaptchaVerifier,
    accounts: FakeAccountCreator,
    settings: RegistrationConfig,
    clock: FakeClock,
    recorded: list[int],
) -> ProtectionOrchestrator:
    return ProtectionOrchestrator(
        uow=uow,
        config_provider=config_provider,
        block_store=block_store,
        rate_limiter=rate_limiter,
        scorer=SuspicionScorer(),
        captcha_verifier=captcha,
        accounts=accounts,
        settings=settings,
        on_attempt_recorded=lambda: recorded.append(1),
        clock=clock,
    )


@pytest.fixture
def make_request() -> Callable[..., RegistrationRequest]:
    def _make(**overrides: Any) -> RegistrationRequest:
        data: dict[str, Any] = {
            "email": "jane.doe@example.com",
            "username": "jane_doe",
            "password": "Sup3rSecret",
            "ip_address": "203.0.113.10",
            "user_agent": BROWSER_UA,
        }
        data.update(overrides)
        return RegistrationRequest(**data)

    return _make


@pytest.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gateways.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    async with build_session_factory(engine)() as session:
        yield session
