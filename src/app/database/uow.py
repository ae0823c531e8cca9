from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.modules.registration.gateway import (
    BlockedIpGateway,
    DomainListGateway,
    FeatureFlagGateway,
    RegistrationAlertGateway,
    RegistrationAttemptGateway,
)


class UnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.attempts = RegistrationAttemptGateway(session)
        self.blocked_ips = BlockedIpGateway(session)
        self.domains = DomainListGateway(session)
        self.alerts = RegistrationAlertGateway(session)
        self.flags = FeatureFlagGateway(session)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


@asynccontextmanager
async def open_unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[UnitOfWork]:
    async with session_factory() as session:
        yield UnitOfWork(session)


__all__ = ("UnitOfWork", "open_unit_of_work")
