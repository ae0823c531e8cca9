import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.api.modules.registration.errors import ValidationError
from app.api.modules.registration.models import (
    BlockedIp,
    DomainListEntry,
    RegistrationAlert,
    RegistrationAttempt,
)
from app.api.modules.registration.services.blocks.block_store import BlockStore
from app.api.modules.registration.services.core.config import (
    ProtectionConfig,
    ProtectionConfigProvider,
)
from app.api.modules.registration.services.core.ports import (
    AttemptFilters,
    AttemptStats,
    ProtectionUnitOfWork,
)
from app.api.modules.registration.services.core.utils import utcnow

logger = logging.getLogger(__name__)

METRICS_PERIOD_HOURS = 24
ATTACK_PATTERN_DAYS = 7
ALERT_LIST_LIMIT = 100


@dataclass(slots=True)
class RegistrationMetrics:
    period_hours: int
    attempts: AttemptStats
    active_blocks: int
    open_alerts: int
    registration_enabled: bool
    rollout_percentage: int


class RegistrationAdminService:
    """Operator actions over blocks, domain lists, alerts and the config.

    Authorization happens before this service is reached; ``actor`` is only
    recorded, never checked.
    """

    def __init__(
        self,
        uow: ProtectionUnitOfWork,
        block_store: BlockStore,
        config_provider: ProtectionConfigProvider,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._uow = uow
        self._block_store = block_store
        self._config_provider = config_provider
        self._clock = clock

    async def metrics(self) -> RegistrationMetrics:
        since = self._clock() - timedelta(hours=METRICS_PERIOD_HOURS)
        config = self._config_provider.current
        return RegistrationMetrics(
            period_hours=METRICS_PERIOD_HOURS,
            attempts=await self._uow.attempts.stats_since(since),
            active_blocks=await self._block_store.count_blocked(),
            open_alerts=await self._uow.alerts.count_unacknowledged(),
            registration_enabled=config.enabled,
            rollout_percentage=config.rollout_percentage,
        )

    async def list_alerts(self, limit: int = ALERT_LIST_LIMIT) -> Sequence[RegistrationAlert]:
        return await self._uow.alerts.list_unacknowledged(limit)

    async def acknowledge_alerts(self, alert_ids: Sequence[str], actor: str) -> int:
        cleared = await self._uow.alerts.acknowledge(alert_ids, actor, self._clock())
        await self._uow.commit()
        logger.info("Alerts acknowledged", extra={"actor": actor, "count": cleared})
        return cleared

    async def attack_patterns(
        self, days: int = ATTACK_PATTERN_DAYS
    ) -> Sequence[RegistrationAlert]:
        return await self._uow.alerts.list_since(self._clock() - timedelta(days=days))

    async def block_ip(
        self,
        ip_address: str,
        duration_minutes: int | None,
        reason: str,
        actor: str,
    ) -> BlockedIp:
        return await self._block_store.block(ip_address, duration_minutes, reason, actor)

    async def unblock_ip(self, ip_address: str) -> bool:
        return await self._block_store.unblock(ip_address)

    async def list_blocked_ips(self) -> Sequence[BlockedIp]:
        return await self._block_store.list_blocked()

    async def blacklist_domain(
        self, domain: str, reason: str | None, actor: str
    ) -> DomainListEntry:
        return await self._block_store.blacklist(domain, reason, actor)

    async def whitelist_domain(
        self, domain: str, reason: str | None, actor: str
    ) -> DomainListEntry:
        return await self._block_store.whitelist(domain, reason, actor)

    async def remove_domain(self, domain: str, list_type: str | None = None) -> bool:
        return await self._block_store.remove_from_list(domain, list_type)

    async def list_domains(self, list_type: str | None = None) -> Sequence[DomainListEntry]:
        return await self._block_store.list_domains(list_type)

    async def list_attempts(
        self,
        limit: int,
        offset: int,
        filters: AttemptFilters,
    ) -> tuple[Sequence[RegistrationAttempt], int]:
        items = await self._uow.attempts.list_page(limit, offset, filters)
        total = await self._uow.attempts.count(filters)
        return items, total

    def get_config(self) -> ProtectionConfig:
        return self._config_provider.current

    async def update_config(
        self,
        changes: Mapping[str, Any],
        actor: str,
        reason: str | None = None,
    ) -> ProtectionConfig:
        try:
            config = await self._config_provider.update(
                self._uow, changes, actor=actor, reason=reason
            )
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid registration configuration",
                details={
                    "errors": [
                        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                        for err in exc.errors()
                    ]
                },
            ) from exc

        logger.info(
            "Registration configuration updated",
            extra={"actor": actor, "changed": sorted(changes)},
        )
        return config

    async def emergency_disable(self, reason: str, actor: str) -> ProtectionConfig:
        config = await self.update_config({"enabled": False}, actor=actor, reason=reason)
        logger.warning(
            "Registration emergency disabled",
            extra={"actor": actor, "reason": reason},
        )
        return config


__all__ = ("RegistrationAdminService", "RegistrationMetrics")
