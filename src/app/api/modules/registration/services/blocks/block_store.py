import logging
import re
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from app.api.modules.registration.errors import ValidationError
from app.api.modules.registration.models import BlockedIp, DomainListEntry
from app.api.modules.registration.services.core.ports import ProtectionUnitOfWork
from app.api.modules.registration.services.core.utils import normalize_domain, utcnow
from app.api.modules.registration.services.network.common import normalize_ip
from app.api.modules.registration.services.scoring.scorer import BLACKLIST, WHITELIST

logger = logging.getLogger(__name__)

_DOMAIN_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")
LIST_TYPES = (BLACKLIST, WHITELIST)


def _require_ip(ip_address: str) -> str:
    normalized = normalize_ip(ip_address)
    if normalized is None or "," in ip_address:
        raise ValidationError("Invalid IP address", details={"field": "ip_address"})
    return normalized


def _require_domain(domain: str) -> str:
    normalized = normalize_domain(domain)
    if not _DOMAIN_RE.match(normalized):
        raise ValidationError("Invalid domain", details={"field": "domain"})
    return normalized


class BlockStore:
    """Blocked IPs and the domain black/white lists.

    Expired IP blocks are ignored at read time; ``purge_expired`` removes
    them physically and is driven by the attack-pattern monitor.
    """

    def __init__(
        self,
        uow: ProtectionUnitOfWork,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._uow = uow
        self._clock = clock

    async def _commit(self) -> None:
        try:
            await self._uow.commit()
        except Exception:
            await self._uow.rollback()
            raise

    async def get_block(self, ip_address: str) -> BlockedIp | None:
        return await self._uow.blocked_ips.get_active(ip_address, self._clock())

    async def is_blocked(self, ip_address: str) -> bool:
        return await self.get_block(ip_address) is not None

    async def block(
        self,
        ip_address: str,
        duration_minutes: int | None,
        reason: str,
        actor: str,
    ) -> BlockedIp:
        """Create or replace a block; ``None`` duration means permanent."""
        ip = _require_ip(ip_address)
        if duration_minutes is not None and duration_minutes <= 0:
            raise ValidationError(
                "Block duration must be positive",
                details={"field": "duration_minutes"},
            )

        now = self._clock()
        expires_at = (
            now + timedelta(minutes=duration_minutes)
            if duration_minutes is not None
            else None
        )
        record = await self._uow.blocked_ips.upsert(
            ip_address=ip,
            reason=reason,
            blocked_at=now,
            blocked_by=actor,
            expires_at=expires_at,
        )
        await self._commit()
        logger.warning(
            "IP blocked",
            extra={
                "ip": ip,
                "actor": actor,
                "reason": reason,
                "duration_minutes": duration_minutes,
            },
        )
        return record

    async def unblock(self, ip_address: str) -> bool:
        ip = _require_ip(ip_address)
        removed = await self._uow.blocked_ips.delete(ip)
        await self._commit()
        if removed:
            logger.info("IP unblocked", extra={"ip": ip})
        return removed

    async def list_blocked(self) -> Sequence[BlockedIp]:
        return await self._uow.blocked_ips.list_active(self._clock())

    async def count_blocked(self) -> int:
        return await self._uow.blocked_ips.count_active(self._clock())

    async def purge_expired(self) -> int:
        purged = await self._uow.blocked_ips.delete_expired(self._clock())
        await self._commit()
        if purged:
            logger.info("Purged expired IP blocks", extra={"count": purged})
        return purged

    async def domain_status(self, domain: str | None) -> str | None:
        if not domain:
            return None
        entry = await self._uow.domains.get(normalize_domain(domain))
        return entry.list_type if entry else None

    async def _put_on_list(
        self,
        domain: str,
        list_type: str,
        reason: str | None,
        actor: str,
    ) -> DomainListEntry:
        normalized = _require_domain(domain)
        # Upsert replaces the list type, so a domain never sits on both lists.
        entry = await self._uow.domains.upsert(
            domain=normalized,
            list_type=list_type,
            reason=reason,
            added_by=actor,
            added_at=self._clock(),
        )
        await self._commit()
        logger.info(
            "Domain listed",
            extra={"domain": normalized, "list_type": list_type, "actor": actor},
        )
        return entry

    async def blacklist(
        self, domain: str, reason: str | None, actor: str
    ) -> DomainListEntry:
        return await self._put_on_list(domain, BLACKLIST, reason, actor)

    async def whitelist(
        self, domain: str, reason: str | None, actor: str
    ) -> DomainListEntry:
        return await self._put_on_list(domain, WHITELIST, reason, actor)

    async def remove_from_list(self, domain: str, list_type: str | None = None) -> bool:
        if list_type is not None and list_type not in LIST_TYPES:
            raise ValidationError("Unknown list type", details={"field": "list_type"})
        normalized = normalize_domain(domain)
        removed = await self._uow.domains.delete(normalized, list_type)
        await self._commit()
        if removed:
            logger.info(
                "Domain removed from list",
                extra={"domain": normalized, "list_type": list_type},
            )
        return removed

    async def list_domains(self, list_type: str | None = None) -> Sequence[DomainListEntry]:
        if list_type is not None and list_type not in LIST_TYPES:
            raise ValidationError("Unknown list type", details={"field": "list_type"})
        return await self._uow.domains.list_entries(list_type)


__all__ = ("LIST_TYPES", "BlockStore")
