from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import (
    ColumnElement,
    case,
    delete,
    distinct,
    exists,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.modules.registration.models import (
    BlockedIp,
    DomainListEntry,
    FeatureFlag,
    RegistrationAlert,
    RegistrationAttempt,
)
from app.api.modules.registration.services.core.ports import (
    AttemptFilters,
    AttemptStats,
)


def _insert_for(session: AsyncSession):  # noqa: ANN202
    bind = session.bind
    if bind is not None and bind.dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def _active_block(now: datetime) -> ColumnElement[bool]:
    return or_(BlockedIp.expires_at.is_(None), BlockedIp.expires_at > now)


class RegistrationAttemptGateway:
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _filters(filters: AttemptFilters) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if filters.success is not None:
            clauses.append(RegistrationAttempt.success.is_(filters.success))
        if filters.ip_address:
            clauses.append(RegistrationAttempt.ip_address == filters.ip_address)
        if filters.email_domain:
            clauses.append(RegistrationAttempt.email_domain == filters.email_domain)
        return clauses

    async def add(self, attempt: RegistrationAttempt) -> RegistrationAttempt:
        self.session.add(attempt)
        await self.session.flush()
        return attempt

    async def recent_for_ip(
        self, ip_address: str, limit: int
    ) -> Sequence[RegistrationAttempt]:
        stmt = (
            select(RegistrationAttempt)
            .where(RegistrationAttempt.ip_address == ip_address)
            .order_by(
                RegistrationAttempt.attempted_at.desc(),
                RegistrationAttempt.id.desc(),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_distinct_emails_for_fingerprint(
        self,
        fingerprint: str,
        since: datetime,
        exclude_email_hash: str | None = None,
    ) -> int:
        stmt = select(func.count(distinct(RegistrationAttempt.email_hash))).where(
            RegistrationAttempt.fingerprint == fingerprint,
            RegistrationAttempt.email_hash.is_not(None),
            RegistrationAttempt.attempted_at >= since,
        )
        if exclude_email_hash is not None:
            stmt = stmt.where(RegistrationAttempt.email_hash != exclude_email_hash)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def list_between(
        self, since: datetime, until: datetime
    ) -> Sequence[RegistrationAttempt]:
        stmt = (
            select(RegistrationAttempt)
            .where(
                RegistrationAttempt.attempted_at >= since,
                RegistrationAttempt.attempted_at < until,
            )
            .order_by(RegistrationAttempt.attempted_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_page(
        self, limit: int, offset: int, filters: AttemptFilters
    ) -> Sequence[RegistrationAttempt]:
        stmt = (
            select(RegistrationAttempt)
            .where(*self._filters(filters))
            .order_by(
                RegistrationAttempt.attempted_at.desc(),
                RegistrationAttempt.id.desc(),
            )
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count(self, filters: AttemptFilters) -> int:
        stmt = (
            select(func.count())
            .select_from(RegistrationAttempt)
            .where(*self._filters(filters))
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def stats_since(self, since: datetime) -> AttemptStats:
        def _flag_sum(column: Any) -> Any:
            return func.coalesce(func.sum(case((column.is_(True), 1), else_=0)), 0)

        stmt = select(
            func.count(),
            _flag_sum(RegistrationAttempt.success),
            func.count(distinct(RegistrationAttempt.ip_address)),
            _flag_sum(RegistrationAttempt.captcha_required),
            _flag_sum(RegistrationAttempt.captcha_verified),
            func.avg(RegistrationAttempt.suspicion_score),
        ).where(RegistrationAttempt.attempted_at >= since)
        result = await self.session.execute(stmt)
        total, successful, unique_ips, challenges, passed, avg_score = result.one()
        total = int(total or 0)
        successful = int(successful or 0)
        return AttemptStats(
            total_attempts=total,
            successful=successful,
            failed=total - successful,
            unique_ips=int(unique_ips or 0),
            captcha_challenges=int(challenges or 0),
            captcha_passed=int(passed or 0),
            avg_suspicion_score=round(float(avg_score or 0.0), 4),
        )


class BlockedIpGateway:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, ip_address: str, now: datetime) -> BlockedIp | None:
        stmt = select(BlockedIp).where(
            BlockedIp.ip_address == ip_address,
            _active_block(now),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        ip_address: str,
        reason: str,
        blocked_at: datetime,
        blocked_by: str,
        expires_at: datetime | None,
    ) -> BlockedIp:
        values = {
            "reason": reason,
            "blocked_at": blocked_at,
            "blocked_by": blocked_by,
            "expires_at": expires_at,
        }
        insert = _insert_for(self.session)
        stmt = (
            insert(BlockedIp)
            .values(ip_address=ip_address, **values)
            .on_conflict_do_update(index_elements=[BlockedIp.ip_address], set_=values)
            .returning(BlockedIp)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def delete(self, ip_address: str) -> bool:
        stmt = delete(BlockedIp).where(BlockedIp.ip_address == ip_address)
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def list_active(self, now: datetime) -> Sequence[BlockedIp]:
        stmt = (
            select(BlockedIp)
            .where(_active_block(now))
            .order_by(BlockedIp.blocked_at.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_active(self, now: datetime) -> int:
        stmt = select(func.count()).select_from(BlockedIp).where(_active_block(now))
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def delete_expired(self, now: datetime) -> int:
        stmt = delete(BlockedIp).where(
            BlockedIp.expires_at.is_not(None),
            BlockedIp.expires_at <= now,
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)


class DomainListGateway:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, domain: str) -> DomainListEntry | None:
        return await self.session.get(DomainListEntry, domain, populate_existing=True)

    async def upsert(
        self,
        domain: str,
        list_type: str,
        reason: str | None,
        added_by: str,
        added_at: datetime,
    ) -> DomainListEntry:
        # One row per domain: switching lists replaces the list type in place.
        values = {
            "list_type": list_type,
            "reason": reason,
            "added_by": added_by,
            "added_at": added_at,
        }
        insert = _insert_for(self.session)
        stmt = (
            insert(DomainListEntry)
            .values(domain=domain, **values)
            .on_conflict_do_update(
                index_elements=[DomainListEntry.domain], set_=values
            )
            .returning(DomainListEntry)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def delete(self, domain: str, list_type: str | None = None) -> bool:
        stmt = delete(DomainListEntry).where(DomainListEntry.domain == domain)
        if list_type is not None:
            stmt = stmt.where(DomainListEntry.list_type == list_type)
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def list_entries(
        self, list_type: str | None = None
    ) -> Sequence[DomainListEntry]:
        stmt = select(DomainListEntry).order_by(DomainListEntry.added_at.desc())
        if list_type is not None:
            stmt = stmt.where(DomainListEntry.list_type == list_type)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def added_since(self, list_type: str, since: datetime) -> set[str]:
        stmt = select(DomainListEntry.domain).where(
            DomainListEntry.list_type == list_type,
            DomainListEntry.added_at >= since,
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())


class RegistrationAlertGateway:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, alert: RegistrationAlert) -> RegistrationAlert:
        self.session.add(alert)
        await self.session.flush()
        return alert

    async def list_unacknowledged(self, limit: int) -> Sequence[RegistrationAlert]:
        stmt = (
            select(RegistrationAlert)
            .where(RegistrationAlert.acknowledged.is_(False))
            .order_by(RegistrationAlert.detected_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_since(self, since: datetime) -> Sequence[RegistrationAlert]:
        stmt = (
            select(RegistrationAlert)
            .where(RegistrationAlert.detected_at >= since)
            .order_by(RegistrationAlert.detected_at.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def has_open(self, pattern: str, pattern_key: str, since: datetime) -> bool:
        stmt = select(
            exists().where(
                RegistrationAlert.pattern == pattern,
                RegistrationAlert.pattern_key == pattern_key,
                RegistrationAlert.acknowledged.is_(False),
                RegistrationAlert.detected_at >= since,
            )
        )
        result = await self.session.execute(stmt)
        return bool(result.scalar())

    async def acknowledge(
        self, alert_ids: Sequence[str], actor: str, at: datetime
    ) -> int:
        if not alert_ids:
            return 0
        stmt = (
            update(RegistrationAlert)
            .where(
                RegistrationAlert.id.in_(list(alert_ids)),
                RegistrationAlert.acknowledged.is_(False),
            )
            .values(acknowledged=True, acknowledged_by=actor, acknowledged_at=at)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def count_unacknowledged(self) -> int:
        stmt = (
            select(func.count())
            .select_from(RegistrationAlert)
            .where(RegistrationAlert.acknowledged.is_(False))
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0


class FeatureFlagGateway:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_value(self, key: str) -> dict[str, Any] | None:
        stmt = select(FeatureFlag.value).where(FeatureFlag.key == key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        key: str,
        value: dict[str, Any],
        updated_by: str | None,
        reason: str | None,
    ) -> None:
        values = {
            "value": value,
            "updated_by": updated_by,
            "reason": reason,
            "updated_at": func.current_timestamp(),
        }
        insert = _insert_for(self.session)
        stmt = (
            insert(FeatureFlag)
            .values(key=key, **values)
            .on_conflict_do_update(index_elements=[FeatureFlag.key], set_=values)
        )
        await self.session.execute(stmt)


__all__ = (
    "BlockedIpGateway",
    "DomainListGateway",
    "FeatureFlagGateway",
    "RegistrationAlertGateway",
    "RegistrationAttemptGateway",
)
