"""In-memory stand-ins for the repositories and external collaborators."""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from app.api.modules.registration.errors import ConflictError
from app.api.modules.registration.models import (
    BlockedIp,
    DomainListEntry,
    RegistrationAlert,
    RegistrationAttempt,
)
from app.api.modules.registration.services.core import (
    AccountRegistration,
    AttemptFilters,
    AttemptStats,
    CreatedAccount,
)
from app.api.modules.registration.services.network import CaptchaVerificationResult

BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeTimer:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StorageDown(RuntimeError):
    pass


class InMemoryAttempts:
    def __init__(self) -> None:
        self.items: list[RegistrationAttempt] = []
        self.fail_writes = False
        self.fail_reads = False

    def _check_reads(self) -> None:
        if self.fail_reads:
            raise StorageDown("attempt ledger unavailable")

    def _matching(self, filters: AttemptFilters) -> list[RegistrationAttempt]:
        items = self.items
        if filters.success is not None:
            items = [a for a in items if a.success is filters.success]
        if filters.ip_address:
            items = [a for a in items if a.ip_address == filters.ip_address]
        if filters.email_domain:
            items = [a for a in items if a.email_domain == filters.email_domain]
        return items

    async def add(self, attempt: RegistrationAttempt) -> RegistrationAttempt:
        if self.fail_writes:
            raise StorageDown("attempt ledger unavailable")
        attempt.id = len(self.items) + 1
        self.items.append(attempt)
        return attempt

    async def recent_for_ip(
        self, ip_address: str, limit: int
    ) -> Sequence[RegistrationAttempt]:
        self._check_reads()
        matches = [a for a in self.items if a.ip_address == ip_address]
        matches.sort(key=lambda a: (a.attempted_at, a.id), reverse=True)
        return matches[:limit]

    async def count_distinct_emails_for_fingerprint(
        self,
        fingerprint: str,
        since: datetime,
        exclude_email_hash: str | None = None,
    ) -> int:
        self._check_reads()
        return len(
            {
                a.email_hash
                for a in self.items
                if a.fingerprint == fingerprint
                and a.email_hash
                and a.attempted_at >= since
                and a.email_hash != exclude_email_hash
            }
        )

    async def list_between(
        self, since: datetime, until: datetime
    ) -> Sequence[RegistrationAttempt]:
        self._check_reads()
        matches = [a for a in self.items if since <= a.attempted_at < until]
        return sorted(matches, key=lambda a: a.attempted_at)

    async def list_page(
        self, limit: int, offset: int, filters: AttemptFilters
    ) -> Sequence[RegistrationAttempt]:
        matches = sorted(
            self._matching(filters),
            key=lambda a: (a.attempted_at, a.id),
            reverse=True,
        )
        return matches[offset : offset + limit]

    async def count(self, filters: AttemptFilters) -> int:
        return len(self._matching(filters))

    async def stats_since(self, since: datetime) -> AttemptStats:
        window = [a for a in self.items if a.attempted_at >= since]
        successful = sum(1 for a in window if a.success)
        return AttemptStats(
            total_attempts=len(window),
            successful=successful,
            failed=len(window) - successful,
            unique_ips=len({a.ip_address for a in window}),
            captcha_challenges=sum(1 for a in window if a.captcha_required),
            captcha_passed=sum(1 for a in window if a.captcha_verified),
            avg_suspicion_score=(
                round(sum(a.suspicion_score for a in window) / len(window), 4)
                if window
                else 0.0
            ),
        )


class InMemoryBlocks:
    def __init__(self) -> None:
        self.records: dict[str, BlockedIp] = {}
        self.fail_reads = False

    @staticmethod
    def _active(record: BlockedIp, now: datetime) -> bool:
        return record.expires_at is None or record.expires_at > now

    async def get_active(self, ip_address: str, now: datetime) -> BlockedIp | None:
        if self.fail_reads:
            raise StorageDown("block store unavailable")
        record = self.records.get(ip_address)
        return record if record is not None and self._active(record, now) else None

    async def upsert(
        self,
        ip_address: str,
        reason: str,
        blocked_at: datetime,
        blocked_by: str,
        expires_at: datetime | None,
    ) -> BlockedIp:
        record = BlockedIp(
            ip_address=ip_address,
            reason=reason,
            blocked_at=blocked_at,
            blocked_by=blocked_by,
            expires_at=expires_at,
        )
        self.records[ip_address] = record
        return record

    async def delete(self, ip_address: str) -> bool:
        return self.records.pop(ip_address, None) is not None

    async def list_active(self, now: datetime) -> Sequence[BlockedIp]:
        return [r for r in self.records.values() if self._active(r, now)]

    async def count_active(self, now: datetime) -> int:
        return len(await self.list_active(now))

    async def delete_expired(self, now: datetime) -> int:
        expired = [ip for ip, r in self.records.items() if not self._active(r, now)]
        for ip in expired:
            del self.records[ip]
        return len(expired)


class InMemoryDomains:
    def __init__(self) -> None:
        self.entries: dict[str, DomainListEntry] = {}

    async def get(self, domain: str) -> DomainListEntry | None:
        return self.entries.get(domain)

    async def upsert(
        self,
        domain: str,
        list_type: str,
        reason: str | None,
        added_by: str,
        added_at: datetime,
    ) -> DomainListEntry:
        entry = DomainListEntry(
            domain=domain,
            list_type=list_type,
            reason=reason,
            added_by=added_by,
            added_at=added_at,
        )
        self.entries[domain] = entry
        return entry

    async def delete(self, domain: str, list_type: str | None = None) -> bool:
        entry = self.entries.get(domain)
        if entry is None or (list_type is not None and entry.list_type != list_type):
            return False
        del self.entries[domain]
        return True

    async def list_entries(self, list_type: str | None = None) -> Sequence[DomainListEntry]:
        return [
            e for e in self.entries.values() if list_type is None or e.list_type == list_type
        ]

    async def added_since(self, list_type: str, since: datetime) -> set[str]:
        return {
            e.domain
            for e in self.entries.values()
            if e.list_type == list_type and e.added_at >= since
        }


class InMemoryAlerts:
    def __init__(self) -> None:
        self.items: list[RegistrationAlert] = []

    async def add(self, alert: RegistrationAlert) -> RegistrationAlert:
        self.items.append(alert)
        return alert

    async def list_unacknowledged(self, limit: int) -> Sequence[RegistrationAlert]:
        open_alerts = [a for a in self.items if not a.acknowledged]
        return sorted(open_alerts, key=lambda a: a.detected_at, reverse=True)[:limit]

    async def list_since(self, since: datetime) -> Sequence[RegistrationAlert]:
        return [a for a in self.items if a.detected_at >= since]

    async def has_open(self, pattern: str, pattern_key: str, since: datetime) -> bool:
        return any(
            a.pattern == pattern
            and a.pattern_key == pattern_key
            and not a.acknowledged
            and a.detected_at >= since
            for a in self.items
        )

    async def acknowledge(
        self, alert_ids: Sequence[str], actor: str, at: datetime
    ) -> int:
        cleared = 0
        for alert in self.items:
            if alert.id in alert_ids and not alert.acknowledged:
                alert.acknowledged = True
                alert.acknowledged_by = actor
                alert.acknowledged_at = at
                cleared += 1
        return cleared

    async def count_unacknowledged(self) -> int:
        return sum(1 for a in self.items if not a.acknowledged)


class InMemoryFlags:
    def __init__(self) -> None:
        self.values: dict[str, dict[str, Any]] = {}
        self.history: list[tuple[str, str | None, str | None]] = []

    async def get_value(self, key: str) -> dict[str, Any] | None:
        return self.values.get(key)

    async def upsert(
        self,
        key: str,
        value: dict[str, Any],
        updated_by: str | None,
        reason: str | None,
    ) -> None:
        self.values[key] = value
        self.history.append((key, updated_by, reason))


class FakeUnitOfWork:
    def __init__(self) -> None:
        self.attempts = InMemoryAttempts()
        self.blocked_ips = InMemoryBlocks()
        self.domains = InMemoryDomains()
        self.alerts = InMemoryAlerts()
        self.flags = InMemoryFlags()
        self.commits = 0
        self.rollbacks = 0
        self.fail_commit = False

    async def commit(self) -> None:
        if self.fail_commit:
            raise StorageDown("commit failed")
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


class FakeCaptchaVerifier:
    def __init__(
        self,
        configured: bool = True,
        accepted_tokens: frozenset[str] = frozenset({"valid-token"}),
    ):
        self.configured = configured
        self.accepted_tokens = accepted_tokens
        self.calls: list[tuple[str, str | None]] = []

    @property
    def provider(self) -> str:
        return "turnstile"

    @property
    def site_key(self) -> str | None:
        return "site-key"

    def is_configured(self) -> bool:
        return self.configured

    async def verify(self, token: str, remote_ip: str | None) -> CaptchaVerificationResult:
        self.calls.append((token, remote_ip))
        if token in self.accepted_tokens:
            return CaptchaVerificationResult(success=True)
        return CaptchaVerificationResult(success=False, error_codes=["invalid-input-response"])


class FakeAccountCreator:
    def __init__(self) -> None:
        self.created: list[AccountRegistration] = []
        self.resent: list[str] = []
        self.error: Exception | None = None
        self.delay: float = 0.0
        self.existing: set[str] = set()

    async def create_account(self, registration: AccountRegistration) -> CreatedAccount:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if registration.email in self.existing:
            raise ConflictError("An account with this email already exists")
        self.existing.add(registration.email)
        self.created.append(registration)
        return CreatedAccount(email=registration.email, user_id=f"user-{len(self.created)}")

    async def resend_verification(self, email: str) -> None:
        self.resent.append(email)
