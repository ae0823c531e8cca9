"""Interfaces the protection services depend on.

SQLAlchemy gateways implement the repositories for production; tests swap
in in-memory fakes.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from app.api.modules.registration.models import (
    BlockedIp,
    DomainListEntry,
    RegistrationAlert,
    RegistrationAttempt,
)

if TYPE_CHECKING:
    from app.api.modules.registration.services.network.captcha import (
        CaptchaVerificationResult,
    )


@dataclass(slots=True)
class AttemptStats:
    total_attempts: int = 0
    successful: int = 0
    failed: int = 0
    unique_ips: int = 0
    captcha_challenges: int = 0
    captcha_passed: int = 0
    avg_suspicion_score: float = 0.0


@dataclass(slots=True)
class AttemptFilters:
    success: bool | None = None
    ip_address: str | None = None
    email_domain: str | None = None


class AttemptRepository(Protocol):
    async def add(self, attempt: RegistrationAttempt) -> RegistrationAttempt: ...

    async def recent_for_ip(
        self, ip_address: str, limit: int
    ) -> Sequence[RegistrationAttempt]: ...

    async def count_distinct_emails_for_fingerprint(
        self,
        fingerprint: str,
        since: datetime,
        exclude_email_hash: str | None = None,
    ) -> int: ...

    async def list_between(
        self, since: datetime, until: datetime
    ) -> Sequence[RegistrationAttempt]: ...

    async def list_page(
        self, limit: int, offset: int, filters: AttemptFilters
    ) -> Sequence[RegistrationAttempt]: ...

    async def count(self, filters: AttemptFilters) -> int: ...

    async def stats_since(self, since: datetime) -> AttemptStats: ...


class BlockRepository(Protocol):
    async def get_active(self, ip_address: str, now: datetime) -> BlockedIp | None: ...

    async def upsert(
        self,
        ip_address: str,
        reason: str,
        blocked_at: datetime,
        blocked_by: str,
        expires_at: datetime | None,
    ) -> BlockedIp: ...

    async def delete(self, ip_address: str) -> bool: ...

    async def list_active(self, now: datetime) -> Sequence[BlockedIp]: ...

    async def count_active(self, now: datetime) -> int: ...

    async def delete_expired(self, now: datetime) -> int: ...


class DomainListRepository(Protocol):
    async def get(self, domain: str) -> DomainListEntry | None: ...

    async def upsert(
        self,
        domain: str,
        list_type: str,
        reason: str | None,
        added_by: str,
        added_at: datetime,
    ) -> DomainListEntry: ...

    async def delete(self, domain: str, list_type: str | None = None) -> bool: ...

    async def list_entries(
        self, list_type: str | None = None
    ) -> Sequence[DomainListEntry]: ...

    async def added_since(self, list_type: str, since: datetime) -> set[str]: ...


class AlertRepository(Protocol):
    async def add(self, alert: RegistrationAlert) -> RegistrationAlert: ...

    async def list_unacknowledged(self, limit: int) -> Sequence[RegistrationAlert]: ...

    async def list_since(self, since: datetime) -> Sequence[RegistrationAlert]: ...

    async def has_open(self, pattern: str, pattern_key: str, since: datetime) -> bool: ...

    async def acknowledge(
        self, alert_ids: Sequence[str], actor: str, at: datetime
    ) -> int: ...

    async def count_unacknowledged(self) -> int: ...


class FlagRepository(Protocol):
    async def get_value(self, key: str) -> dict[str, Any] | None: ...

    async def upsert(
        self,
        key: str,
        value: dict[str, Any],
        updated_by: str | None,
        reason: str | None,
    ) -> None: ...


@dataclass(slots=True)
class AccountRegistration:
    email: str
    username: str
    password: str = field(repr=False)
    first_name: str | None = None
    last_name: str | None = None


@dataclass(slots=True)
class CreatedAccount:
    email: str
    user_id: str | None = None
    requires_verification: bool = True


class AccountCreator(Protocol):
    """The account service: owns password hashing and verification e-mails."""

    async def create_account(
        self, registration: AccountRegistration
    ) -> CreatedAccount: ...

    async def resend_verification(self, email: str) -> None: ...


class CaptchaVerifier(Protocol):
    @property
    def provider(self) -> str: ...

    @property
    def site_key(self) -> str | None: ...

    def is_configured(self) -> bool: ...

    async def verify(
        self, token: str, remote_ip: str | None
    ) -> "CaptchaVerificationResult": ...


class ProtectionUnitOfWork(Protocol):
    attempts: AttemptRepository
    blocked_ips: BlockRepository
    domains: DomainListRepository
    alerts: AlertRepository
    flags: FlagRepository

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


__all__ = (
    "AccountCreator",
    "AccountRegistration",
    "AlertRepository",
    "AttemptFilters",
    "AttemptRepository",
    "AttemptStats",
    "BlockRepository",
    "CaptchaVerifier",
    "CreatedAccount",
    "DomainListRepository",
    "FlagRepository",
    "ProtectionUnitOfWork",
)
