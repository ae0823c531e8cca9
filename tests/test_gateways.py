from datetime import timedelta

import pytest

from app.api.modules.registration.models import RegistrationAlert, RegistrationAttempt
from app.api.modules.registration.services.blocks import BlockStore
from app.api.modules.registration.services.core import (
    REGISTRATION_FLAG_KEY,
    AttemptFilters,
    ProtectionConfig,
    ProtectionConfigProvider,
)
from app.api.modules.registration.services.scoring import BLACKLIST, WHITELIST
from app.database.uow import UnitOfWork


@pytest.fixture
def db_uow(session) -> UnitOfWork:
    return UnitOfWork(session)


@pytest.fixture
def db_block_store(db_uow, clock) -> BlockStore:
    return BlockStore(db_uow, clock=clock)


def _attempt(at, ip="203.0.113.10", success=False, **extra) -> RegistrationAttempt:
    data = {
        "ip_address": ip,
        "email_domain": "example.com",
        "email_hash": "hash-a",
        "attempted_at": at,
        "success": success,
        "suspicion_score": 0.2,
        "reasons": ["velocity"],
        "captcha_required": False,
        "captcha_verified": False,
    }
    data.update(extra)
    return RegistrationAttempt(**data)


async def test_block_upsert_replaces_and_expires(db_block_store, db_uow, clock):
    await db_block_store.block("9.9.9.9", 10, reason="first", actor="system")
    record = await db_block_store.block("9.9.9.9", 5, reason="second", actor="admin-1")

    assert record.reason == "second"
    assert await db_block_store.count_blocked() == 1
    assert await db_block_store.is_blocked("9.9.9.9")

    clock.advance(minutes=5)
    assert not await db_block_store.is_blocked("9.9.9.9")
    assert await db_block_store.purge_expired() == 1
    assert await db_block_store.unblock("9.9.9.9") is False


async def test_upserts_return_the_refreshed_row(db_uow, clock):
    now = clock()
    first = await db_uow.blocked_ips.upsert("9.9.9.9", "first", now, "system", None)
    second = await db_uow.blocked_ips.upsert(
        "9.9.9.9", "second", now, "admin-1", now + timedelta(minutes=5)
    )

    assert second is first
    assert (second.reason, second.blocked_by) == ("second", "admin-1")
    assert second.expires_at is not None

    entry = await db_uow.domains.upsert("mailinator.com", BLACKLIST, None, "admin-1", now)
    switched = await db_uow.domains.upsert(
        "mailinator.com", WHITELIST, "partner", "admin-2", now
    )

    assert switched is entry
    assert (switched.list_type, switched.reason) == (WHITELIST, "partner")


async def test_permanent_block_survives_purge(db_block_store, clock):
    await db_block_store.block("2001:db8::1", None, reason="abuse", actor="admin-1")
    clock.advance(days=365)

    assert await db_block_store.purge_expired() == 0
    assert [b.ip_address for b in await db_block_store.list_blocked()] == ["2001:db8::1"]


async def test_domain_switches_lists_in_place(db_block_store):
    await db_block_store.whitelist("corp.example", None, "admin-1")
    entry = await db_block_store.blacklist("corp.example", "compromised", "admin-2")

    assert entry.list_type == BLACKLIST
    assert entry.added_by == "admin-2"
    assert await db_block_store.list_domains(WHITELIST) == []
    assert await db_block_store.remove_from_list("corp.example", WHITELIST) is False
    assert await db_block_store.remove_from_list("corp.example", BLACKLIST) is True
    assert await db_block_store.domain_status("corp.example") is None


async def test_recently_blacklisted_domains(db_block_store, db_uow, clock):
    await db_block_store.blacklist("old.example", None, "admin-1")
    clock.advance(days=10)
    await db_block_store.blacklist("new.example", None, "admin-1")

    recent = await db_uow.domains.added_since(BLACKLIST, clock.now - timedelta(days=7))

    assert recent == {"new.example"}


async def test_attempt_queries(db_uow, clock):
    now = clock.now
    await db_uow.attempts.add(_attempt(now - timedelta(minutes=3), success=True))
    await db_uow.attempts.add(
        _attempt(
            now - timedelta(minutes=2),
            ip="198.51.100.1",
            email_hash="hash-b",
            fingerprint="fp-1",
            captcha_required=True,
        )
    )
    await db_uow.attempts.add(
        _attempt(now - timedelta(minutes=1), email_hash="hash-c", fingerprint="fp-1")
    )
    await db_uow.attempts.add(_attempt(now - timedelta(days=2), email_domain="old.example"))
    await db_uow.commit()

    recent = await db_uow.attempts.recent_for_ip("203.0.113.10", limit=2)
    assert [a.email_hash for a in recent] == ["hash-c", "hash-a"]

    since = now - timedelta(hours=1)
    assert await db_uow.attempts.count_distinct_emails_for_fingerprint("fp-1", since) == 2
    assert (
        await db_uow.attempts.count_distinct_emails_for_fingerprint(
            "fp-1", since, exclude_email_hash="hash-c"
        )
        == 1
    )

    between = await db_uow.attempts.list_between(
        now - timedelta(minutes=3), now - timedelta(minutes=1)
    )
    assert [a.email_hash for a in between] == ["hash-a", "hash-b"]

    stats = await db_uow.attempts.stats_since(since)
    assert stats.total_attempts == 3
    assert stats.successful == 1
    assert stats.failed == 2
    assert stats.unique_ips == 2
    assert stats.captcha_challenges == 1
    assert stats.avg_suspicion_score == pytest.approx(0.2)

    failures = AttemptFilters(success=False, ip_address="203.0.113.10")
    page = await db_uow.attempts.list_page(10, 0, failures)
    assert await db_uow.attempts.count(failures) == 2
    assert [a.email_hash for a in page] == ["hash-c", "hash-a"]
    assert page[0].reasons == ["velocity"]

    by_domain = AttemptFilters(email_domain="old.example")
    assert await db_uow.attempts.count(by_domain) == 1


async def test_alert_lifecycle(db_uow, clock):
    alert = RegistrationAlert(
        pattern="subnet_burst",
        pattern_key="10.0.0.0/24",
        severity="critical",
        description="burst",
        details={"attempts": 20},
        detected_at=clock.now,
        acknowledged=False,
    )
    await db_uow.alerts.add(alert)
    await db_uow.commit()

    window_start = clock.now - timedelta(minutes=10)
    assert alert.id
    assert await db_uow.alerts.has_open("subnet_burst", "10.0.0.0/24", window_start)
    assert not await db_uow.alerts.has_open("subnet_burst", "10.0.1.0/24", window_start)
    assert await db_uow.alerts.count_unacknowledged() == 1

    cleared = await db_uow.alerts.acknowledge([alert.id, "missing"], "admin-1", clock.now)
    await db_uow.commit()

    assert cleared == 1
    assert await db_uow.alerts.count_unacknowledged() == 0
    assert await db_uow.alerts.list_unacknowledged(10) == []
    assert not await db_uow.alerts.has_open("subnet_burst", "10.0.0.0/24", window_start)
    assert len(await db_uow.alerts.list_since(window_start)) == 1


async def test_config_round_trips_through_the_flag_store(db_uow):
    provider = ProtectionConfigProvider(ProtectionConfig())

    await provider.update(
        db_uow, {"rollout_percentage": 25, "blocked_countries": ["ru"]}, actor="admin-1"
    )
    await provider.update(db_uow, {"enabled": False}, actor="admin-2", reason="incident")

    stored = await db_uow.flags.get_value(REGISTRATION_FLAG_KEY)
    assert stored["rollout_percentage"] == 25
    assert stored["enabled"] is False

    fresh = ProtectionConfigProvider(ProtectionConfig())
    loaded = await fresh.load(db_uow.flags)

    assert loaded.enabled is False
    assert loaded.rollout_percentage == 25
    assert loaded.blocked_countries == ("RU",)
