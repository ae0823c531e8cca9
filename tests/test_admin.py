from datetime import timedelta

import pytest

from app.api.modules.registration.errors import ValidationError
from app.api.modules.registration.models import RegistrationAlert, RegistrationAttempt
from app.api.modules.registration.services.admin import RegistrationAdminService
from app.api.modules.registration.services.core import (
    REGISTRATION_FLAG_KEY,
    AttemptFilters,
)
from tests.fakes import FakeUnitOfWork


@pytest.fixture
def admin(uow, block_store, config_provider, clock) -> RegistrationAdminService:
    return RegistrationAdminService(uow, block_store, config_provider, clock=clock)


def _alert(alert_id: str, detected_at, acknowledged: bool = False) -> RegistrationAlert:
    return RegistrationAlert(
        id=alert_id,
        pattern="subnet_burst",
        pattern_key="10.0.0.0/24",
        severity="critical",
        description="burst",
        details={},
        detected_at=detected_at,
        acknowledged=acknowledged,
    )


def _attempt(uow: FakeUnitOfWork, at, success: bool, ip: str = "203.0.113.10", **extra):
    data = {
        "ip_address": ip,
        "email_domain": "example.com",
        "email_hash": f"hash-{len(uow.attempts.items)}",
        "attempted_at": at,
        "success": success,
        "suspicion_score": 0.2,
        "reasons": [],
        "captcha_required": False,
        "captcha_verified": False,
    }
    data.update(extra)
    uow.attempts.items.append(RegistrationAttempt(id=len(uow.attempts.items) + 1, **data))


async def test_config_update_is_persisted_and_published(admin, uow, config_provider):
    config = await admin.update_config(
        {"max_attempts_per_ip": 10, "weights": {"velocity": 0.5}},
        actor="admin-1",
        reason="launch traffic",
    )

    assert config.max_attempts_per_ip == 10
    assert config.weights.velocity == 0.5
    assert config.weights.blacklisted_domain == 1.0
    assert config_provider.current is config
    assert uow.flags.values[REGISTRATION_FLAG_KEY]["max_attempts_per_ip"] == 10
    assert uow.flags.history == [(REGISTRATION_FLAG_KEY, "admin-1", "launch traffic")]
    assert uow.commits == 1


async def test_invalid_config_leaves_the_snapshot_untouched(admin, uow, config_provider):
    before = config_provider.current

    with pytest.raises(ValidationError) as exc_info:
        await admin.update_config({"rollout_percentage": 150}, actor="admin-1")

    assert config_provider.current is before
    assert uow.flags.values == {}
    fields = [error["field"] for error in exc_info.value.details["errors"]]
    assert fields == ["rollout_percentage"]


async def test_unknown_config_key_is_rejected(admin):
    with pytest.raises(ValidationError):
        await admin.update_config({"max_attempts": 3}, actor="admin-1")


async def test_failed_commit_keeps_the_previous_snapshot(admin, uow, config_provider):
    before = config_provider.current
    uow.fail_commit = True

    with pytest.raises(RuntimeError):
        await admin.update_config({"enabled": False}, actor="admin-1")

    assert config_provider.current is before
    assert uow.rollbacks == 1


async def test_emergency_disable_turns_registration_off(admin, uow, config_provider):
    config = await admin.emergency_disable("credential stuffing wave", actor="oncall")

    assert config.enabled is False
    assert config_provider.current.enabled is False
    assert uow.flags.history[-1] == (REGISTRATION_FLAG_KEY, "oncall", "credential stuffing wave")


async def test_acknowledge_clears_only_open_alerts(admin, uow, clock):
    uow.alerts.items = [
        _alert("a1", clock.now),
        _alert("a2", clock.now),
        _alert("a3", clock.now, acknowledged=True),
    ]

    cleared = await admin.acknowledge_alerts(["a1", "a3", "missing"], actor="admin-1")

    assert cleared == 1
    assert [a.id for a in await admin.list_alerts()] == ["a2"]
    assert uow.alerts.items[0].acknowledged_by == "admin-1"
    assert uow.commits == 1


async def test_attack_patterns_cover_the_last_week(admin, uow, clock):
    uow.alerts.items = [
        _alert("recent", clock.now - timedelta(days=2), acknowledged=True),
        _alert("old", clock.now - timedelta(days=8)),
    ]

    patterns = await admin.attack_patterns()

    assert [a.id for a in patterns] == ["recent"]


async def test_metrics_summarize_the_last_day(admin, uow, block_store, clock):
    _attempt(uow, clock.now - timedelta(hours=1), success=True)
    _attempt(uow, clock.now - timedelta(hours=2), success=False, ip="198.51.100.1")
    _attempt(
        uow,
        clock.now - timedelta(hours=3),
        success=False,
        captcha_required=True,
    )
    _attempt(uow, clock.now - timedelta(days=2), success=False)
    await block_store.block("9.9.9.9", None, reason="abuse", actor="admin-1")
    uow.alerts.items = [_alert("a1", clock.now)]

    metrics = await admin.metrics()

    assert metrics.period_hours == 24
    assert metrics.attempts.total_attempts == 3
    assert metrics.attempts.successful == 1
    assert metrics.attempts.failed == 2
    assert metrics.attempts.unique_ips == 2
    assert metrics.attempts.captcha_challenges == 1
    assert metrics.active_blocks == 1
    assert metrics.open_alerts == 1
    assert metrics.registration_enabled is True
    assert metrics.rollout_percentage == 100


async def test_list_attempts_filters_and_counts(admin, uow, clock):
    for minutes in range(5):
        _attempt(uow, clock.now - timedelta(minutes=minutes), success=minutes % 2 == 0)

    items, total = await admin.list_attempts(2, 0, AttemptFilters(success=True))

    assert total == 3
    assert [a.attempted_at for a in items] == [clock.now, clock.now - timedelta(minutes=2)]


async def test_domain_actions_delegate_to_the_block_store(admin, block_store):
    await admin.blacklist_domain("spam.example", "disposable", actor="admin-1")
    await admin.whitelist_domain("corp.example", None, actor="admin-1")

    assert [e.domain for e in await admin.list_domains("blacklist")] == ["spam.example"]
    assert await admin.remove_domain("corp.example") is True
    assert [e.domain for e in await admin.list_domains()] == ["spam.example"]


async def test_unknown_list_type_is_rejected(admin):
    with pytest.raises(ValidationError):
        await admin.list_domains("greylist")
