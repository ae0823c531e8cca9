import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from app.api.modules.registration.services.limits import (
    FixedWindowRateLimiter,
    InMemoryCounterStore,
    email_key,
    ip_key,
)
from tests.fakes import FakeTimer

WINDOW = 900


async def test_check_does_not_count(rate_limiter):
    for _ in range(3):
        status = await rate_limiter.check(ip_key("1.2.3.4"), limit=5, window_seconds=WINDOW)

    assert status.allowed
    assert status.count == 0
    assert status.remaining == 5


async def test_ceiling_is_reached_after_exactly_limit_consumes(rate_limiter):
    key = ip_key("1.2.3.4")
    for expected_remaining in (4, 3, 2, 1, 0):
        status = await rate_limiter.consume(key, limit=5, window_seconds=WINDOW)
        assert status.allowed
        assert status.remaining == expected_remaining

    status = await rate_limiter.check(key, limit=5, window_seconds=WINDOW)
    assert not status.allowed
    assert status.retry_after == WINDOW

    denied = await rate_limiter.consume(key, limit=5, window_seconds=WINDOW)
    assert not denied.allowed
    assert denied.count == 5


async def test_window_elapses_and_key_is_allowed_again(rate_limiter, timer):
    key = ip_key("1.2.3.4")
    for _ in range(5):
        await rate_limiter.consume(key, limit=5, window_seconds=WINDOW)

    timer.advance(WINDOW - 1)
    status = await rate_limiter.check(key, limit=5, window_seconds=WINDOW)
    assert not status.allowed
    assert status.retry_after == 1

    timer.advance(1)
    status = await rate_limiter.check(key, limit=5, window_seconds=WINDOW)
    assert status.allowed
    assert status.count == 0


async def test_keys_are_independent(rate_limiter):
    await rate_limiter.consume(ip_key("1.2.3.4"), limit=1, window_seconds=WINDOW)

    other_ip = await rate_limiter.check(ip_key("1.2.3.5"), limit=1, window_seconds=WINDOW)
    email = await rate_limiter.check(email_key("abc"), limit=1, window_seconds=WINDOW)

    assert other_ip.allowed
    assert email.allowed


async def test_reset_clears_the_window(rate_limiter):
    key = email_key("abc")
    await rate_limiter.consume(key, limit=1, window_seconds=WINDOW)

    await rate_limiter.reset(key)

    assert (await rate_limiter.check(key, limit=1, window_seconds=WINDOW)).allowed


async def test_concurrent_consumers_never_pass_the_ceiling(rate_limiter):
    key = ip_key("1.2.3.4")

    results = await asyncio.gather(
        *(rate_limiter.consume(key, limit=5, window_seconds=WINDOW) for _ in range(25))
    )

    assert sum(1 for status in results if status.allowed) == 5


@settings(max_examples=50, deadline=None)
@given(
    limit=st.integers(min_value=1, max_value=20),
    attempts=st.integers(min_value=0, max_value=40),
)
def test_allowed_consumes_equal_min_of_attempts_and_limit(limit, attempts):
    async def scenario() -> int:
        limiter = FixedWindowRateLimiter(InMemoryCounterStore(), clock=FakeTimer())
        allowed = 0
        for _ in range(attempts):
            status = await limiter.consume("ip:10.0.0.1", limit, WINDOW)
            allowed += status.allowed
        return allowed

    assert asyncio.run(scenario()) == min(attempts, limit)
