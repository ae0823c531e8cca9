from app.api.modules.registration.services.limits.rate_limit import (
    CounterStore,
    CounterWindow,
    FixedWindowRateLimiter,
    InMemoryCounterStore,
    RateLimitStatus,
    RedisCounterStore,
    email_key,
    ip_key,
)

__all__ = (
    "CounterStore",
    "CounterWindow",
    "FixedWindowRateLimiter",
    "InMemoryCounterStore",
    "RateLimitStatus",
    "RedisCounterStore",
    "email_key",
    "ip_key",
)
