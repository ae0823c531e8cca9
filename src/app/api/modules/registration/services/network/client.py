import logging
from collections import OrderedDict
from time import monotonic

import httpx

from app.settings import Config

logger = logging.getLogger(__name__)


class _CountryCache:
    """Bounded LRU of ``ip -> country`` with a fixed time to live."""

    def __init__(self, ttl_seconds: int, max_size: int = 4096):
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._entries: OrderedDict[str, tuple[float, str | None]] = OrderedDict()

    def get(self, ip: str, now: float) -> tuple[bool, str | None]:
        entry = self._entries.get(ip)
        if entry is None:
            return False, None
        expires_at, country = entry
        if expires_at <= now:
            del self._entries[ip]
            return False, None
        self._entries.move_to_end(ip)
        return True, country

    def put(self, ip: str, country: str | None, now: float) -> None:
        if self._ttl <= 0:
            return
        self._entries[ip] = (now + self._ttl, country)
        self._entries.move_to_end(ip)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)


def _country_code(payload: object) -> str | None:
    if not isinstance(payload, dict) or payload.get("error"):
        return None
    code = payload.get("country_code")
    if not isinstance(code, str) or len(code.strip()) != 2:
        return None
    return code.strip().upper()


class IpGeoClient:
    """Country lookup against an ipapi-style ``/{ip}/json/`` endpoint.

    Best effort only. Disabled lookups, lookup failures and unknown answers
    all come back as ``None``, which scoring treats as a neutral country.
    """

    def __init__(self, client: httpx.AsyncClient, config: Config):
        settings = config.registration
        self._enabled = settings.ip_geolocation_enabled
        self._client = client
        self._base_url = settings.ip_geolocation_base_url.rstrip("/")
        self._timeout = settings.ip_geolocation_timeout_seconds
        self._cache = _CountryCache(settings.ip_geolocation_cache_ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def country_for(self, ip: str | None) -> str | None:
        if not self._enabled or not ip:
            return None

        now = monotonic()
        hit, country = self._cache.get(ip, now)
        if hit:
            return country

        try:
            response = await self._client.get(
                f"{self._base_url}/{ip}/json/",
                timeout=self._timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("IP geolocation lookup failed", extra={"ip": ip})
            return None

        country = _country_code(payload)
        self._cache.put(ip, country, now)
        return country


__all__ = ("IpGeoClient",)
