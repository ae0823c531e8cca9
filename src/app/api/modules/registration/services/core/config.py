import asyncio
import logging
from collections.abc import Mapping
from hashlib import sha256
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.api.modules.registration.services.core.ports import (
    FlagRepository,
    ProtectionUnitOfWork,
)
from app.settings import RegistrationConfig

logger = logging.getLogger(__name__)

REGISTRATION_FLAG_KEY = "self_registration_enabled"


class ScoreWeights(BaseModel):
    """Per-signal weights of the suspicion score.

    Positive weights only ever raise the score, which keeps the score
    monotonic in each signal. The whitelist weight is the single
    score-reducing term.
    """

    velocity: float = Field(0.35, ge=0, le=1)
    blacklisted_domain: float = Field(1.0, ge=0, le=1)
    whitelisted_domain: float = Field(-1.0, ge=-1, le=0)
    blocked_country: float = Field(0.5, ge=0, le=1)
    unlisted_country: float = Field(0.05, ge=0, le=1)
    fingerprint_reuse: float = Field(0.3, ge=0, le=1)
    failure_rate: float = Field(0.3, ge=0, le=1)
    suspicious_email: float = Field(0.2, ge=0, le=1)
    suspicious_user_agent: float = Field(0.2, ge=0, le=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


class ProtectionConfig(BaseModel):
    enabled: bool = True
    rollout_percentage: int = Field(100, ge=0, le=100)
    max_attempts_per_ip: int = Field(5, ge=1, le=1000)
    max_attempts_per_email: int = Field(3, ge=1, le=1000)
    window_minutes: int = Field(15, ge=1, le=1440)
    block_duration_minutes: int = Field(60, ge=1, le=60 * 24 * 30)
    require_captcha_threshold: float = Field(0.5, ge=0, le=1)
    deny_threshold: float = Field(0.9, ge=0, le=1)
    captcha_enabled: bool = True
    auto_block_on_rate_limit: bool = True
    allowed_countries: tuple[str, ...] = ()
    blocked_countries: tuple[str, ...] = ()
    history_size: int = Field(20, ge=1, le=500)
    fingerprint_lookback_minutes: int = Field(24 * 60, ge=1)
    fingerprint_reuse_ceiling: int = Field(5, ge=1)
    weights: ScoreWeights = ScoreWeights()

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("allowed_countries", "blocked_countries", mode="before")
    @classmethod
    def _normalize_countries(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        return tuple(sorted({str(item).strip().upper() for item in value if item}))

    @property
    def window_seconds(self) -> int:
        return self.window_minutes * 60

    @classmethod
    def from_settings(cls, settings: RegistrationConfig) -> "ProtectionConfig":
        return cls(
            enabled=settings.enabled,
            rollout_percentage=settings.rollout_percentage,
            max_attempts_per_ip=settings.max_attempts_per_ip,
            max_attempts_per_email=settings.max_attempts_per_email,
            window_minutes=settings.window_minutes,
            block_duration_minutes=settings.block_duration_minutes,
            require_captcha_threshold=settings.require_captcha_threshold,
            deny_threshold=settings.deny_threshold,
            captcha_enabled=settings.captcha_enabled,
            auto_block_on_rate_limit=settings.auto_block_on_rate_limit,
            allowed_countries=settings.allowed_countries,
            blocked_countries=settings.blocked_countries,
        )


def in_rollout(ip_address: str | None, percentage: int) -> bool:
    """Stable per-IP bucket so a caller does not flap between open and closed."""
    if percentage >= 100:
        return True
    if percentage <= 0:
        return False
    digest = sha256((ip_address or "").encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") % 100 < percentage


class ProtectionConfigProvider:
    """Holds the current protection snapshot.

    Snapshots are immutable and replaced wholesale, so a request that read
    ``current`` once keeps a consistent view even while an admin update
    lands.
    """

    def __init__(self, defaults: ProtectionConfig):
        self._defaults = defaults
        self._current = defaults
        self._lock = asyncio.Lock()

    @property
    def current(self) -> ProtectionConfig:
        return self._current

    @property
    def defaults(self) -> ProtectionConfig:
        return self._defaults

    def swap(self, config: ProtectionConfig) -> None:
        self._current = config

    def merged(self, changes: Mapping[str, Any]) -> ProtectionConfig:
        data = self._current.model_dump()
        for key, value in changes.items():
            if key == "weights" and isinstance(value, Mapping):
                data["weights"] = {**data["weights"], **value}
            else:
                data[key] = value
        return ProtectionConfig.model_validate(data)

    async def load(self, flags: FlagRepository) -> ProtectionConfig:
        async with self._lock:
            stored = await flags.get_value(REGISTRATION_FLAG_KEY)
            if not stored:
                self._current = self._defaults
                return self._current

            data = {**self._defaults.model_dump(), **stored}
            try:
                config = ProtectionConfig.model_validate(data)
            except ValueError:
                logger.exception(
                    "Stored registration flag is invalid, keeping previous snapshot"
                )
                return self._current

            self._current = config
            return config

    async def update(
        self,
        uow: ProtectionUnitOfWork,
        changes: Mapping[str, Any],
        actor: str,
        reason: str | None = None,
    ) -> ProtectionConfig:
        """Validate, persist, then publish a new snapshot.

        Raises ``pydantic.ValidationError`` before anything is written when
        the merged config is invalid.
        """
        async with self._lock:
            config = self.merged(changes)
            await uow.flags.upsert(
                REGISTRATION_FLAG_KEY,
                config.model_dump(mode="json"),
                updated_by=actor,
                reason=reason,
            )
            try:
                await uow.commit()
            except Exception:
                await uow.rollback()
                raise
            self._current = config
            return config


__all__ = (
    "REGISTRATION_FLAG_KEY",
    "ProtectionConfig",
    "ProtectionConfigProvider",
    "ScoreWeights",
    "in_rollout",
)
