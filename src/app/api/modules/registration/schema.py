import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.api.common.schema import Page, PageQuery

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"
_PASSWORD_CLASSES = (
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"\d"), "a number"),
)


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=254, pattern=_EMAIL_PATTERN)
    username: str = Field(..., min_length=3, max_length=30, pattern=_USERNAME_PATTERN)
    password: str = Field(..., min_length=8, max_length=128, repr=False)
    first_name: str | None = Field(default=None, max_length=100, alias="firstName")
    last_name: str | None = Field(default=None, max_length=100, alias="lastName")
    fingerprint: str | None = Field(default=None, max_length=256)
    captcha_token: str | None = Field(
        default=None, max_length=8192, alias="captchaToken", repr=False
    )

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("password")
    @classmethod
    def _password_strength(cls, value: str) -> str:
        missing = [label for pattern, label in _PASSWORD_CLASSES if not pattern.search(value)]
        if missing:
            raise ValueError(f"Password must contain {', '.join(missing)}")
        return value

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_names(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class RegisterResponse(BaseModel):
    status: Literal["pending_verification"] = "pending_verification"
    message: str
    email: str
    user_id: str | None = None
    requires_verification: bool = True
    captcha_verified: bool = False


class RegistrationStatusResponse(BaseModel):
    enabled: bool
    message: str


class ResendVerificationRequest(BaseModel):
    email: str = Field(..., max_length=254, pattern=_EMAIL_PATTERN)

    model_config = ConfigDict(extra="forbid")


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class MetricsResponse(BaseModel):
    period_hours: int
    total_attempts: int
    successful: int
    failed: int
    unique_ips: int
    captcha_challenges: int
    captcha_passed: int
    avg_suspicion_score: float
    active_blocks: int
    open_alerts: int
    registration_enabled: bool
    rollout_percentage: int


class AlertResponse(BaseModel):
    id: str
    pattern: str
    pattern_key: str
    description: str
    severity: Literal["low", "medium", "high", "critical"]
    details: dict[str, Any]
    detected_at: datetime
    acknowledged: bool
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AlertListResponse(BaseModel):
    alerts: list[AlertResponse]
    total: int


class ClearAlertsRequest(BaseModel):
    alert_ids: list[str] = Field(..., min_length=1, max_length=500, alias="alertIds")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ClearAlertsResponse(BaseModel):
    cleared: int


class DisableRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=512)

    model_config = ConfigDict(extra="forbid")


class BlockIpRequest(BaseModel):
    ip_address: str = Field(..., max_length=64, alias="ipAddress")
    duration_minutes: int | None = Field(
        default=None, ge=1, le=60 * 24 * 365, alias="durationMinutes"
    )
    reason: str = Field("Blocked by administrator", min_length=1, max_length=512)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class BlockedIpResponse(BaseModel):
    ip_address: str
    reason: str
    blocked_at: datetime
    blocked_by: str
    expires_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DomainRequest(BaseModel):
    domain: str = Field(..., min_length=3, max_length=255)
    reason: str | None = Field(default=None, max_length=512)

    model_config = ConfigDict(extra="forbid")


class DomainEntryResponse(BaseModel):
    domain: str
    list_type: Literal["blacklist", "whitelist"]
    reason: str | None = None
    added_by: str
    added_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RemovedResponse(BaseModel):
    removed: bool


class AttemptResponse(BaseModel):
    id: int
    ip_address: str
    email_domain: str | None = None
    fingerprint: str | None = None
    user_agent: str | None = None
    country_iso: str | None = None
    attempted_at: datetime
    success: bool
    suspicion_score: float
    reasons: list[str]
    captcha_required: bool
    captcha_verified: bool
    rejection_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttemptPageQuery(PageQuery):
    success: bool | None = None
    ip_address: str | None = Field(default=None, max_length=64)
    email_domain: str | None = Field(default=None, max_length=255)


class AttemptListResponse(Page[AttemptResponse]):
    pass


class ConfigUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their current value."""

    enabled: bool | None = None
    rollout_percentage: int | None = None
    max_attempts_per_ip: int | None = None
    max_attempts_per_email: int | None = None
    window_minutes: int | None = None
    block_duration_minutes: int | None = None
    require_captcha_threshold: float | None = None
    deny_threshold: float | None = None
    captcha_enabled: bool | None = None
    auto_block_on_rate_limit: bool | None = None
    allowed_countries: list[str] | None = None
    blocked_countries: list[str] | None = None
    history_size: int | None = None
    fingerprint_lookback_minutes: int | None = None
    fingerprint_reuse_ceiling: int | None = None
    weights: dict[str, float] | None = None
    reason: str | None = Field(default=None, max_length=512)

    model_config = ConfigDict(extra="forbid")

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True, exclude={"reason"})
