import datetime
import uuid

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database.base import Base, UpdatedAtMixin


def _new_alert_id() -> str:
    return str(uuid.uuid4())


class RegistrationAttempt(Base):
    __tablename__ = "registration_attempts"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    ip_address: Mapped[str] = mapped_column(String(64), index=True)
    email_domain: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    email_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fingerprint: Mapped[str | None] = mapped_column(
        String(256), nullable=True, index=True
    )
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    country_iso: Mapped[str | None] = mapped_column(String(2), nullable=True)
    attempted_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), index=True
    )
    success: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    suspicion_score: Mapped[float] = mapped_column(Float, default=0.0)
    reasons: Mapped[list] = mapped_column(JSON, default=list)
    captcha_required: Mapped[bool] = mapped_column(Boolean, default=False)
    captcha_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    rejection_reason: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )


class BlockedIp(Base):
    __tablename__ = "blocked_ips"

    ip_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    reason: Mapped[str] = mapped_column(String(512))
    blocked_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    blocked_by: Mapped[str] = mapped_column(String(128))
    expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )


class DomainListEntry(Base):
    __tablename__ = "domain_list_entries"

    domain: Mapped[str] = mapped_column(String(255), primary_key=True)
    list_type: Mapped[str] = mapped_column(String(16), index=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    added_by: Mapped[str] = mapped_column(String(128))
    added_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))


class RegistrationAlert(Base):
    __tablename__ = "registration_alerts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_new_alert_id
    )
    pattern: Mapped[str] = mapped_column(String(64), index=True)
    pattern_key: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text)
    severity: Mapped[str] = mapped_column(String(16))
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    detected_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), index=True
    )
    acknowledged: Mapped[bool] = mapped_column(
        Boolean, default=False, index=True
    )
    acknowledged_by: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    acknowledged_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class FeatureFlag(Base, UpdatedAtMixin):
    __tablename__ = "feature_flags"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
