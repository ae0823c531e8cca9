"""Batch analysis of the attempt ledger.

The detector only ever writes alerts. Blocking stays a decision for an
operator or for the orchestrator's own rate-limit auto-block.
"""

import logging
import uuid
from collections import Counter, defaultdict
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from statistics import fmean

from app.api.modules.registration.models import RegistrationAlert, RegistrationAttempt
from app.api.modules.registration.services.core.ports import ProtectionUnitOfWork
from app.api.modules.registration.services.core.utils import subnet_for, utcnow
from app.api.modules.registration.services.scoring.scorer import BLACKLIST
from app.settings import RegistrationConfig

logger = logging.getLogger(__name__)

SUBNET_BURST = "subnet_burst"
BLACKLISTED_DOMAIN_SURGE = "blacklisted_domain_surge"
SCORE_SHIFT = "score_shift"
RAPID_SUCCESSION = "rapid_succession"

_RAPID_WINDOW = timedelta(minutes=1)


def _alert(
    pattern: str,
    pattern_key: str,
    severity: str,
    description: str,
    details: dict,
    detected_at: datetime,
) -> RegistrationAlert:
    return RegistrationAlert(
        id=str(uuid.uuid4()),
        pattern=pattern,
        pattern_key=pattern_key,
        severity=severity,
        description=description,
        details=details,
        detected_at=detected_at,
        acknowledged=False,
    )


class AttackPatternDetector:
    def __init__(
        self,
        uow: ProtectionUnitOfWork,
        settings: RegistrationConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._uow = uow
        self._settings = settings
        self._clock = clock

    def _subnet_bursts(
        self, attempts: Sequence[RegistrationAttempt], now: datetime
    ) -> list[RegistrationAlert]:
        per_subnet: dict[str, list[str]] = defaultdict(list)
        for attempt in attempts:
            subnet = subnet_for(attempt.ip_address)
            if subnet:
                per_subnet[subnet].append(attempt.ip_address)

        alerts = []
        for subnet, ips in per_subnet.items():
            distinct_ips = len(set(ips))
            if (
                len(ips) >= self._settings.subnet_attempt_threshold
                and distinct_ips >= self._settings.subnet_min_distinct_ips
            ):
                alerts.append(
                    _alert(
                        SUBNET_BURST,
                        subnet,
                        "critical",
                        f"{len(ips)} registration attempts from {distinct_ips} "
                        f"addresses in {subnet} within "
                        f"{self._settings.detector_window_minutes} minutes.",
                        {"attempts": len(ips), "distinct_ips": distinct_ips},
                        now,
                    )
                )
        return alerts

    async def _blacklisted_domain_surge(
        self, attempts: Sequence[RegistrationAttempt], now: datetime
    ) -> list[RegistrationAlert]:
        since = now - timedelta(days=self._settings.recent_blacklist_days)
        recent = await self._uow.domains.added_since(BLACKLIST, since)
        if not recent:
            return []

        hits = Counter(
            attempt.email_domain for attempt in attempts if attempt.email_domain in recent
        )
        total = sum(hits.values())
        if total < self._settings.blacklisted_domain_threshold:
            return []
        return [
            _alert(
                BLACKLISTED_DOMAIN_SURGE,
                "recently_blacklisted",
                "high",
                f"{total} registration attempts used recently blacklisted domains.",
                {"attempts": total, "domains": dict(hits.most_common(10))},
                now,
            )
        ]

    async def _score_shift(
        self,
        attempts: Sequence[RegistrationAttempt],
        window_start: datetime,
        now: datetime,
    ) -> list[RegistrationAlert]:
        min_samples = self._settings.score_shift_min_samples
        if len(attempts) < min_samples:
            return []

        baseline_start = window_start - timedelta(hours=self._settings.baseline_hours)
        baseline = await self._uow.attempts.list_between(baseline_start, window_start)
        if len(baseline) < min_samples:
            return []

        current_mean = fmean(attempt.suspicion_score for attempt in attempts)
        baseline_mean = fmean(attempt.suspicion_score for attempt in baseline)
        shift = current_mean - baseline_mean
        if shift < self._settings.score_shift_delta:
            return []
        return [
            _alert(
                SCORE_SHIFT,
                "global",
                "high",
                f"Average suspicion score rose from {baseline_mean:.2f} "
                f"to {current_mean:.2f}.",
                {
                    "current_mean": round(current_mean, 4),
                    "baseline_mean": round(baseline_mean, 4),
                    "current_samples": len(attempts),
                    "baseline_samples": len(baseline),
                },
                now,
            )
        ]

    async def _rapid_succession(self, now: datetime) -> list[RegistrationAlert]:
        recent = await self._uow.attempts.list_between(now - _RAPID_WINDOW, now)
        per_ip = Counter(attempt.ip_address for attempt in recent)
        return [
            _alert(
                RAPID_SUCCESSION,
                ip,
                "medium",
                f"{count} registration attempts from {ip} within one minute.",
                {"attempts": count},
                now,
            )
            for ip, count in per_ip.items()
            if count >= self._settings.rapid_attempt_threshold
        ]

    async def detect(self, now: datetime | None = None) -> list[RegistrationAlert]:
        """Scan the ledger and persist alerts that are not already open."""
        now = now or self._clock()
        window_start = now - timedelta(minutes=self._settings.detector_window_minutes)
        attempts = await self._uow.attempts.list_between(window_start, now)

        candidates = [
            *self._subnet_bursts(attempts, now),
            *await self._blacklisted_domain_surge(attempts, now),
            *await self._score_shift(attempts, window_start, now),
            *await self._rapid_succession(now),
        ]

        emitted: list[RegistrationAlert] = []
        for alert in candidates:
            if await self._uow.alerts.has_open(
                alert.pattern, alert.pattern_key, window_start
            ):
                continue
            await self._uow.alerts.add(alert)
            emitted.append(alert)
            logger.warning(
                "Registration attack pattern detected",
                extra={
                    "pattern": alert.pattern,
                    "pattern_key": alert.pattern_key,
                    "severity": alert.severity,
                },
            )

        if emitted:
            await self._uow.commit()
        return emitted


__all__ = (
    "BLACKLISTED_DOMAIN_SURGE",
    "RAPID_SUCCESSION",
    "SCORE_SHIFT",
    "SUBNET_BURST",
    "AttackPatternDetector",
)
