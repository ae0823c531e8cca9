"""Suspicion scoring for registration attempts.

The scorer is a pure function of the attempt context, the recent history
gathered by the orchestrator and the active protection snapshot. Each signal
adds an independent, non-negative weighted term; the sum is clamped to
``[0, 1]``. A whitelisted domain is the only term that lowers the score and
it discards every positive contribution.
"""

from dataclasses import dataclass, field

from app.api.modules.registration.services.core.config import ProtectionConfig
from app.api.modules.registration.services.network.user_agent import (
    is_suspicious_user_agent,
)
from app.api.modules.registration.services.scoring.email import is_suspicious_email

BLACKLIST = "blacklist"
WHITELIST = "whitelist"


@dataclass(slots=True, frozen=True)
class AttemptContext:
    ip_address: str
    email: str
    email_domain: str | None
    fingerprint: str | None = None
    user_agent: str | None = None
    country_iso: str | None = None


@dataclass(slots=True, frozen=True)
class RecentHistory:
    ip_attempts: int = 0
    email_attempts: int = 0
    domain_list_type: str | None = None
    fingerprint_accounts: int = 0
    # Success flags of the IP's most recent attempts, newest first.
    recent_outcomes: tuple[bool, ...] = ()

    @property
    def failure_rate(self) -> float:
        if not self.recent_outcomes:
            return 0.0
        failed = sum(1 for success in self.recent_outcomes if not success)
        return failed / len(self.recent_outcomes)


@dataclass(slots=True, frozen=True)
class ScoreSignal:
    code: str
    weight: float


@dataclass(slots=True, frozen=True)
class ScoreResult:
    score: float
    signals: tuple[ScoreSignal, ...] = field(default=())

    @property
    def reasons(self) -> list[str]:
        return [signal.code for signal in self.signals]


def _ratio(count: int, ceiling: int) -> float:
    if count <= 0 or ceiling <= 0:
        return 0.0
    return min(1.0, count / ceiling)


def _clamp(value: float) -> float:
    return round(min(1.0, max(0.0, value)), 4)


class SuspicionScorer:
    def score(
        self,
        context: AttemptContext,
        history: RecentHistory,
        config: ProtectionConfig,
    ) -> ScoreResult:
        weights = config.weights

        if history.domain_list_type == WHITELIST:
            signal = ScoreSignal("whitelisted_domain", weights.whitelisted_domain)
            return ScoreResult(score=_clamp(signal.weight), signals=(signal,))

        signals: list[ScoreSignal] = []

        velocity = max(
            _ratio(history.ip_attempts, config.max_attempts_per_ip),
            _ratio(history.email_attempts, config.max_attempts_per_email),
        )
        if velocity > 0:
            signals.append(ScoreSignal("velocity", velocity * weights.velocity))

        if history.domain_list_type == BLACKLIST:
            signals.append(
                ScoreSignal("blacklisted_domain", weights.blacklisted_domain)
            )

        country = context.country_iso.upper() if context.country_iso else None
        if country:
            if country in config.blocked_countries:
                signals.append(ScoreSignal("blocked_country", weights.blocked_country))
            elif config.allowed_countries and country not in config.allowed_countries:
                signals.append(
                    ScoreSignal("country_not_allowed", weights.unlisted_country)
                )

        if context.fingerprint and history.fingerprint_accounts > 0:
            reuse = _ratio(history.fingerprint_accounts, config.fingerprint_reuse_ceiling)
            signals.append(
                ScoreSignal("fingerprint_reuse", reuse * weights.fingerprint_reuse)
            )

        failure_rate = history.failure_rate
        if failure_rate > 0:
            signals.append(
                ScoreSignal("high_failure_rate", failure_rate * weights.failure_rate)
            )

        if is_suspicious_email(context.email):
            signals.append(
                ScoreSignal("suspicious_email_pattern", weights.suspicious_email)
            )

        if is_suspicious_user_agent(context.user_agent):
            signals.append(
                ScoreSignal("suspicious_user_agent", weights.suspicious_user_agent)
            )

        active = tuple(signal for signal in signals if signal.weight > 0)
        return ScoreResult(
            score=_clamp(sum(signal.weight for signal in active)),
            signals=active,
        )


__all__ = (
    "BLACKLIST",
    "WHITELIST",
    "AttemptContext",
    "RecentHistory",
    "ScoreResult",
    "ScoreSignal",
    "SuspicionScorer",
)
