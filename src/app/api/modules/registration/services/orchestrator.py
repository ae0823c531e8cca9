"""Per-request decision pipeline for self-service registration.

Order of checks for one call::

    kill switch / rollout -> block check -> rate check -> score
        -> deny or CAPTCHA challenge -> consume counters -> account hand-off

Every terminal path writes exactly one ``RegistrationAttempt``. The block
check fails closed; the counters and the scoring history fail open.
Every attempt that passes the rate check consumes the counters once it is
accepted or denied. A bare CAPTCHA challenge consumes nothing and is left out
of the failure rate of the scoring history.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import NoReturn

from app.api.modules.registration.errors import (
    AccountServiceUnavailableError,
    CaptchaRequiredError,
    ConflictError,
    ProtectionUnavailableError,
    RateLimitError,
    RegistrationDisabledError,
    RegistrationError,
    SecurityError,
    ValidationError,
)
from app.api.modules.registration.models import RegistrationAttempt
from app.api.modules.registration.services.blocks.block_store import BlockStore
from app.api.modules.registration.services.core.config import (
    ProtectionConfig,
    ProtectionConfigProvider,
    in_rollout,
)
from app.api.modules.registration.services.core.ports import (
    AccountCreator,
    AccountRegistration,
    CaptchaVerifier,
    CreatedAccount,
    ProtectionUnitOfWork,
)
from app.api.modules.registration.services.core.utils import (
    email_domain,
    hash_email,
    normalize_email,
    utcnow,
)
from app.api.modules.registration.services.limits.rate_limit import (
    FixedWindowRateLimiter,
    RateLimitStatus,
    email_key,
    ip_key,
)
from app.api.modules.registration.services.scoring.scorer import (
    AttemptContext,
    RecentHistory,
    ScoreResult,
    SuspicionScorer,
)
from app.settings import RegistrationConfig

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
CAPTCHA_REQUIRED_REASON = "captcha_required"
_USER_AGENT_MAX_LENGTH = 512


@dataclass(slots=True, frozen=True)
class RegistrationRequest:
    email: str
    username: str
    password: str = field(repr=False)
    ip_address: str
    first_name: str | None = None
    last_name: str | None = None
    fingerprint: str | None = None
    user_agent: str | None = None
    country_iso: str | None = None
    captcha_token: str | None = field(default=None, repr=False)


@dataclass(slots=True, frozen=True)
class RegistrationOutcome:
    account: CreatedAccount
    suspicion_score: float
    reasons: list[str]
    captcha_verified: bool


@dataclass(slots=True, frozen=True)
class RegistrationAvailability:
    enabled: bool
    message: str


@dataclass(slots=True)
class _Trail:
    """What the ledger needs to know about the call so far."""

    context: AttemptContext
    email_hash: str
    score: float = 0.0
    reasons: Sequence[str] = ()
    captcha_required: bool = False
    captcha_verified: bool = False


class ProtectionOrchestrator:
    def __init__(
        self,
        uow: ProtectionUnitOfWork,
        config_provider: ProtectionConfigProvider,
        block_store: BlockStore,
        rate_limiter: FixedWindowRateLimiter,
        scorer: SuspicionScorer,
        captcha_verifier: CaptchaVerifier,
        accounts: AccountCreator,
        settings: RegistrationConfig,
        on_attempt_recorded: Callable[[], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._uow = uow
        self._config_provider = config_provider
        self._block_store = block_store
        self._rate_limiter = rate_limiter
        self._scorer = scorer
        self._captcha = captcha_verifier
        self._accounts = accounts
        self._settings = settings
        self._on_attempt_recorded = on_attempt_recorded
        self._clock = clock

    async def _safe_rollback(self) -> None:
        try:
            await self._uow.rollback()
        except Exception:
            logger.exception("Rollback after a storage failure failed")

    async def _record(
        self,
        trail: _Trail,
        success: bool,
        rejection_reason: str | None,
    ) -> bool:
        context = trail.context
        attempt = RegistrationAttempt(
            ip_address=context.ip_address,
            email_domain=context.email_domain,
            email_hash=trail.email_hash,
            fingerprint=context.fingerprint,
            user_agent=(context.user_agent or "")[:_USER_AGENT_MAX_LENGTH] or None,
            country_iso=context.country_iso,
            attempted_at=self._clock(),
            success=success,
            suspicion_score=trail.score,
            reasons=list(trail.reasons),
            captcha_required=trail.captcha_required,
            captcha_verified=trail.captcha_verified,
            rejection_reason=rejection_reason,
        )
        try:
            await self._uow.attempts.add(attempt)
            await self._uow.commit()
        except Exception:
            logger.exception(
                "Failed to record registration attempt",
                extra={"ip": context.ip_address, "rejection_reason": rejection_reason},
            )
            await self._safe_rollback()
            return False

        if self._on_attempt_recorded is not None:
            self._on_attempt_recorded()
        return True

    async def _reject(
        self,
        trail: _Trail,
        error: RegistrationError,
        rejection_reason: str,
    ) -> NoReturn:
        await self._record(trail, success=False, rejection_reason=rejection_reason)
        level = logging.INFO if isinstance(error, CaptchaRequiredError) else logging.WARNING
        logger.log(
            level,
            "Registration attempt rejected",
            extra={
                "ip": trail.context.ip_address,
                "rejection_reason": rejection_reason,
                "suspicion_score": trail.score,
            },
        )
        raise error

    async def _is_blocked(self, ip: str) -> bool:
        try:
            return await self._block_store.is_blocked(ip)
        except Exception:
            logger.exception("Block store unavailable, failing closed", extra={"ip": ip})
            await self._safe_rollback()
            return True

    async def _check_limits(
        self, trail: _Trail, config: ProtectionConfig
    ) -> tuple[RateLimitStatus | None, RateLimitStatus | None]:
        try:
            ip_status = await self._rate_limiter.check(
                ip_key(trail.context.ip_address),
                config.max_attempts_per_ip,
                config.window_seconds,
            )
            email_status = await self._rate_limiter.check(
                email_key(trail.email_hash),
                config.max_attempts_per_email,
                config.window_seconds,
            )
        except Exception:
            logger.exception(
                "Counter store unavailable, failing open",
                extra={"ip": trail.context.ip_address},
            )
            return None, None
        return ip_status, email_status

    async def _auto_block(self, ip: str, config: ProtectionConfig) -> bool:
        try:
            await self._block_store.block(
                ip,
                config.block_duration_minutes,
                reason="Registration rate limit exceeded",
                actor=SYSTEM_ACTOR,
            )
        except Exception:
            logger.exception("Failed to auto-block IP", extra={"ip": ip})
            await self._safe_rollback()
            return False
        return True

    async def _reject_rate_limited(
        self,
        trail: _Trail,
        config: ProtectionConfig,
        ip_status: RateLimitStatus | None,
        email_status: RateLimitStatus | None,
    ) -> None:
        ip = trail.context.ip_address
        if ip_status is not None and not ip_status.allowed:
            retry_after = ip_status.retry_after
            if config.auto_block_on_rate_limit and await self._auto_block(ip, config):
                retry_after = config.block_duration_minutes * 60
            await self._reject(
                trail,
                RateLimitError(retry_after, reason="ip_rate_limited"),
                "ip_rate_limited",
            )
        if email_status is not None and not email_status.allowed:
            await self._reject(
                trail,
                RateLimitError(email_status.retry_after, reason="email_rate_limited"),
                "email_rate_limited",
            )

    async def _gather_history(
        self,
        trail: _Trail,
        config: ProtectionConfig,
        ip_status: RateLimitStatus | None,
        email_status: RateLimitStatus | None,
    ) -> RecentHistory:
        context = trail.context
        ip_attempts = ip_status.count if ip_status else 0
        email_attempts = email_status.count if email_status else 0
        try:
            domain_list_type = await self._block_store.domain_status(context.email_domain)
            recent = await self._uow.attempts.recent_for_ip(
                context.ip_address, config.history_size
            )
            fingerprint_accounts = 0
            if context.fingerprint:
                fingerprint_accounts = (
                    await self._uow.attempts.count_distinct_emails_for_fingerprint(
                        context.fingerprint,
                        self._clock()
                        - timedelta(minutes=config.fingerprint_lookback_minutes),
                        exclude_email_hash=trail.email_hash,
                    )
                )
        except Exception:
            logger.exception(
                "Scoring history unavailable, scoring without it",
                extra={"ip": context.ip_address},
            )
            await self._safe_rollback()
            return RecentHistory(ip_attempts=ip_attempts, email_attempts=email_attempts)

        return RecentHistory(
            ip_attempts=ip_attempts,
            email_attempts=email_attempts,
            domain_list_type=domain_list_type,
            fingerprint_accounts=fingerprint_accounts,
            recent_outcomes=tuple(
                attempt.success
                for attempt in recent
                if attempt.rejection_reason != CAPTCHA_REQUIRED_REASON
            ),
        )

    async def _consume(
        self, trail: _Trail, config: ProtectionConfig
    ) -> tuple[RateLimitStatus | None, RateLimitStatus | None]:
        ip = trail.context.ip_address
        email_status = None
        try:
            ip_status = await self._rate_limiter.consume(
                ip_key(ip), config.max_attempts_per_ip, config.window_seconds
            )
            if ip_status.allowed:
                email_status = await self._rate_limiter.consume(
                    email_key(trail.email_hash),
                    config.max_attempts_per_email,
                    config.window_seconds,
                )
        except Exception:
            logger.exception("Counter store unavailable, failing open", extra={"ip": ip})
            return None, None
        return ip_status, email_status

    async def _deny(
        self,
        trail: _Trail,
        config: ProtectionConfig,
        error: RegistrationError,
        rejection_reason: str,
    ) -> NoReturn:
        await self._consume(trail, config)
        await self._reject(trail, error, rejection_reason)

    async def _consume_for_acceptance(self, trail: _Trail, config: ProtectionConfig) -> None:
        ip_status, email_status = await self._consume(trail, config)

        # A concurrent request from the same key won the last slot.
        if ip_status is not None and not ip_status.allowed:
            await self._reject(
                trail,
                RateLimitError(ip_status.retry_after, reason="ip_rate_limited"),
                "ip_rate_limited",
            )
        if email_status is not None and not email_status.allowed:
            await self._reject(
                trail,
                RateLimitError(email_status.retry_after, reason="email_rate_limited"),
                "email_rate_limited",
            )

    async def _verify_captcha(
        self,
        trail: _Trail,
        config: ProtectionConfig,
        result: ScoreResult,
        token: str | None,
    ) -> None:
        if not config.captcha_enabled or result.score < config.require_captcha_threshold:
            return
        if not self._captcha.is_configured():
            logger.warning(
                "CAPTCHA threshold reached but no verifier is configured",
                extra={"ip": trail.context.ip_address, "suspicion_score": result.score},
            )
            return

        trail.captcha_required = True
        if not token:
            await self._reject(
                trail,
                CaptchaRequiredError(
                    provider=self._captcha.provider,
                    site_key=self._captcha.site_key,
                ),
                CAPTCHA_REQUIRED_REASON,
            )

        verification = await self._captcha.verify(token, trail.context.ip_address)
        if not verification.success:
            logger.info(
                "CAPTCHA verification failed",
                extra={
                    "ip": trail.context.ip_address,
                    "error_codes": verification.error_codes,
                },
            )
            await self._deny(
                trail, config, SecurityError("captcha_failed"), "captcha_failed"
            )
        trail.captcha_verified = True

    async def _create_account(
        self, trail: _Trail, request: RegistrationRequest, email: str
    ) -> CreatedAccount:
        registration = AccountRegistration(
            email=email,
            username=request.username,
            password=request.password,
            first_name=request.first_name,
            last_name=request.last_name,
        )
        retry_after = self._settings.account_retry_after_seconds
        try:
            return await asyncio.wait_for(
                self._accounts.create_account(registration),
                timeout=self._settings.account_timeout_seconds,
            )
        except TimeoutError:
            await self._reject(
                trail,
                AccountServiceUnavailableError(retry_after),
                "account_service_timeout",
            )
        except AccountServiceUnavailableError as exc:
            await self._reject(trail, exc, "account_service_unavailable")
        except ConflictError as exc:
            await self._reject(trail, exc, "duplicate_account")
        except ValidationError as exc:
            await self._reject(trail, exc, "account_rejected")

    async def register(self, request: RegistrationRequest) -> RegistrationOutcome:
        # One snapshot for the whole call; admin updates swap it wholesale.
        config = self._config_provider.current

        email = normalize_email(request.email)
        context = AttemptContext(
            ip_address=request.ip_address,
            email=email,
            email_domain=email_domain(email),
            fingerprint=request.fingerprint or None,
            user_agent=request.user_agent,
            country_iso=request.country_iso,
        )
        trail = _Trail(context=context, email_hash=hash_email(email))

        if not config.enabled:
            await self._reject(
                trail, RegistrationDisabledError(), "registration_disabled"
            )
        if not in_rollout(request.ip_address, config.rollout_percentage):
            await self._reject(
                trail,
                RegistrationDisabledError("outside_rollout"),
                "outside_rollout",
            )

        if await self._is_blocked(request.ip_address):
            await self._reject(trail, SecurityError("ip_blocked"), "ip_blocked")

        ip_status, email_status = await self._check_limits(trail, config)
        await self._reject_rate_limited(trail, config, ip_status, email_status)

        history = await self._gather_history(trail, config, ip_status, email_status)
        result = self._scorer.score(context, history, config)
        trail.score = result.score
        trail.reasons = result.reasons

        if result.score >= config.deny_threshold:
            await self._deny(
                trail,
                config,
                SecurityError("suspicion_score_denied"),
                "suspicion_score_denied",
            )

        await self._verify_captcha(trail, config, result, request.captcha_token)
        await self._consume_for_acceptance(trail, config)

        account = await self._create_account(trail, request, email)
        if not await self._record(trail, success=True, rejection_reason=None):
            raise ProtectionUnavailableError()

        logger.info(
            "Registration accepted",
            extra={"ip": request.ip_address, "suspicion_score": result.score},
        )
        return RegistrationOutcome(
            account=account,
            suspicion_score=result.score,
            reasons=list(result.reasons),
            captcha_verified=trail.captcha_verified,
        )

    async def availability(self, ip_address: str | None) -> RegistrationAvailability:
        config = self._config_provider.current
        if not config.enabled or not in_rollout(ip_address, config.rollout_percentage):
            return RegistrationAvailability(
                enabled=False, message="Registration is currently closed."
            )
        if ip_address and await self._is_blocked(ip_address):
            return RegistrationAvailability(
                enabled=False,
                message="Registration is currently unavailable. Please try again later.",
            )
        return RegistrationAvailability(enabled=True, message="Registration is open.")


__all__ = (
    "SYSTEM_ACTOR",
    "ProtectionOrchestrator",
    "RegistrationAvailability",
    "RegistrationOutcome",
    "RegistrationRequest",
)
