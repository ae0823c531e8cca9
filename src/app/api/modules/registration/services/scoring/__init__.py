from app.api.modules.registration.services.scoring.scorer import (
    BLACKLIST,
    WHITELIST,
    AttemptContext,
    RecentHistory,
    ScoreResult,
    ScoreSignal,
    SuspicionScorer,
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
