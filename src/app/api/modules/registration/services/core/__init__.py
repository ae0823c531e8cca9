from app.api.modules.registration.services.core.config import (
    REGISTRATION_FLAG_KEY,
    ProtectionConfig,
    ProtectionConfigProvider,
    ScoreWeights,
    in_rollout,
)
from app.api.modules.registration.services.core.ports import (
    AccountCreator,
    AccountRegistration,
    AlertRepository,
    AttemptFilters,
    AttemptRepository,
    AttemptStats,
    BlockRepository,
    CaptchaVerifier,
    CreatedAccount,
    DomainListRepository,
    FlagRepository,
    ProtectionUnitOfWork,
)
from app.api.modules.registration.services.core.utils import (
    email_domain,
    hash_email,
    normalize_domain,
    normalize_email,
    subnet_for,
    utcnow,
)

__all__ = (
    "REGISTRATION_FLAG_KEY",
    "AccountCreator",
    "AccountRegistration",
    "AlertRepository",
    "AttemptFilters",
    "AttemptRepository",
    "AttemptStats",
    "BlockRepository",
    "CaptchaVerifier",
    "CreatedAccount",
    "DomainListRepository",
    "FlagRepository",
    "ProtectionConfig",
    "ProtectionConfigProvider",
    "ProtectionUnitOfWork",
    "ScoreWeights",
    "email_domain",
    "hash_email",
    "in_rollout",
    "normalize_domain",
    "normalize_email",
    "subnet_for",
    "utcnow",
)
