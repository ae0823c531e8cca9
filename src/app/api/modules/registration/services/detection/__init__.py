from app.api.modules.registration.services.detection.detector import (
    BLACKLISTED_DOMAIN_SURGE,
    RAPID_SUCCESSION,
    SCORE_SHIFT,
    SUBNET_BURST,
    AttackPatternDetector,
)
from app.api.modules.registration.services.detection.monitor import (
    AttackPatternMonitor,
    UnitOfWorkFactory,
)

__all__ = (
    "BLACKLISTED_DOMAIN_SURGE",
    "RAPID_SUCCESSION",
    "SCORE_SHIFT",
    "SUBNET_BURST",
    "AttackPatternDetector",
    "AttackPatternMonitor",
    "UnitOfWorkFactory",
)
