from app.api.modules.registration.services.network.account import HttpAccountClient
from app.api.modules.registration.services.network.captcha import (
    CaptchaVerificationResult,
    CaptchaVerifierService,
)
from app.api.modules.registration.services.network.client import IpGeoClient
from app.api.modules.registration.services.network.common import (
    RequestIpResolver,
    normalize_ip,
)
from app.api.modules.registration.services.network.user_agent import (
    is_suspicious_user_agent,
    user_agent_verdict,
)

__all__ = (
    "CaptchaVerificationResult",
    "CaptchaVerifierService",
    "HttpAccountClient",
    "IpGeoClient",
    "RequestIpResolver",
    "is_suspicious_user_agent",
    "normalize_ip",
    "user_agent_verdict",
)
