import re

SUSPICIOUS_EMAIL_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"test\d+@",
        r"admin@",
        r"noreply@",
        r"\d{5,}@",
        r"^[a-z]{1,2}\d+@",
        r"temp.*@",
        r"disposable.*@",
        r"fake.*@",
    )
)


def is_suspicious_email(email: str | None) -> bool:
    if not email:
        return False
    return any(pattern.search(email) for pattern in SUSPICIOUS_EMAIL_PATTERNS)


__all__ = ("SUSPICIOUS_EMAIL_PATTERNS", "is_suspicious_email")
