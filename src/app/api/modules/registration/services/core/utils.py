from datetime import UTC, datetime
from hashlib import sha256
from ipaddress import ip_address, ip_network


def utcnow() -> datetime:
    return datetime.now(UTC)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def email_domain(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    return normalize_domain(email.rsplit("@", 1)[1])


def normalize_domain(domain: str) -> str:
    return domain.strip().lower().rstrip(".")


def hash_email(email: str) -> str:
    return sha256(normalize_email(email).encode("utf-8")).hexdigest()


def subnet_for(ip: str) -> str | None:
    """/24 for IPv4 and /48 for IPv6, the granularity bot farms rent at."""
    try:
        parsed = ip_address(ip)
    except ValueError:
        return None
    prefix = 24 if parsed.version == 4 else 48
    return str(ip_network(f"{parsed}/{prefix}", strict=False))


__all__ = (
    "email_domain",
    "hash_email",
    "normalize_domain",
    "normalize_email",
    "subnet_for",
    "utcnow",
)
