from ipaddress import ip_address

from fastapi import Request

from app.settings import Config

# Checked in order when the deployment sits behind a trusted proxy.
PROXY_IP_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")


def normalize_ip(value: str | None) -> str | None:
    """Canonical text form of an address; for a forwarded chain, its client end."""
    if not value:
        return None
    client_end = value.split(",", 1)[0].strip()
    try:
        return ip_address(client_end).compressed
    except ValueError:
        return None


class RequestIpResolver:
    def __init__(self, config: Config):
        self._behind_proxy = config.registration.trust_forwarded_ip

    def _from_proxy_headers(self, request: Request) -> str | None:
        for header in PROXY_IP_HEADERS:
            resolved = normalize_ip(request.headers.get(header))
            if resolved is not None:
                return resolved
        return None

    def get_request_ip(self, request: Request) -> str | None:
        if self._behind_proxy:
            forwarded = self._from_proxy_headers(request)
            if forwarded is not None:
                return forwarded
        peer = request.client.host if request.client else None
        return normalize_ip(peer)


__all__ = ("PROXY_IP_HEADERS", "RequestIpResolver", "normalize_ip")
