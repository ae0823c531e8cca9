from app.api.modules.registration.services.network import (
    IpGeoClient,
    RequestIpResolver,
)

__all__ = ("IpGeoClient", "RequestIpResolver")
