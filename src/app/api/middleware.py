import hmac

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

ADMIN_PATH_PREFIX = "/admin/"


class AdminKeyMiddleware(BaseHTTPMiddleware):
    """Gates every ``/admin/`` path behind the shared ``X-Admin-Key``.

    Requests are refused when no key is configured at all.
    """

    def __init__(self, app, admin_key: str | None) -> None:  # noqa: ANN001
        super().__init__(app)
        self._admin_key = admin_key

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        if not request.url.path.startswith(ADMIN_PATH_PREFIX):
            return await call_next(request)

        provided = request.headers.get("X-Admin-Key", "")
        if not self._admin_key or not hmac.compare_digest(provided, self._admin_key):
            return JSONResponse(
                {"detail": "Invalid or missing admin key", "code": "UNAUTHORIZED"},
                status_code=401,
            )

        return await call_next(request)
