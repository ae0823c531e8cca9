import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dishka import AsyncContainer
from dishka.integrations.fastapi import setup_dishka
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.api import register_routers
from app.api.middleware import ADMIN_PATH_PREFIX, AdminKeyMiddleware
from app.api.modules.registration import models  # noqa: F401
from app.api.modules.registration.errors import RegistrationError
from app.api.modules.registration.services.core import ProtectionConfigProvider
from app.api.modules.registration.services.detection import AttackPatternMonitor
from app.database.base import Base
from app.database.uow import open_unit_of_work
from app.ioc import get_async_container
from app.services.logging import setup_logging
from app.settings import Config, get_config

logger = logging.getLogger(__name__)

_OPENAPI_ADMIN_KEY_SCHEME = "AdminKeyAuth"


def _install_openapi_admin_key_security(app: FastAPI) -> None:
    def custom_openapi() -> dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = get_openapi(
            title=app.title,
            version=app.version,
            routes=app.routes,
        )

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes[_OPENAPI_ADMIN_KEY_SCHEME] = {
            "type": "apiKey",
            "in": "header",
            "name": "X-Admin-Key",
        }

        for path, operations in schema.get("paths", {}).items():
            if not path.startswith(ADMIN_PATH_PREFIX):
                continue
            for operation in operations.values():
                operation["security"] = [{_OPENAPI_ADMIN_KEY_SCHEME: []}]

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi


async def registration_error_handler(
    request: Request, exc: RegistrationError
) -> JSONResponse:
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        {"detail": "Validation failed", "code": "VALIDATION_ERROR", "errors": errors},
        status_code=400,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    container: AsyncContainer = app.state.dishka_container

    engine = await container.get(AsyncEngine)
    logger.info("Creating database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = await container.get(async_sessionmaker[AsyncSession])
    config_provider = await container.get(ProtectionConfigProvider)
    async with open_unit_of_work(session_factory) as uow:
        config = await config_provider.load(uow.flags)
    logger.info(
        "Registration protection loaded",
        extra={"enabled": config.enabled, "rollout": config.rollout_percentage},
    )

    monitor = await container.get(AttackPatternMonitor)
    monitor.start()

    logger.info("Starting application...")
    yield
    logger.info("Shutting down application...")
    await monitor.stop()
    await container.close()


def create_app(config: Config, container: AsyncContainer) -> FastAPI:
    app = FastAPI(
        title=config.api.title,
        version=config.api.version,
        lifespan=lifespan,
    )

    app.add_middleware(AdminKeyMiddleware, admin_key=config.api.admin_api_key)
    _install_openapi_admin_key_security(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_hosts,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RegistrationError, registration_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    api_router = APIRouter()
    register_routers(api_router)
    app.include_router(api_router)

    setup_dishka(container, app)

    return app


def get_production_app() -> FastAPI:
    """Get the FastAPI application instance."""
    config = get_config()
    setup_logging(config.env)
    return create_app(config, get_async_container())
