from fastapi import APIRouter


def register_routers(router: APIRouter) -> None:
    from app.api.modules.registration.admin_routes import router as admin_router
    from app.api.modules.registration.routes import router as registration_router

    router.include_router(registration_router, prefix="/register", tags=["Registration"])
    router.include_router(
        admin_router,
        prefix="/admin/registration",
        tags=["Registration admin"],
    )
