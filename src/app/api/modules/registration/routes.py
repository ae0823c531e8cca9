from dishka import FromDishka
from dishka.integrations.fastapi import DishkaRoute
from fastapi import APIRouter, Request

from app.api.modules.registration.schema import (
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    RegistrationStatusResponse,
    ResendVerificationRequest,
)
from app.api.modules.registration.service import RegistrationFacadeService

router = APIRouter(route_class=DishkaRoute)


@router.post("", response_model=RegisterResponse, status_code=201)
async def register(
    request: Request,
    payload: RegisterRequest,
    facade: FromDishka[RegistrationFacadeService],
) -> RegisterResponse:
    return await facade.register_request(request=request, payload=payload)


@router.get("/status", response_model=RegistrationStatusResponse, status_code=200)
async def registration_status(
    request: Request,
    facade: FromDishka[RegistrationFacadeService],
) -> RegistrationStatusResponse:
    return await facade.status_request(request)


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    status_code=200,
)
async def resend_verification(
    payload: ResendVerificationRequest,
    facade: FromDishka[RegistrationFacadeService],
) -> MessageResponse:
    return await facade.resend_verification(payload)
