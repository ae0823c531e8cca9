from typing import Annotated

from dishka import FromDishka
from dishka.integrations.fastapi import DishkaRoute
from fastapi import APIRouter, Depends, Header, Query

from app.api.modules.registration.schema import (
    AlertListResponse,
    AlertResponse,
    AttemptListResponse,
    AttemptPageQuery,
    AttemptResponse,
    BlockedIpResponse,
    BlockIpRequest,
    ClearAlertsRequest,
    ClearAlertsResponse,
    ConfigUpdateRequest,
    DisableRequest,
    DomainEntryResponse,
    DomainRequest,
    MetricsResponse,
    RemovedResponse,
)
from app.api.modules.registration.services.admin import RegistrationAdminService
from app.api.modules.registration.services.blocks import LIST_TYPES
from app.api.modules.registration.services.core import AttemptFilters, ProtectionConfig
from app.api.modules.registration.services.scoring.scorer import BLACKLIST, WHITELIST

router = APIRouter(route_class=DishkaRoute)

DEFAULT_ACTOR = "admin"
_LIST_TYPE_PATTERN = f"^({'|'.join(LIST_TYPES)})$"


def get_actor(x_admin_id: Annotated[str | None, Header()] = None) -> str:
    return (x_admin_id or "").strip()[:128] or DEFAULT_ACTOR


Actor = Annotated[str, Depends(get_actor)]


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(admin: FromDishka[RegistrationAdminService]) -> MetricsResponse:
    metrics = await admin.metrics()
    stats = metrics.attempts
    return MetricsResponse(
        period_hours=metrics.period_hours,
        total_attempts=stats.total_attempts,
        successful=stats.successful,
        failed=stats.failed,
        unique_ips=stats.unique_ips,
        captcha_challenges=stats.captcha_challenges,
        captcha_passed=stats.captcha_passed,
        avg_suspicion_score=stats.avg_suspicion_score,
        active_blocks=metrics.active_blocks,
        open_alerts=metrics.open_alerts,
        registration_enabled=metrics.registration_enabled,
        rollout_percentage=metrics.rollout_percentage,
    )


@router.get("/alerts", response_model=AlertListResponse)
async def get_alerts(
    admin: FromDishka[RegistrationAdminService],
    limit: int = Query(100, ge=1, le=500),
) -> AlertListResponse:
    alerts = [AlertResponse.model_validate(a) for a in await admin.list_alerts(limit)]
    return AlertListResponse(alerts=alerts, total=len(alerts))


@router.post("/alerts/clear", response_model=ClearAlertsResponse)
async def clear_alerts(
    payload: ClearAlertsRequest,
    actor: Actor,
    admin: FromDishka[RegistrationAdminService],
) -> ClearAlertsResponse:
    cleared = await admin.acknowledge_alerts(payload.alert_ids, actor)
    return ClearAlertsResponse(cleared=cleared)


@router.get("/attack-patterns", response_model=AlertListResponse)
async def get_attack_patterns(
    admin: FromDishka[RegistrationAdminService],
    days: int = Query(7, ge=1, le=90),
) -> AlertListResponse:
    alerts = [AlertResponse.model_validate(a) for a in await admin.attack_patterns(days)]
    return AlertListResponse(alerts=alerts, total=len(alerts))


@router.post("/disable", response_model=ProtectionConfig)
async def emergency_disable(
    payload: DisableRequest,
    actor: Actor,
    admin: FromDishka[RegistrationAdminService],
) -> ProtectionConfig:
    return await admin.emergency_disable(payload.reason, actor)


@router.post("/block-ip", response_model=BlockedIpResponse, status_code=201)
async def block_ip(
    payload: BlockIpRequest,
    actor: Actor,
    admin: FromDishka[RegistrationAdminService],
) -> BlockedIpResponse:
    record = await admin.block_ip(
        payload.ip_address, payload.duration_minutes, payload.reason, actor
    )
    return BlockedIpResponse.model_validate(record)


@router.delete("/block-ip", response_model=RemovedResponse)
async def unblock_ip(
    admin: FromDishka[RegistrationAdminService],
    ip_address: str = Query(..., max_length=64, alias="ipAddress"),
) -> RemovedResponse:
    return RemovedResponse(removed=await admin.unblock_ip(ip_address))


@router.get("/blocked-ips", response_model=list[BlockedIpResponse])
async def get_blocked_ips(
    admin: FromDishka[RegistrationAdminService],
) -> list[BlockedIpResponse]:
    return [BlockedIpResponse.model_validate(b) for b in await admin.list_blocked_ips()]


@router.post("/blacklist-domain", response_model=DomainEntryResponse, status_code=201)
async def blacklist_domain(
    payload: DomainRequest,
    actor: Actor,
    admin: FromDishka[RegistrationAdminService],
) -> DomainEntryResponse:
    entry = await admin.blacklist_domain(payload.domain, payload.reason, actor)
    return DomainEntryResponse.model_validate(entry)


@router.delete("/blacklist-domain", response_model=RemovedResponse)
async def remove_blacklisted_domain(
    admin: FromDishka[RegistrationAdminService],
    domain: str = Query(..., max_length=255),
) -> RemovedResponse:
    return RemovedResponse(removed=await admin.remove_domain(domain, BLACKLIST))


@router.post("/whitelist-domain", response_model=DomainEntryResponse, status_code=201)
async def whitelist_domain(
    payload: DomainRequest,
    actor: Actor,
    admin: FromDishka[RegistrationAdminService],
) -> DomainEntryResponse:
    entry = await admin.whitelist_domain(payload.domain, payload.reason, actor)
    return DomainEntryResponse.model_validate(entry)


@router.delete("/whitelist-domain", response_model=RemovedResponse)
async def remove_whitelisted_domain(
    admin: FromDishka[RegistrationAdminService],
    domain: str = Query(..., max_length=255),
) -> RemovedResponse:
    return RemovedResponse(removed=await admin.remove_domain(domain, WHITELIST))


@router.get("/domains", response_model=list[DomainEntryResponse])
async def get_domains(
    admin: FromDishka[RegistrationAdminService],
    list_type: str | None = Query(None, alias="listType", pattern=_LIST_TYPE_PATTERN),
) -> list[DomainEntryResponse]:
    entries = await admin.list_domains(list_type)
    return [DomainEntryResponse.model_validate(e) for e in entries]


@router.get("/attempts", response_model=AttemptListResponse)
async def get_attempts(
    admin: FromDishka[RegistrationAdminService],
    params: AttemptPageQuery = Query(),
) -> AttemptListResponse:
    items, total = await admin.list_attempts(
        limit=params.page_size,
        offset=params.offset,
        filters=AttemptFilters(
            success=params.success,
            ip_address=params.ip_address,
            email_domain=params.email_domain,
        ),
    )
    return AttemptListResponse.build(
        [AttemptResponse.model_validate(item) for item in items], total, params
    )


@router.get("/config", response_model=ProtectionConfig)
async def get_protection_config(
    admin: FromDishka[RegistrationAdminService],
) -> ProtectionConfig:
    return admin.get_config()


@router.put("/config", response_model=ProtectionConfig)
async def update_protection_config(
    payload: ConfigUpdateRequest,
    actor: Actor,
    admin: FromDishka[RegistrationAdminService],
) -> ProtectionConfig:
    return await admin.update_config(payload.changes(), actor, payload.reason)
