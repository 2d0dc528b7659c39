from fastapi import APIRouter, Depends, status

from app.dependencies.auth import company_of, get_current_actor, require_permission
from app.dependencies.services import get_company_service
from app.schemas.auth import Actor, UserRole
from app.schemas.company import (
    Company,
    CompanyCreateRequest,
    CompanySettings,
    CompanySettingsUpdate,
    CompanyUpdateRequest,
)
from app.services import CompanyService
from app.services.exceptions import ForbiddenError

router = APIRouter(tags=["companies"])


@router.post("", response_model=Company, status_code=status.HTTP_201_CREATED)
async def create_company(
    req: CompanyCreateRequest,
    actor: Actor = Depends(get_current_actor),
    service: CompanyService = Depends(get_company_service),
):
    if actor.role != UserRole.ADMIN or not actor.is_active:
        raise ForbiddenError("Only administrators can create companies")
    return await service.create(req)


@router.get("/me", response_model=Company)
async def get_my_company(
    actor: Actor = Depends(get_current_actor),
    service: CompanyService = Depends(get_company_service),
):
    return await service.get(company_of(actor))


@router.patch("/me", response_model=Company)
async def update_my_company(
    req: CompanyUpdateRequest,
    actor: Actor = Depends(require_permission("update", "company")),
    service: CompanyService = Depends(get_company_service),
):
    return await service.update(company_of(actor), req)


@router.get("/me/settings", response_model=CompanySettings)
async def get_my_company_settings(
    actor: Actor = Depends(get_current_actor),
    service: CompanyService = Depends(get_company_service),
):
    return await service.get_settings(company_of(actor))


@router.patch("/me/settings", response_model=CompanySettings)
async def update_my_company_settings(
    req: CompanySettingsUpdate,
    actor: Actor = Depends(require_permission("update", "company")),
    service: CompanyService = Depends(get_company_service),
):
    return await service.update_settings(company_of(actor), req)
