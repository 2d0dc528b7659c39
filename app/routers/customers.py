from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from app.dependencies.auth import company_of, require_permission
from app.dependencies.services import get_customer_service
from app.schemas.auth import Actor
from app.schemas.company import (
    Customer,
    CustomerCreateRequest,
    CustomerListResponse,
    CustomerUpdateRequest,
)
from app.services import CustomerService

router = APIRouter(tags=["customers"])


@router.post("", response_model=Customer, status_code=status.HTTP_201_CREATED)
async def create_customer(
    req: CustomerCreateRequest,
    actor: Actor = Depends(require_permission("create", "customer")),
    service: CustomerService = Depends(get_customer_service),
):
    return await service.create(company_of(actor), req)


@router.get("", response_model=CustomerListResponse)
async def list_customers(
    search: Optional[str] = None,
    actor: Actor = Depends(require_permission("list", "customer")),
    service: CustomerService = Depends(get_customer_service),
):
    return await service.list(company_of(actor), search)


@router.get("/{customer_id}", response_model=Customer)
async def get_customer(
    customer_id: str,
    actor: Actor = Depends(require_permission("read", "customer")),
    service: CustomerService = Depends(get_customer_service),
):
    return await service.get(customer_id, company_of(actor))


@router.patch("/{customer_id}", response_model=Customer)
async def update_customer(
    customer_id: str,
    req: CustomerUpdateRequest,
    actor: Actor = Depends(require_permission("update", "customer")),
    service: CustomerService = Depends(get_customer_service),
):
    return await service.update(customer_id, company_of(actor), req)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: str,
    actor: Actor = Depends(require_permission("delete", "customer")),
    service: CustomerService = Depends(get_customer_service),
):
    await service.delete(customer_id, company_of(actor))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
