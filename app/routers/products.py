from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from app.dependencies.auth import company_of, require_permission
from app.dependencies.services import get_product_service
from app.schemas.auth import Actor
from app.schemas.company import (
    Product,
    ProductCreateRequest,
    ProductListResponse,
    ProductUpdateRequest,
)
from app.services import ProductService

router = APIRouter(tags=["products"])


@router.post("", response_model=Product, status_code=status.HTTP_201_CREATED)
async def create_product(
    req: ProductCreateRequest,
    actor: Actor = Depends(require_permission("create", "product")),
    service: ProductService = Depends(get_product_service),
):
    return await service.create(company_of(actor), req)


@router.get("", response_model=ProductListResponse)
async def list_products(
    search: Optional[str] = None,
    actor: Actor = Depends(require_permission("list", "product")),
    service: ProductService = Depends(get_product_service),
):
    return await service.list(company_of(actor), search)


@router.get("/{product_id}", response_model=Product)
async def get_product(
    product_id: str,
    actor: Actor = Depends(require_permission("read", "product")),
    service: ProductService = Depends(get_product_service),
):
    return await service.get(product_id, company_of(actor))


@router.patch("/{product_id}", response_model=Product)
async def update_product(
    product_id: str,
    req: ProductUpdateRequest,
    actor: Actor = Depends(require_permission("update", "product")),
    service: ProductService = Depends(get_product_service),
):
    return await service.update(product_id, company_of(actor), req)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: str,
    actor: Actor = Depends(require_permission("delete", "product")),
    service: ProductService = Depends(get_product_service),
):
    await service.delete(product_id, company_of(actor))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
