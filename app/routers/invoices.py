from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status

from app.dependencies.auth import company_of, get_current_actor, require_permission
from app.dependencies.services import get_auth_service, get_invoice_service
from app.schemas.auth import Actor
from app.schemas.billing import (
    Invoice,
    InvoiceBulkAction,
    InvoiceBulkActionType,
    InvoiceCreateRequest,
    InvoiceListParams,
    InvoiceListResponse,
    InvoiceStats,
    InvoiceUpdateRequest,
    PaymentData,
)
from app.schemas.common import BulkActionResult
from app.services import AuthService, InvoiceService

router = APIRouter(tags=["invoices"])


@router.post("", response_model=Invoice, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    req: InvoiceCreateRequest,
    actor: Actor = Depends(require_permission("create", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.create(company_of(actor), req, user_id=actor.id)


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    params: Annotated[InvoiceListParams, Query()],
    actor: Actor = Depends(require_permission("list", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.list(company_of(actor), params)


@router.get("/stats", response_model=InvoiceStats)
async def invoice_stats(
    actor: Actor = Depends(require_permission("read", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.stats(company_of(actor))


@router.post("/bulk", response_model=BulkActionResult)
async def bulk_invoice_action(
    req: InvoiceBulkAction,
    actor: Actor = Depends(get_current_actor),
    auth: AuthService = Depends(get_auth_service),
    service: InvoiceService = Depends(get_invoice_service),
):
    action = "delete" if req.action == InvoiceBulkActionType.DELETE else "update"
    auth.require_permission(actor, action, "invoice")
    return await service.bulk_action(company_of(actor), req)


@router.get("/{invoice_id}", response_model=Invoice)
async def get_invoice(
    invoice_id: str,
    actor: Actor = Depends(require_permission("read", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.get(invoice_id, company_of(actor))


@router.patch("/{invoice_id}", response_model=Invoice)
async def update_invoice(
    invoice_id: str,
    req: InvoiceUpdateRequest,
    actor: Actor = Depends(require_permission("update", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.update(invoice_id, company_of(actor), req)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: str,
    actor: Actor = Depends(require_permission("delete", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    await service.delete(invoice_id, company_of(actor))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{invoice_id}/send", response_model=Invoice)
async def send_invoice(
    invoice_id: str,
    actor: Actor = Depends(require_permission("update", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.mark_as_sent(invoice_id, company_of(actor))


@router.post("/{invoice_id}/mark-paid", response_model=Invoice)
async def mark_invoice_paid(
    invoice_id: str,
    payment: Optional[PaymentData] = Body(default=None),
    actor: Actor = Depends(require_permission("update", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.mark_as_paid(invoice_id, company_of(actor), payment)


@router.post("/{invoice_id}/cancel", response_model=Invoice)
async def cancel_invoice(
    invoice_id: str,
    actor: Actor = Depends(require_permission("update", "invoice")),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.cancel(invoice_id, company_of(actor))
