from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status

from app.dependencies.auth import company_of, get_current_actor, require_permission
from app.dependencies.services import get_auth_service, get_quote_service
from app.schemas.auth import Actor
from app.schemas.common import BulkActionResult
from app.schemas.quote import (
    Quote,
    QuoteBulkAction,
    QuoteBulkActionType,
    QuoteConversionRequest,
    QuoteConversionResponse,
    QuoteCreateRequest,
    QuoteListParams,
    QuoteListResponse,
    QuoteStats,
    QuoteUpdateRequest,
)
from app.services import AuthService, QuoteService

router = APIRouter(tags=["quotes"])


@router.post("", response_model=Quote, status_code=status.HTTP_201_CREATED)
async def create_quote(
    req: QuoteCreateRequest,
    actor: Actor = Depends(require_permission("create", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.create(company_of(actor), req, user_id=actor.id)


@router.get("", response_model=QuoteListResponse)
async def list_quotes(
    params: Annotated[QuoteListParams, Query()],
    actor: Actor = Depends(require_permission("list", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.list(company_of(actor), params)


@router.get("/stats", response_model=QuoteStats)
async def quote_stats(
    actor: Actor = Depends(require_permission("read", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.stats(company_of(actor))


@router.post("/bulk", response_model=BulkActionResult)
async def bulk_quote_action(
    req: QuoteBulkAction,
    actor: Actor = Depends(get_current_actor),
    auth: AuthService = Depends(get_auth_service),
    service: QuoteService = Depends(get_quote_service),
):
    action = "delete" if req.action == QuoteBulkActionType.DELETE else "update"
    auth.require_permission(actor, action, "quote")
    if req.action == QuoteBulkActionType.CONVERT_TO_INVOICE:
        auth.require_permission(actor, "create", "invoice")
    return await service.bulk_action(company_of(actor), req, user_id=actor.id)


@router.get("/{quote_id}", response_model=Quote)
async def get_quote(
    quote_id: str,
    actor: Actor = Depends(require_permission("read", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.get(quote_id, company_of(actor))


@router.patch("/{quote_id}", response_model=Quote)
async def update_quote(
    quote_id: str,
    req: QuoteUpdateRequest,
    actor: Actor = Depends(require_permission("update", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.update(quote_id, company_of(actor), req)


@router.delete("/{quote_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_quote(
    quote_id: str,
    actor: Actor = Depends(require_permission("delete", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    await service.delete(quote_id, company_of(actor))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{quote_id}/send", response_model=Quote)
async def send_quote(
    quote_id: str,
    actor: Actor = Depends(require_permission("update", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.mark_as_sent(quote_id, company_of(actor))


@router.post("/{quote_id}/accept", response_model=Quote)
async def accept_quote(
    quote_id: str,
    actor: Actor = Depends(require_permission("update", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.mark_as_accepted(quote_id, company_of(actor))


@router.post("/{quote_id}/reject", response_model=Quote)
async def reject_quote(
    quote_id: str,
    actor: Actor = Depends(require_permission("update", "quote")),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.mark_as_rejected(quote_id, company_of(actor))


@router.post("/{quote_id}/convert", response_model=QuoteConversionResponse)
async def convert_quote(
    quote_id: str,
    conversion: Optional[QuoteConversionRequest] = Body(default=None),
    actor: Actor = Depends(require_permission("update", "quote")),
    auth: AuthService = Depends(get_auth_service),
    service: QuoteService = Depends(get_quote_service),
):
    auth.require_permission(actor, "create", "invoice")
    return await service.convert_to_invoice(
        quote_id, company_of(actor), conversion, user_id=actor.id
    )
