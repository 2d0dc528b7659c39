from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.schemas.billing import CustomerSummary, InvoiceCreateRequest, LineItem
from app.schemas.common import BulkActionFailure, BulkActionResult
from app.schemas.quote import (
    Quote,
    QuoteBulkAction,
    QuoteBulkActionType,
    QuoteConversionRequest,
    QuoteConversionResponse,
    QuoteCreateRequest,
    QuoteListParams,
    QuoteListResponse,
    QuoteListSummary,
    QuoteStats,
    QuoteStatus,
    QuoteUpdateRequest,
)
from app.services.cache import CacheService
from app.services.documents import (
    contains,
    count_by,
    days_between,
    enum_value,
    in_range,
    monthly_stats,
    paginate,
    price_items,
    resolve_item_prices,
    sort_records,
    utc_now,
)
from app.services.exceptions import (
    NotFoundError,
    QuoteError,
    QuoteStatusError,
    ServiceError,
    ValidationError,
)
from app.services.invoice import InvoiceService
from app.services.sequence import SequenceGenerator
from app.services.store import BillingStore, Record

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = frozenset(
    {
        "customer_id",
        "quote_date",
        "validity_date",
        "status",
        "currency",
        "language",
        "discount_amount",
        "shipping_cost",
    }
)
PENDING_STATUSES = (QuoteStatus.DRAFT, QuoteStatus.PENDING, QuoteStatus.SENT, QuoteStatus.VIEWED)
STATUS_TIMESTAMPS = {
    QuoteStatus.VIEWED: "viewed_at",
    QuoteStatus.ACCEPTED: "accepted_at",
    QuoteStatus.REJECTED: "rejected_at",
    QuoteStatus.EXPIRED: "expired_at",
}


def quote_cache_key(quote_id: str) -> str:
    return f"quote:{quote_id}"


def _is_converted(record: Record) -> bool:
    return bool(record.get("converted_to_invoice")) or record["status"] == QuoteStatus.CONVERTED


def _was_accepted(record: Record) -> bool:
    return record["status"] == QuoteStatus.ACCEPTED or _is_converted(record)


def _is_expired(record: Record, today: date) -> bool:
    if record["status"] == QuoteStatus.EXPIRED:
        return True
    return record["validity_date"] < today and not _was_accepted(record)


class QuoteService:
    """Quote lifecycle, including conversion of accepted quotes into invoices."""

    def __init__(
        self,
        store: BillingStore,
        cache: CacheService,
        invoices: InvoiceService,
        *,
        sequence: SequenceGenerator | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._invoices = invoices
        self._sequence = sequence or SequenceGenerator(store)

    async def create(
        self,
        company_id: str,
        request: QuoteCreateRequest,
        *,
        user_id: str | None = None,
    ) -> Quote:
        logger.info("Creating quote for company %s customer %s", company_id, request.customer_id)
        try:
            async with self._store.transaction():
                settings = await self._store.companies.get_settings(company_id)
                if settings is None:
                    raise NotFoundError("Company", company_id)
                await self._require_customer(company_id, request.customer_id)
                items = await resolve_item_prices(self._store, company_id, request.items)
                item_records, amounts = price_items(items)
                quote_number = await self._sequence.next_number(company_id, "quote")

                header = {
                    "company_id": company_id,
                    "customer_id": request.customer_id,
                    "user_id": user_id,
                    "quote_number": quote_number,
                    "reference": request.reference,
                    "title": request.title,
                    "quote_date": request.quote_date or date.today(),
                    "validity_date": request.validity_date,
                    **amounts,
                    "discount_amount": request.discount_amount or 0.0,
                    "discount_percentage": request.discount_percentage,
                    "shipping_cost": request.shipping_cost or 0.0,
                    "status": QuoteStatus.DRAFT.value,
                    "currency": request.currency or settings["default_currency"],
                    "exchange_rate": request.exchange_rate,
                    "conditions": request.conditions,
                    "terms": request.terms,
                    "notes": request.notes,
                    "internal_notes": request.internal_notes,
                    "language": request.language or settings["default_language"],
                    "template_id": request.template_id,
                    "meta_data": request.meta_data,
                    "sent_at": None,
                    "viewed_at": None,
                    "accepted_at": None,
                    "rejected_at": None,
                    "expired_at": None,
                    "converted_to_invoice": False,
                    "invoice_id": None,
                }
                created = await self._store.quotes.create(header, item_records)
                quote = await self._load(created["quote_id"])
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while creating quote")
            raise QuoteError("Failed to create quote", cause=exc) from exc

        await self.invalidate_cache(quote.quote_id, company_id)
        logger.info("Created quote %s (%s)", quote.quote_id, quote.quote_number)
        return quote

    async def get(self, quote_id: str, company_id: str) -> Quote:
        key = quote_cache_key(quote_id)
        cached = await self._cache.get_model(key, Quote)
        if cached is not None and cached.company_id == company_id:
            return cached

        quote = await self._load(quote_id, company_id)
        await self._cache.set_model(key, quote, self._cache.entity_ttl)
        return quote

    async def list(self, company_id: str, params: QuoteListParams) -> QuoteListResponse:
        logger.info("Listing quotes for company %s", company_id)
        key = f"quotes:list:{company_id}:{params.model_dump_json()}"
        cached = await self._cache.get_model(key, QuoteListResponse)
        if cached is not None:
            return cached

        try:
            today = date.today()
            records = await self._store.quotes.find(
                lambda row: row["company_id"] == company_id and self._matches(row, params, today)
            )
            summary = QuoteListSummary(
                total_amount=sum(row["amount_including_tax"] for row in records),
                accepted_amount=sum(
                    row["amount_including_tax"] for row in records if _was_accepted(row)
                ),
                pending_amount=sum(
                    row["amount_including_tax"] for row in records if row["status"] in PENDING_STATUSES
                ),
                expired_amount=sum(
                    row["amount_including_tax"] for row in records if _is_expired(row, today)
                ),
                count_by_status=count_by(records, "status"),
            )
            ordered = sort_records(records, params.sort_by.value, params.sort_order)
            page, meta = paginate(ordered, params.page, params.limit)
            items = [await self._load(row["quote_id"]) for row in page]
            response = QuoteListResponse(items=items, summary=summary, **meta)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while listing quotes")
            raise QuoteError("Failed to list quotes", cause=exc) from exc

        await self._cache.set_model(key, response, self._cache.list_ttl)
        return response

    async def update(self, quote_id: str, company_id: str, patch: QuoteUpdateRequest) -> Quote:
        logger.info("Updating quote %s", quote_id)
        try:
            async with self._store.transaction():
                current = await self._get_record(quote_id, company_id)
                if _is_converted(current):
                    raise QuoteStatusError(current["status"], "update")
                if current["status"] == QuoteStatus.ACCEPTED and patch.status is None:
                    raise QuoteStatusError(current["status"], "update")
                if patch.status == QuoteStatus.CONVERTED:
                    # Only convert_to_invoice may move a quote to converted.
                    raise QuoteStatusError(current["status"], "mark as converted")
                if patch.status == QuoteStatus.ACCEPTED:
                    validity_date = patch.validity_date or current["validity_date"]
                    if validity_date < date.today():
                        raise QuoteStatusError(QuoteStatus.EXPIRED.value, "accept")

                changes: Dict[str, Any] = {
                    field: enum_value(value)
                    for field, value in patch.model_dump(exclude_unset=True, exclude={"items"}).items()
                    if value is not None or field not in REQUIRED_FIELDS
                }
                if "customer_id" in changes:
                    await self._require_customer(company_id, changes["customer_id"])
                if patch.status in STATUS_TIMESTAMPS:
                    changes[STATUS_TIMESTAMPS[patch.status]] = utc_now()

                if patch.items is not None:
                    items = await resolve_item_prices(self._store, company_id, patch.items)
                    item_records, amounts = price_items(items)
                    changes.update(amounts)
                    await self._store.quotes.replace_items(quote_id, item_records)

                await self._store.quotes.update(quote_id, changes)
                quote = await self._load(quote_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while updating quote %s", quote_id)
            raise QuoteError("Failed to update quote", cause=exc) from exc

        await self.invalidate_cache(quote_id, company_id)
        return quote

    async def delete(self, quote_id: str, company_id: str) -> None:
        logger.info("Deleting quote %s", quote_id)
        try:
            async with self._store.transaction():
                current = await self._get_record(quote_id, company_id)
                if _was_accepted(current):
                    raise QuoteStatusError(current["status"], "delete")
                await self._store.quotes.delete(quote_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while deleting quote %s", quote_id)
            raise QuoteError("Failed to delete quote", cause=exc) from exc

        await self.invalidate_cache(quote_id, company_id)

    async def mark_as_sent(self, quote_id: str, company_id: str) -> Quote:
        try:
            async with self._store.transaction():
                current = await self._get_record(quote_id, company_id)
                if current["status"] not in (QuoteStatus.DRAFT, QuoteStatus.PENDING):
                    raise QuoteStatusError(current["status"], "send")
                await self._store.quotes.update(
                    quote_id, {"status": QuoteStatus.SENT.value, "sent_at": utc_now()}
                )
                quote = await self._load(quote_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while sending quote %s", quote_id)
            raise QuoteError("Failed to mark quote as sent", cause=exc) from exc

        await self.invalidate_cache(quote_id, company_id)
        logger.info("Quote %s marked as sent", quote_id)
        return quote

    async def mark_as_accepted(self, quote_id: str, company_id: str) -> Quote:
        try:
            async with self._store.transaction():
                current = await self._get_record(quote_id, company_id)
                if _was_accepted(current):
                    raise QuoteStatusError(current["status"], "accept")
                # The validity date is a hard deadline whatever the status says.
                if current["validity_date"] < date.today():
                    raise QuoteStatusError(QuoteStatus.EXPIRED.value, "accept")
                await self._store.quotes.update(
                    quote_id, {"status": QuoteStatus.ACCEPTED.value, "accepted_at": utc_now()}
                )
                quote = await self._load(quote_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while accepting quote %s", quote_id)
            raise QuoteError("Failed to accept quote", cause=exc) from exc

        await self.invalidate_cache(quote_id, company_id)
        logger.info("Quote %s accepted", quote_id)
        return quote

    async def mark_as_rejected(self, quote_id: str, company_id: str) -> Quote:
        return await self.update(quote_id, company_id, QuoteUpdateRequest(status=QuoteStatus.REJECTED))

    async def mark_as_expired(self, quote_id: str, company_id: str) -> Quote:
        return await self.update(quote_id, company_id, QuoteUpdateRequest(status=QuoteStatus.EXPIRED))

    async def convert_to_invoice(
        self,
        quote_id: str,
        company_id: str,
        conversion: QuoteConversionRequest | None = None,
        *,
        user_id: str | None = None,
    ) -> QuoteConversionResponse:
        conversion = conversion or QuoteConversionRequest()
        logger.info("Converting quote %s to invoice", quote_id)
        try:
            async with self._store.transaction():
                current = await self._get_record(quote_id, company_id)
                if _is_converted(current):
                    raise QuoteStatusError(QuoteStatus.CONVERTED.value, "convert")
                if current["status"] != QuoteStatus.ACCEPTED:
                    raise QuoteStatusError(current["status"], "convert")

                settings = await self._store.companies.get_settings(company_id)
                if settings is None:
                    raise NotFoundError("Company", company_id)
                items = [
                    LineItem(
                        product_id=item["product_id"],
                        name=item["name"],
                        description=item["description"],
                        quantity=item["quantity"],
                        unit=item["unit"],
                        unit_price_excluding_tax=item["unit_price_excluding_tax"],
                        discount_percentage=item["discount_percentage"],
                        discount_amount=item["discount_amount"],
                        vat_rate=item["vat_rate"],
                        sort_order=item["sort_order"],
                    )
                    for item in await self._store.quotes.get_items(quote_id)
                ]
                if conversion.apply_current_prices:
                    items = await resolve_item_prices(self._store, company_id, items, refresh=True)

                payment_terms = (
                    conversion.payment_terms
                    if conversion.payment_terms is not None
                    else settings["default_payment_terms"]
                )
                request = InvoiceCreateRequest(
                    customer_id=current["customer_id"],
                    invoice_date=conversion.invoice_date or date.today(),
                    due_date=conversion.due_date or date.today() + timedelta(days=payment_terms),
                    discount_amount=current["discount_amount"],
                    discount_percentage=current["discount_percentage"],
                    shipping_cost=current["shipping_cost"],
                    currency=current["currency"],
                    exchange_rate=current["exchange_rate"],
                    conditions=current["conditions"],
                    notes=conversion.notes or current["notes"],
                    language=current["language"],
                    template_id=current["template_id"],
                    items=items,
                )
                invoice = await self._invoices.create(company_id, request, user_id=user_id)
                await self._store.quotes.update(
                    quote_id,
                    {
                        "status": QuoteStatus.CONVERTED.value,
                        "converted_to_invoice": True,
                        "invoice_id": invoice.invoice_id,
                    },
                )
                quote = await self._load(quote_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while converting quote %s", quote_id)
            raise QuoteError("Failed to convert quote to invoice", cause=exc) from exc

        await self._invoices.invalidate_cache(invoice.invoice_id, company_id)
        await self.invalidate_cache(quote_id, company_id)
        logger.info("Quote %s converted to invoice %s", quote_id, invoice.invoice_number)
        return QuoteConversionResponse(quote=quote, invoice=invoice)

    async def bulk_action(
        self,
        company_id: str,
        action: QuoteBulkAction,
        *,
        user_id: str | None = None,
    ) -> BulkActionResult:
        if action.action == QuoteBulkActionType.CONVERT_TO_INVOICE and action.conversion_settings is None:
            raise ValidationError(
                "Conversion settings are required to convert quotes",
                {"conversion_settings": "required for convert_to_invoice"},
            )

        logger.info("Bulk %s on %d quotes", action.action.value, len(action.quote_ids))
        result = BulkActionResult()
        for quote_id in action.quote_ids:
            try:
                if action.action == QuoteBulkActionType.SEND:
                    await self.mark_as_sent(quote_id, company_id)
                elif action.action == QuoteBulkActionType.MARK_ACCEPTED:
                    await self.mark_as_accepted(quote_id, company_id)
                elif action.action == QuoteBulkActionType.MARK_REJECTED:
                    await self.mark_as_rejected(quote_id, company_id)
                elif action.action == QuoteBulkActionType.MARK_EXPIRED:
                    await self.mark_as_expired(quote_id, company_id)
                elif action.action == QuoteBulkActionType.CONVERT_TO_INVOICE:
                    await self.convert_to_invoice(
                        quote_id, company_id, action.conversion_settings, user_id=user_id
                    )
                elif action.action == QuoteBulkActionType.DELETE:
                    await self.delete(quote_id, company_id)
                result.success += 1
            except ServiceError as exc:
                logger.warning("Bulk %s failed for quote %s: %s", action.action.value, quote_id, exc)
                result.failed += 1
                result.errors.append(BulkActionFailure(id=quote_id, error=exc.message))
        return result

    async def stats(self, company_id: str) -> QuoteStats:
        key = f"stats:{company_id}:quote"
        cached = await self._cache.get_model(key, QuoteStats)
        if cached is not None:
            return cached

        try:
            today = date.today()
            quotes = self._store.quotes

            def owned(row: Record) -> bool:
                return row["company_id"] == company_id

            total_quotes = await quotes.count(owned)
            total_amount = await quotes.sum("amount_including_tax", owned)
            accepted_amount = await quotes.sum(
                "amount_including_tax", lambda row: owned(row) and _was_accepted(row)
            )
            pending_amount = await quotes.sum(
                "amount_including_tax", lambda row: owned(row) and row["status"] in PENDING_STATUSES
            )
            expired_amount = await quotes.sum(
                "amount_including_tax", lambda row: owned(row) and _is_expired(row, today)
            )
            issued = await quotes.count(lambda row: owned(row) and row["status"] != QuoteStatus.DRAFT)
            accepted = await quotes.count(lambda row: owned(row) and _was_accepted(row))
            converted = await quotes.count(lambda row: owned(row) and _is_converted(row))
            records = await quotes.find(owned)
            stats = QuoteStats(
                total_quotes=total_quotes,
                total_amount=total_amount,
                accepted_amount=accepted_amount,
                pending_amount=pending_amount,
                expired_amount=expired_amount,
                average_amount=total_amount / total_quotes if total_quotes else 0.0,
                acceptance_rate=accepted / issued * 100 if issued else 0.0,
                conversion_rate=converted / accepted * 100 if accepted else 0.0,
                average_response_time=self._average_response_time(records),
                status_distribution=await quotes.group_count("status", owned),
                monthly_stats=monthly_stats(records, "quote_date", accepted=_was_accepted),
            )
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while computing quote stats")
            raise QuoteError("Failed to compute quote statistics", cause=exc) from exc

        await self._cache.set_model(key, stats, self._cache.stats_ttl)
        return stats

    async def invalidate_cache(self, quote_id: str, company_id: str) -> None:
        await self._cache.delete(quote_cache_key(quote_id))
        await self._cache.delete_pattern(f"stats:{company_id}:")
        await self._cache.delete_pattern(f"quotes:list:{company_id}:")

    @staticmethod
    def _average_response_time(records: List[Record]) -> int:
        durations = []
        for row in records:
            responded_at = row.get("accepted_at") or row.get("rejected_at")
            if row.get("sent_at") is not None and responded_at is not None:
                durations.append(days_between(row["sent_at"], responded_at))
        if not durations:
            return 0
        return round(sum(durations) / len(durations))

    @staticmethod
    def _matches(row: Record, params: QuoteListParams, today: date) -> bool:
        if params.search and not contains(
            params.search,
            row["quote_number"],
            row.get("reference"),
            row.get("title"),
            row.get("notes"),
        ):
            return False
        if params.customer_id and row["customer_id"] != params.customer_id:
            return False
        if params.status and row["status"] not in params.status:
            return False
        if params.currency and row["currency"] != params.currency:
            return False
        if not in_range(row["quote_date"], params.date_from, params.date_to):
            return False
        if not in_range(row["validity_date"], params.validity_from, params.validity_to):
            return False
        if not in_range(row["amount_including_tax"], params.amount_min, params.amount_max):
            return False
        if params.expired_only and not (
            row["validity_date"] < today and row["status"] != QuoteStatus.ACCEPTED
        ):
            return False
        if params.convertible_only and not (
            row["status"] == QuoteStatus.ACCEPTED and not row["converted_to_invoice"]
        ):
            return False
        return True

    async def _require_customer(self, company_id: str, customer_id: str) -> None:
        customer = await self._store.customers.get(customer_id)
        if customer is None or customer["company_id"] != company_id:
            raise NotFoundError("Customer", customer_id)

    async def _get_record(self, quote_id: str, company_id: Optional[str] = None) -> Record:
        record = await self._store.quotes.get(quote_id)
        if record is None or (company_id is not None and record["company_id"] != company_id):
            raise NotFoundError("Quote", quote_id)
        return record

    async def _load(self, quote_id: str, company_id: Optional[str] = None) -> Quote:
        record = await self._get_record(quote_id, company_id)
        items = await self._store.quotes.get_items(quote_id)
        customer = await self._store.customers.get(record["customer_id"])
        return Quote(
            **record,
            items=items,
            customer=CustomerSummary.model_validate(customer) if customer else None,
        )
