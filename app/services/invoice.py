from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.schemas.billing import (
    CustomerSummary,
    Invoice,
    InvoiceBulkAction,
    InvoiceBulkActionType,
    InvoiceCreateRequest,
    InvoiceListParams,
    InvoiceListResponse,
    InvoiceListSummary,
    InvoiceStats,
    InvoiceStatus,
    InvoiceUpdateRequest,
    PaymentData,
    PaymentStatus,
)
from app.schemas.common import BulkActionFailure, BulkActionResult, PaymentMethod
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
    InvoiceError,
    InvoiceStatusError,
    NotFoundError,
    ServiceError,
)
from app.services.sequence import SequenceGenerator
from app.services.store import BillingStore, Record

logger = logging.getLogger(__name__)

# Fields a paid invoice may no longer change.
MONETARY_FIELDS = frozenset(
    {"discount_amount", "discount_percentage", "shipping_cost", "currency", "exchange_rate"}
)
# Header columns that always hold a value; an explicit null in a patch is ignored.
REQUIRED_FIELDS = frozenset(
    {
        "customer_id",
        "invoice_date",
        "due_date",
        "status",
        "currency",
        "language",
        "discount_amount",
        "shipping_cost",
    }
)


def invoice_cache_key(invoice_id: str) -> str:
    return f"invoice:{invoice_id}"


def _is_paid(record: Record) -> bool:
    # Locks follow the document status; payment_status alone does not freeze an invoice.
    return record["status"] == InvoiceStatus.PAID


def _is_overdue(record: Record, today: date) -> bool:
    return record["status"] == InvoiceStatus.OVERDUE and record["due_date"] < today


class InvoiceService:
    """Invoice lifecycle: numbering, totals, status transitions and reporting."""

    def __init__(
        self,
        store: BillingStore,
        cache: CacheService,
        *,
        sequence: SequenceGenerator | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._sequence = sequence or SequenceGenerator(store)

    async def create(
        self,
        company_id: str,
        request: InvoiceCreateRequest,
        *,
        user_id: str | None = None,
    ) -> Invoice:
        logger.info("Creating invoice for company %s customer %s", company_id, request.customer_id)
        try:
            async with self._store.transaction():
                settings = await self._store.companies.get_settings(company_id)
                if settings is None:
                    raise NotFoundError("Company", company_id)
                await self._require_customer(company_id, request.customer_id)
                items = await resolve_item_prices(self._store, company_id, request.items)
                item_records, amounts = price_items(items)
                invoice_number = await self._sequence.next_number(company_id, "invoice")

                invoice_date = request.invoice_date or date.today()
                due_date = request.due_date or invoice_date + timedelta(
                    days=settings["default_payment_terms"]
                )
                header = {
                    "company_id": company_id,
                    "customer_id": request.customer_id,
                    "user_id": user_id,
                    "invoice_number": invoice_number,
                    "reference": request.reference,
                    "invoice_date": invoice_date,
                    "due_date": due_date,
                    **amounts,
                    "discount_amount": request.discount_amount or 0.0,
                    "discount_percentage": request.discount_percentage,
                    "shipping_cost": request.shipping_cost or 0.0,
                    "status": InvoiceStatus.DRAFT.value,
                    "payment_status": PaymentStatus.UNPAID.value,
                    "payment_method": None,
                    "currency": request.currency or settings["default_currency"],
                    "exchange_rate": request.exchange_rate,
                    "conditions": request.conditions,
                    "late_payment_penalty": request.late_payment_penalty,
                    "notes": request.notes,
                    "internal_notes": request.internal_notes,
                    "language": request.language or settings["default_language"],
                    "template_id": request.template_id,
                    "meta_data": request.meta_data,
                    "sent_at": None,
                    "paid_at": None,
                    "cancelled_at": None,
                }
                created = await self._store.invoices.create(header, item_records)
                invoice = await self._load(created["invoice_id"])
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while creating invoice")
            raise InvoiceError("Failed to create invoice", cause=exc) from exc

        await self.invalidate_cache(invoice.invoice_id, company_id)
        logger.info("Created invoice %s (%s)", invoice.invoice_id, invoice.invoice_number)
        return invoice

    async def get(self, invoice_id: str, company_id: str) -> Invoice:
        key = invoice_cache_key(invoice_id)
        cached = await self._cache.get_model(key, Invoice)
        if cached is not None and cached.company_id == company_id:
            return cached

        invoice = await self._load(invoice_id, company_id)
        await self._cache.set_model(key, invoice, self._cache.entity_ttl)
        return invoice

    async def list(self, company_id: str, params: InvoiceListParams) -> InvoiceListResponse:
        logger.info("Listing invoices for company %s", company_id)
        key = f"invoices:list:{company_id}:{params.model_dump_json()}"
        cached = await self._cache.get_model(key, InvoiceListResponse)
        if cached is not None:
            return cached

        try:
            today = date.today()
            records = await self._store.invoices.find(
                lambda row: row["company_id"] == company_id and self._matches(row, params, today)
            )
            summary = InvoiceListSummary(
                total_amount=sum(row["amount_including_tax"] for row in records),
                paid_amount=sum(
                    row["amount_including_tax"]
                    for row in records
                    if row["payment_status"] == PaymentStatus.PAID
                ),
                pending_amount=sum(
                    row["amount_including_tax"]
                    for row in records
                    if row["payment_status"] in (PaymentStatus.UNPAID, PaymentStatus.PARTIALLY_PAID)
                ),
                overdue_amount=sum(
                    row["amount_including_tax"] for row in records if _is_overdue(row, today)
                ),
                count_by_status=count_by(records, "status"),
            )
            ordered = sort_records(records, params.sort_by.value, params.sort_order)
            page, meta = paginate(ordered, params.page, params.limit)
            items = [await self._load(row["invoice_id"]) for row in page]
            response = InvoiceListResponse(items=items, summary=summary, **meta)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while listing invoices")
            raise InvoiceError("Failed to list invoices", cause=exc) from exc

        await self._cache.set_model(key, response, self._cache.list_ttl)
        return response

    async def update(
        self,
        invoice_id: str,
        company_id: str,
        patch: InvoiceUpdateRequest,
    ) -> Invoice:
        logger.info("Updating invoice %s", invoice_id)
        try:
            async with self._store.transaction():
                current = await self._get_record(invoice_id, company_id)
                if current["status"] == InvoiceStatus.CANCELLED:
                    raise InvoiceStatusError(current["status"], "update")
                touches_amounts = patch.items is not None or bool(
                    MONETARY_FIELDS & patch.model_fields_set
                )
                if _is_paid(current) and touches_amounts:
                    raise InvoiceStatusError(current["status"], "modify the amounts of")

                changes: Dict[str, Any] = {
                    field: enum_value(value)
                    for field, value in patch.model_dump(exclude_unset=True, exclude={"items"}).items()
                    if value is not None or field not in REQUIRED_FIELDS
                }
                if "customer_id" in changes:
                    await self._require_customer(company_id, changes["customer_id"])
                if changes.get("status") == InvoiceStatus.CANCELLED:
                    changes["cancelled_at"] = utc_now()

                if patch.items is not None:
                    items = await resolve_item_prices(self._store, company_id, patch.items)
                    item_records, amounts = price_items(items)
                    changes.update(amounts)
                    await self._store.invoices.replace_items(invoice_id, item_records)

                await self._store.invoices.update(invoice_id, changes)
                invoice = await self._load(invoice_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while updating invoice %s", invoice_id)
            raise InvoiceError("Failed to update invoice", cause=exc) from exc

        await self.invalidate_cache(invoice_id, company_id)
        return invoice

    async def delete(self, invoice_id: str, company_id: str) -> None:
        logger.info("Deleting invoice %s", invoice_id)
        try:
            async with self._store.transaction():
                current = await self._get_record(invoice_id, company_id)
                if _is_paid(current):
                    raise InvoiceStatusError(current["status"], "delete")
                if await self._store.payments.count_for_invoice(invoice_id) > 0:
                    await self._store.invoices.update(
                        invoice_id,
                        {"status": InvoiceStatus.CANCELLED.value, "cancelled_at": utc_now()},
                    )
                    logger.info("Invoice %s has payments; cancelled instead of deleted", invoice_id)
                else:
                    await self._store.invoices.delete(invoice_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while deleting invoice %s", invoice_id)
            raise InvoiceError("Failed to delete invoice", cause=exc) from exc

        await self.invalidate_cache(invoice_id, company_id)

    async def mark_as_sent(self, invoice_id: str, company_id: str) -> Invoice:
        try:
            async with self._store.transaction():
                current = await self._get_record(invoice_id, company_id)
                if current["status"] not in (InvoiceStatus.DRAFT, InvoiceStatus.PENDING):
                    raise InvoiceStatusError(current["status"], "send")
                await self._store.invoices.update(
                    invoice_id, {"status": InvoiceStatus.SENT.value, "sent_at": utc_now()}
                )
                invoice = await self._load(invoice_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while sending invoice %s", invoice_id)
            raise InvoiceError("Failed to mark invoice as sent", cause=exc) from exc

        await self.invalidate_cache(invoice_id, company_id)
        logger.info("Invoice %s marked as sent", invoice_id)
        return invoice

    async def mark_as_paid(
        self,
        invoice_id: str,
        company_id: str,
        payment: PaymentData | None = None,
    ) -> Invoice:
        try:
            async with self._store.transaction():
                current = await self._get_record(invoice_id, company_id)
                if current["payment_status"] == PaymentStatus.PAID:
                    raise InvoiceStatusError(current["payment_status"], "mark as paid")
                if current["status"] == InvoiceStatus.CANCELLED:
                    raise InvoiceStatusError(current["status"], "mark as paid")

                paid_at = (payment.payment_date if payment else None) or utc_now()
                method = (payment.payment_method if payment else None) or current["payment_method"]
                await self._store.invoices.update(
                    invoice_id,
                    {
                        "payment_status": PaymentStatus.PAID.value,
                        "paid_at": paid_at,
                        "payment_method": enum_value(method),
                    },
                )
                if payment is not None:
                    await self._store.payments.insert(
                        {
                            "invoice_id": invoice_id,
                            "payment_date": paid_at,
                            "amount": (
                                payment.amount
                                if payment.amount is not None
                                else current["amount_including_tax"]
                            ),
                            "currency": current["currency"],
                            "payment_method": enum_value(payment.payment_method or PaymentMethod.CASH),
                            "reference": payment.payment_reference,
                            "status": "completed",
                        }
                    )
                invoice = await self._load(invoice_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while marking invoice %s as paid", invoice_id)
            raise InvoiceError("Failed to mark invoice as paid", cause=exc) from exc

        await self.invalidate_cache(invoice_id, company_id)
        logger.info("Invoice %s marked as paid", invoice_id)
        return invoice

    async def cancel(self, invoice_id: str, company_id: str) -> Invoice:
        return await self.update(
            invoice_id, company_id, InvoiceUpdateRequest(status=InvoiceStatus.CANCELLED)
        )

    async def bulk_action(self, company_id: str, action: InvoiceBulkAction) -> BulkActionResult:
        logger.info("Bulk %s on %d invoices", action.action.value, len(action.invoice_ids))
        result = BulkActionResult()
        for invoice_id in action.invoice_ids:
            try:
                if action.action == InvoiceBulkActionType.SEND:
                    await self.mark_as_sent(invoice_id, company_id)
                elif action.action == InvoiceBulkActionType.MARK_PAID:
                    await self.mark_as_paid(invoice_id, company_id, action.options)
                elif action.action == InvoiceBulkActionType.MARK_CANCELLED:
                    await self.cancel(invoice_id, company_id)
                elif action.action == InvoiceBulkActionType.DELETE:
                    await self.delete(invoice_id, company_id)
                result.success += 1
            except ServiceError as exc:
                logger.warning("Bulk %s failed for invoice %s: %s", action.action.value, invoice_id, exc)
                result.failed += 1
                result.errors.append(BulkActionFailure(id=invoice_id, error=exc.message))
        return result

    async def stats(self, company_id: str) -> InvoiceStats:
        key = f"stats:{company_id}:invoice"
        cached = await self._cache.get_model(key, InvoiceStats)
        if cached is not None:
            return cached

        try:
            today = date.today()
            invoices = self._store.invoices

            def owned(row: Record) -> bool:
                return row["company_id"] == company_id

            total_invoices = await invoices.count(owned)
            total_amount = await invoices.sum("amount_including_tax", owned)
            paid_amount = await invoices.sum(
                "amount_including_tax",
                lambda row: owned(row) and row["payment_status"] == PaymentStatus.PAID,
            )
            pending_amount = await invoices.sum(
                "amount_including_tax",
                lambda row: owned(row)
                and row["payment_status"] in (PaymentStatus.UNPAID, PaymentStatus.PARTIALLY_PAID),
            )
            overdue_amount = await invoices.sum(
                "amount_including_tax", lambda row: owned(row) and _is_overdue(row, today)
            )
            records = await invoices.find(owned)
            stats = InvoiceStats(
                total_invoices=total_invoices,
                total_amount=total_amount,
                paid_amount=paid_amount,
                pending_amount=pending_amount,
                overdue_amount=overdue_amount,
                average_amount=total_amount / total_invoices if total_invoices else 0.0,
                average_payment_delay=self._average_payment_delay(records),
                conversion_rate=paid_amount / total_amount * 100 if total_amount else 0.0,
                status_distribution=await invoices.group_count("status", owned),
                payment_method_distribution=await invoices.group_count("payment_method", owned),
                monthly_stats=monthly_stats(
                    records,
                    "invoice_date",
                    paid=lambda row: row["payment_status"] == PaymentStatus.PAID,
                ),
            )
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while computing invoice stats")
            raise InvoiceError("Failed to compute invoice statistics", cause=exc) from exc

        await self._cache.set_model(key, stats, self._cache.stats_ttl)
        return stats

    async def invalidate_cache(self, invoice_id: str, company_id: str) -> None:
        await self._cache.delete(invoice_cache_key(invoice_id))
        await self._cache.delete_pattern(f"stats:{company_id}:")
        await self._cache.delete_pattern(f"invoices:list:{company_id}:")

    @staticmethod
    def _average_payment_delay(records: List[Record]) -> int:
        delays = [
            days_between(row["due_date"], row["paid_at"])
            for row in records
            if row["payment_status"] == PaymentStatus.PAID and row.get("paid_at") is not None
        ]
        if not delays:
            return 0
        return round(sum(delays) / len(delays))

    @staticmethod
    def _matches(row: Record, params: InvoiceListParams, today: date) -> bool:
        if params.search and not contains(
            params.search, row["invoice_number"], row.get("reference"), row.get("notes")
        ):
            return False
        if params.customer_id and row["customer_id"] != params.customer_id:
            return False
        if params.status and row["status"] not in params.status:
            return False
        if params.payment_status and row["payment_status"] not in params.payment_status:
            return False
        if params.payment_method and row.get("payment_method") not in params.payment_method:
            return False
        if params.currency and row["currency"] != params.currency:
            return False
        if not in_range(row["invoice_date"], params.date_from, params.date_to):
            return False
        if not in_range(row["due_date"], params.due_date_from, params.due_date_to):
            return False
        if not in_range(row["amount_including_tax"], params.amount_min, params.amount_max):
            return False
        if params.overdue_only and not _is_overdue(row, today):
            return False
        if params.paid_only and row["payment_status"] != PaymentStatus.PAID:
            return False
        return True

    async def _require_customer(self, company_id: str, customer_id: str) -> None:
        customer = await self._store.customers.get(customer_id)
        if customer is None or customer["company_id"] != company_id:
            raise NotFoundError("Customer", customer_id)

    async def _get_record(self, invoice_id: str, company_id: Optional[str] = None) -> Record:
        record = await self._store.invoices.get(invoice_id)
        if record is None or (company_id is not None and record["company_id"] != company_id):
            raise NotFoundError("Invoice", invoice_id)
        return record

    async def _load(self, invoice_id: str, company_id: Optional[str] = None) -> Invoice:
        record = await self._get_record(invoice_id, company_id)
        items = await self._store.invoices.get_items(invoice_id)
        payments = await self._store.payments.list_for_invoice(invoice_id)
        customer = await self._store.customers.get(record["customer_id"])
        return Invoice(
            **record,
            items=items,
            payments=payments,
            customer=CustomerSummary.model_validate(customer) if customer else None,
        )
