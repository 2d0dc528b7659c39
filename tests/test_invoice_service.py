import asyncio
from datetime import date, timedelta

import pytest

from app.schemas.billing import (
    InvoiceBulkAction,
    InvoiceBulkActionType,
    InvoiceCreateRequest,
    InvoiceListParams,
    InvoiceStatus,
    InvoiceUpdateRequest,
    LineItem,
    PaymentData,
    PaymentStatus,
)
from app.schemas.common import PaymentMethod
from app.services.exceptions import (
    InvoiceStatusError,
    NotFoundError,
    ValidationError,
)


def _create(billing, **overrides):
    payload = {
        "customer_id": billing.customer_id,
        "invoice_date": date(2024, 3, 1),
        "items": [
            LineItem(name="Design", quantity=3, unit_price_excluding_tax=100, vat_rate="STANDARD"),
            LineItem(name="Book", quantity=1, unit_price_excluding_tax=50, vat_rate="REDUCED_2"),
        ],
    }
    payload.update(overrides)
    return asyncio.run(billing.invoices.create(billing.company_id, InvoiceCreateRequest(**payload)))


def test_create_computes_totals_and_number(billing) -> None:
    invoice = _create(billing, reference="PO-42")

    assert invoice.invoice_number == "INV-0001"
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.payment_status == PaymentStatus.UNPAID
    assert invoice.amount_excluding_tax == pytest.approx(350.0)
    assert invoice.tax == pytest.approx(62.75)
    assert invoice.amount_including_tax == pytest.approx(412.75)
    assert invoice.currency == "EUR"
    assert invoice.language == "fr"
    assert invoice.due_date == date(2024, 3, 31)
    assert [item.name for item in invoice.items] == ["Design", "Book"]
    assert invoice.customer is not None
    assert invoice.customer.name == "Boulangerie Martin"


def test_create_resolves_price_from_product(billing) -> None:
    invoice = _create(billing, items=[LineItem(product_id=billing.product_id, quantity=2)])

    assert invoice.items[0].unit_price_excluding_tax == pytest.approx(80.0)
    assert invoice.items[0].name == "Consulting day"
    assert invoice.amount_including_tax == pytest.approx(192.0)


def test_create_without_resolvable_price_is_rejected_without_using_a_number(billing) -> None:
    with pytest.raises(ValidationError) as excinfo:
        _create(billing, items=[LineItem(name="Mystery", quantity=1)])

    assert "items.0.unit_price_excluding_tax" in excinfo.value.errors
    assert _create(billing).invoice_number == "INV-0001"


def test_create_for_unknown_customer_fails(billing) -> None:
    with pytest.raises(NotFoundError):
        _create(billing, customer_id="cus_unknown")


def test_get_is_scoped_to_company(billing) -> None:
    invoice = _create(billing)

    assert asyncio.run(billing.invoices.get(invoice.invoice_id, billing.company_id)).invoice_id == invoice.invoice_id
    with pytest.raises(NotFoundError):
        asyncio.run(billing.invoices.get(invoice.invoice_id, "cmp_other"))


def test_get_populates_cache_and_updates_invalidate_it(billing) -> None:
    invoice = _create(billing)
    key = f"invoice:{invoice.invoice_id}"

    asyncio.run(billing.invoices.get(invoice.invoice_id, billing.company_id))
    assert asyncio.run(billing.backend.get(key)) is not None

    asyncio.run(
        billing.invoices.update(invoice.invoice_id, billing.company_id, InvoiceUpdateRequest(notes="Thanks"))
    )
    assert asyncio.run(billing.backend.get(key)) is None
    refreshed = asyncio.run(billing.invoices.get(invoice.invoice_id, billing.company_id))
    assert refreshed.notes == "Thanks"


def test_update_with_items_on_draft_replaces_the_item_set(billing) -> None:
    invoice = _create(billing)
    old_ids = {item.item_id for item in invoice.items}

    updated = asyncio.run(
        billing.invoices.update(
            invoice.invoice_id,
            billing.company_id,
            InvoiceUpdateRequest(
                items=[LineItem(name="Audit", quantity=1, unit_price_excluding_tax=200, vat_rate="ZERO")]
            ),
        )
    )

    assert [item.name for item in updated.items] == ["Audit"]
    assert not old_ids & {item.item_id for item in updated.items}
    assert updated.amount_excluding_tax == pytest.approx(200.0)
    assert updated.tax == pytest.approx(0.0)
    assert updated.amount_including_tax == pytest.approx(200.0)


def test_update_items_on_paid_invoice_is_rejected(billing) -> None:
    invoice = _create(billing)
    asyncio.run(
        billing.invoices.update(
            invoice.invoice_id, billing.company_id, InvoiceUpdateRequest(status=InvoiceStatus.PAID)
        )
    )

    with pytest.raises(InvoiceStatusError):
        asyncio.run(
            billing.invoices.update(
                invoice.invoice_id,
                billing.company_id,
                InvoiceUpdateRequest(items=[LineItem(quantity=1, unit_price_excluding_tax=1)]),
            )
        )
    with pytest.raises(InvoiceStatusError):
        asyncio.run(
            billing.invoices.update(
                invoice.invoice_id, billing.company_id, InvoiceUpdateRequest(shipping_cost=12.0)
            )
        )

    notes_only = asyncio.run(
        billing.invoices.update(invoice.invoice_id, billing.company_id, InvoiceUpdateRequest(notes="ok"))
    )
    assert notes_only.notes == "ok"
    assert len(notes_only.items) == 2


def test_cancelled_invoice_is_immutable(billing) -> None:
    invoice = _create(billing)
    cancelled = asyncio.run(billing.invoices.cancel(invoice.invoice_id, billing.company_id))

    assert cancelled.status == InvoiceStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    with pytest.raises(InvoiceStatusError):
        asyncio.run(
            billing.invoices.update(invoice.invoice_id, billing.company_id, InvoiceUpdateRequest(notes="x"))
        )
    with pytest.raises(InvoiceStatusError):
        asyncio.run(billing.invoices.mark_as_paid(invoice.invoice_id, billing.company_id))


def test_mark_as_sent_only_from_draft_or_pending(billing) -> None:
    invoice = _create(billing)

    sent = asyncio.run(billing.invoices.mark_as_sent(invoice.invoice_id, billing.company_id))

    assert sent.status == InvoiceStatus.SENT
    assert sent.sent_at is not None
    with pytest.raises(InvoiceStatusError) as excinfo:
        asyncio.run(billing.invoices.mark_as_sent(invoice.invoice_id, billing.company_id))
    assert excinfo.value.current_status == "sent"
    assert excinfo.value.attempted_action == "send"


def test_mark_as_paid_records_payment_and_keeps_status(billing) -> None:
    invoice = _create(billing)
    asyncio.run(billing.invoices.mark_as_sent(invoice.invoice_id, billing.company_id))

    paid = asyncio.run(
        billing.invoices.mark_as_paid(
            invoice.invoice_id,
            billing.company_id,
            PaymentData(payment_reference="TRX-1"),
        )
    )

    assert paid.payment_status == PaymentStatus.PAID
    assert paid.status == InvoiceStatus.SENT
    assert paid.paid_at is not None
    assert len(paid.payments) == 1
    assert paid.payments[0].amount == pytest.approx(412.75)
    assert paid.payments[0].payment_method == PaymentMethod.CASH
    assert paid.payments[0].reference == "TRX-1"
    with pytest.raises(InvoiceStatusError):
        asyncio.run(billing.invoices.mark_as_paid(invoice.invoice_id, billing.company_id))


def test_mark_as_paid_without_payment_data_creates_no_payment(billing) -> None:
    invoice = _create(billing)

    paid = asyncio.run(billing.invoices.mark_as_paid(invoice.invoice_id, billing.company_id))

    assert paid.payment_status == PaymentStatus.PAID
    assert paid.payments == []


def test_delete_hard_deletes_unpaid_invoice(billing) -> None:
    invoice = _create(billing)

    asyncio.run(billing.invoices.delete(invoice.invoice_id, billing.company_id))

    with pytest.raises(NotFoundError):
        asyncio.run(billing.invoices.get(invoice.invoice_id, billing.company_id))
    assert asyncio.run(billing.store.invoices.get_items(invoice.invoice_id)) == []


def test_delete_with_payments_soft_cancels(billing) -> None:
    invoice = _create(billing)
    asyncio.run(billing.invoices.mark_as_sent(invoice.invoice_id, billing.company_id))
    asyncio.run(billing.invoices.mark_as_paid(invoice.invoice_id, billing.company_id, PaymentData()))

    asyncio.run(billing.invoices.delete(invoice.invoice_id, billing.company_id))

    kept = asyncio.run(billing.invoices.get(invoice.invoice_id, billing.company_id))
    assert kept.status == InvoiceStatus.CANCELLED
    assert kept.cancelled_at is not None
    assert len(kept.payments) == 1


def test_delete_paid_invoice_is_rejected(billing) -> None:
    invoice = _create(billing)
    asyncio.run(
        billing.invoices.update(
            invoice.invoice_id, billing.company_id, InvoiceUpdateRequest(status=InvoiceStatus.PAID)
        )
    )

    with pytest.raises(InvoiceStatusError) as excinfo:
        asyncio.run(billing.invoices.delete(invoice.invoice_id, billing.company_id))

    assert excinfo.value.current_status == "paid"
    assert excinfo.value.attempted_action == "delete"


def test_payment_status_alone_does_not_lock_amounts(billing) -> None:
    invoice = _create(billing)
    asyncio.run(billing.invoices.mark_as_paid(invoice.invoice_id, billing.company_id))

    updated = asyncio.run(
        billing.invoices.update(
            invoice.invoice_id,
            billing.company_id,
            InvoiceUpdateRequest(items=[LineItem(name="Fix", quantity=1, unit_price_excluding_tax=10)]),
        )
    )

    assert updated.status == InvoiceStatus.DRAFT
    assert updated.payment_status == PaymentStatus.PAID
    assert updated.amount_including_tax == pytest.approx(12.0)


def test_deleted_numbers_are_not_reused(billing) -> None:
    first = _create(billing)
    asyncio.run(billing.invoices.delete(first.invoice_id, billing.company_id))

    assert _create(billing).invoice_number == "INV-0002"


def test_list_filters_paginates_and_summarises(billing) -> None:
    first = _create(billing, reference="ALPHA")
    second = _create(billing, invoice_date=date(2024, 4, 1))
    third = _create(billing, invoice_date=date(2024, 5, 1), notes="alpha notes")
    asyncio.run(billing.invoices.mark_as_paid(second.invoice_id, billing.company_id))

    page = asyncio.run(
        billing.invoices.list(billing.company_id, InvoiceListParams(limit=2, sort_by="invoice_date"))
    )
    assert page.total == 3
    assert page.total_pages == 2
    assert page.has_next_page is True
    assert page.has_previous_page is False
    assert [invoice.invoice_id for invoice in page.items] == [third.invoice_id, second.invoice_id]
    assert page.summary.total_amount == pytest.approx(3 * 412.75)
    assert page.summary.paid_amount == pytest.approx(412.75)
    assert page.summary.pending_amount == pytest.approx(2 * 412.75)
    assert page.summary.count_by_status == {"draft": 3}

    searched = asyncio.run(
        billing.invoices.list(billing.company_id, InvoiceListParams(search="alpha", sort_order="asc"))
    )
    assert [invoice.invoice_id for invoice in searched.items] == [first.invoice_id, third.invoice_id]

    paid = asyncio.run(billing.invoices.list(billing.company_id, InvoiceListParams(paid_only=True)))
    assert [invoice.invoice_id for invoice in paid.items] == [second.invoice_id]

    ranged = asyncio.run(
        billing.invoices.list(
            billing.company_id,
            InvoiceListParams(date_from=date(2024, 3, 15), date_to=date(2024, 4, 15)),
        )
    )
    assert [invoice.invoice_id for invoice in ranged.items] == [second.invoice_id]


def test_list_cache_is_invalidated_by_writes(billing) -> None:
    _create(billing)
    params = InvoiceListParams()

    assert asyncio.run(billing.invoices.list(billing.company_id, params)).total == 1
    _create(billing)
    assert asyncio.run(billing.invoices.list(billing.company_id, params)).total == 2


def test_overdue_filter_uses_status_and_due_date(billing) -> None:
    overdue = _create(billing, due_date=date.today() - timedelta(days=3))
    asyncio.run(
        billing.invoices.update(
            overdue.invoice_id, billing.company_id, InvoiceUpdateRequest(status=InvoiceStatus.OVERDUE)
        )
    )
    _create(billing, due_date=date.today() - timedelta(days=3))

    result = asyncio.run(billing.invoices.list(billing.company_id, InvoiceListParams(overdue_only=True)))

    assert [invoice.invoice_id for invoice in result.items] == [overdue.invoice_id]
    assert result.summary.overdue_amount == pytest.approx(412.75)


def test_stats(billing) -> None:
    first = _create(billing, due_date=date(2024, 3, 10))
    _create(billing, invoice_date=date(2024, 4, 2))
    asyncio.run(
        billing.invoices.mark_as_paid(
            first.invoice_id,
            billing.company_id,
            PaymentData(payment_method=PaymentMethod.BANK_TRANSFER),
        )
    )

    stats = asyncio.run(billing.invoices.stats(billing.company_id))

    assert stats.total_invoices == 2
    assert stats.total_amount == pytest.approx(825.5)
    assert stats.paid_amount == pytest.approx(412.75)
    assert stats.pending_amount == pytest.approx(412.75)
    assert stats.average_amount == pytest.approx(412.75)
    assert stats.conversion_rate == pytest.approx(50.0)
    assert stats.average_payment_delay > 0
    assert stats.status_distribution == {"draft": 2}
    assert stats.payment_method_distribution == {"bank_transfer": 1}
    assert [(m.month, m.count) for m in stats.monthly_stats] == [("2024-03", 1), ("2024-04", 1)]
    assert stats.monthly_stats[0].paid_amount == pytest.approx(412.75)


def test_bulk_action_reports_each_id(billing) -> None:
    first = _create(billing)
    second = _create(billing)
    asyncio.run(billing.invoices.mark_as_sent(second.invoice_id, billing.company_id))

    result = asyncio.run(
        billing.invoices.bulk_action(
            billing.company_id,
            InvoiceBulkAction(
                action=InvoiceBulkActionType.SEND,
                invoice_ids=[first.invoice_id, second.invoice_id, "inv_missing"],
            ),
        )
    )

    assert result.success == 1
    assert result.failed == 2
    assert {error.id for error in result.errors} == {second.invoice_id, "inv_missing"}
