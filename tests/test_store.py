import asyncio

import pytest

from app.services.store import build_store


def test_settings_are_created_with_defaults() -> None:
    store = build_store()
    company = asyncio.run(store.companies.insert({"name": "Legacy Co"}))

    settings = asyncio.run(store.companies.get_settings(company["company_id"]))

    assert settings["invoice_prefix"] == "INV"
    assert settings["quote_prefix"] == "QUO"
    assert settings["next_invoice_number"] == 1
    assert settings["default_payment_terms"] == 30
    assert settings["default_currency"] == "EUR"


def test_failed_transaction_leaves_no_trace() -> None:
    store = build_store()

    async def scenario():
        async with store.transaction():
            await store.customers.insert({"company_id": "cmp_1", "name": "Ghost"})
            raise ValueError("abort")

    with pytest.raises(ValueError):
        asyncio.run(scenario())

    assert asyncio.run(store.customers.count()) == 0


def test_nested_transaction_joins_outer_one() -> None:
    store = build_store()

    async def scenario():
        async with store.transaction():
            await store.customers.insert({"company_id": "cmp_1", "name": "Inner"})
            async with store.transaction():
                await store.products.insert({"company_id": "cmp_1", "name": "Widget"})
            raise ValueError("abort outer")

    with pytest.raises(ValueError):
        asyncio.run(scenario())

    assert asyncio.run(store.customers.count()) == 0
    assert asyncio.run(store.products.count()) == 0


def test_readers_only_see_committed_state() -> None:
    store = build_store()
    observed = []

    async def writer():
        async with store.transaction():
            await store.customers.insert({"company_id": "cmp_1", "name": "Pending"})
            await asyncio.sleep(0)
            await asyncio.sleep(0)

    async def reader():
        await asyncio.sleep(0)
        observed.append(await store.customers.count())

    async def scenario():
        await asyncio.gather(writer(), reader())

    asyncio.run(scenario())

    assert observed == [0]
    assert asyncio.run(store.customers.count()) == 1


def test_returned_records_are_copies() -> None:
    store = build_store()
    record = asyncio.run(store.customers.insert({"company_id": "cmp_1", "name": "Original"}))
    record["name"] = "Mutated"

    stored = asyncio.run(store.customers.get(record["customer_id"]))

    assert stored["name"] == "Original"


def test_document_items_are_replaced_as_a_set() -> None:
    store = build_store()
    invoice = asyncio.run(
        store.invoices.create(
            {"company_id": "cmp_1"},
            [{"name": "a", "sort_order": 1}, {"name": "b", "sort_order": 0}],
        )
    )
    invoice_id = invoice["invoice_id"]
    before = asyncio.run(store.invoices.get_items(invoice_id))

    asyncio.run(store.invoices.replace_items(invoice_id, [{"name": "c", "sort_order": 0}]))
    after = asyncio.run(store.invoices.get_items(invoice_id))

    assert [item["name"] for item in before] == ["b", "a"]
    assert [item["name"] for item in after] == ["c"]
    assert not {item["item_id"] for item in before} & {item["item_id"] for item in after}


def test_aggregates() -> None:
    store = build_store()

    async def seed():
        for status, amount in (("paid", 10.0), ("paid", 5.5), ("draft", 2.0)):
            await store.invoices.insert(
                {"company_id": "cmp_1", "status": status, "amount_including_tax": amount}
            )

    asyncio.run(seed())

    assert asyncio.run(store.invoices.count()) == 3
    assert asyncio.run(store.invoices.sum("amount_including_tax")) == pytest.approx(17.5)
    assert asyncio.run(store.invoices.group_count("status")) == {"paid": 2, "draft": 1}
