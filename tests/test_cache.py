import asyncio
import logging

from app.schemas.common import BulkActionResult
from app.services.cache import CacheService, InMemoryCacheBackend


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class BrokenBackend:
    async def get(self, key):
        raise ConnectionError("cache down")

    async def set(self, key, value, ttl):
        raise ConnectionError("cache down")

    async def delete(self, key):
        raise ConnectionError("cache down")

    async def delete_pattern(self, prefix):
        raise ConnectionError("cache down")


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    backend = InMemoryCacheBackend(clock=clock)
    cache = CacheService(backend)

    asyncio.run(cache.set_model("k", BulkActionResult(success=2), ttl=60))
    assert asyncio.run(cache.get_model("k", BulkActionResult)).success == 2

    clock.now += 61
    assert asyncio.run(cache.get_model("k", BulkActionResult)) is None
    assert len(backend) == 0


def test_delete_pattern_only_removes_matching_prefix() -> None:
    backend = InMemoryCacheBackend()
    cache = CacheService(backend)

    for key in ("stats:cmp_1:invoice", "stats:cmp_1:quote", "stats:cmp_2:invoice", "invoice:inv_1"):
        asyncio.run(cache.set_model(key, BulkActionResult()))

    asyncio.run(cache.delete_pattern("stats:cmp_1:"))

    assert asyncio.run(backend.get("stats:cmp_1:invoice")) is None
    assert asyncio.run(backend.get("stats:cmp_1:quote")) is None
    assert asyncio.run(backend.get("stats:cmp_2:invoice")) is not None
    assert asyncio.run(backend.get("invoice:inv_1")) is not None


def test_backend_failures_are_swallowed(caplog) -> None:
    cache = CacheService(BrokenBackend())

    with caplog.at_level(logging.WARNING, logger="app.services.cache"):
        assert asyncio.run(cache.get_model("k", BulkActionResult)) is None
        asyncio.run(cache.set_model("k", BulkActionResult()))
        asyncio.run(cache.delete("k"))
        asyncio.run(cache.delete_pattern("k"))

    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 4


def test_disabled_cache_never_stores() -> None:
    backend = InMemoryCacheBackend()
    cache = CacheService(backend, enabled=False)

    asyncio.run(cache.set_model("k", BulkActionResult()))

    assert len(backend) == 0
    assert asyncio.run(cache.get_model("k", BulkActionResult)) is None


def test_invoice_reads_survive_a_broken_cache(billing) -> None:
    from app.schemas.billing import InvoiceCreateRequest, LineItem
    from app.services.invoice import InvoiceService

    service = InvoiceService(billing.store, CacheService(BrokenBackend()))
    invoice = asyncio.run(
        service.create(
            billing.company_id,
            InvoiceCreateRequest(
                customer_id=billing.customer_id,
                items=[LineItem(quantity=1, unit_price_excluding_tax=10)],
            ),
        )
    )

    assert asyncio.run(service.get(invoice.invoice_id, billing.company_id)).invoice_id == invoice.invoice_id
