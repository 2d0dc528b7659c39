import asyncio
import os
import sys
from dataclasses import dataclass

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.schemas.company import (
    CompanyCreateRequest,
    CustomerCreateRequest,
    ProductCreateRequest,
)
from app.services.cache import CacheService, InMemoryCacheBackend
from app.services.directory import CompanyService, CustomerService, ProductService
from app.services.invoice import InvoiceService
from app.services.quote import QuoteService
from app.services.store import BillingStore, build_store


@dataclass
class BillingContext:
    store: BillingStore
    backend: InMemoryCacheBackend
    cache: CacheService
    invoices: InvoiceService
    quotes: QuoteService
    company_id: str
    customer_id: str
    product_id: str


@pytest.fixture
def billing() -> BillingContext:
    store = build_store()
    backend = InMemoryCacheBackend()
    cache = CacheService(backend)
    invoices = InvoiceService(store, cache)
    quotes = QuoteService(store, cache, invoices)

    company = asyncio.run(CompanyService(store).create(CompanyCreateRequest(name="Atelier Dupont")))
    customer = asyncio.run(
        CustomerService(store).create(
            company.company_id,
            CustomerCreateRequest(name="Boulangerie Martin", email="contact@martin.example"),
        )
    )
    product = asyncio.run(
        ProductService(store).create(
            company.company_id,
            ProductCreateRequest(
                name="Consulting day",
                sku="CONS-DAY",
                unit="day",
                unit_price_excluding_tax=80.0,
            ),
        )
    )
    return BillingContext(
        store=store,
        backend=backend,
        cache=cache,
        invoices=invoices,
        quotes=quotes,
        company_id=company.company_id,
        customer_id=customer.customer_id,
        product_id=product.product_id,
    )
