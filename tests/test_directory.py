import asyncio
from datetime import date, timedelta

import pytest

from app.schemas.billing import InvoiceCreateRequest, LineItem
from app.schemas.company import (
    CompanyCreateRequest,
    CompanyUpdateRequest,
    CustomerCreateRequest,
    CustomerUpdateRequest,
    ProductCreateRequest,
    ProductUpdateRequest,
)
from app.schemas.quote import QuoteCreateRequest
from app.services.directory import CompanyService, CustomerService, ProductService
from app.services.exceptions import DuplicateError, NotFoundError


def test_company_update_checks_siret(billing) -> None:
    companies = CompanyService(billing.store)
    asyncio.run(companies.create(CompanyCreateRequest(name="Other", siret="11122233300011")))

    renamed = asyncio.run(
        companies.update(billing.company_id, CompanyUpdateRequest(name="Atelier Dupont & Fils", city="Lyon"))
    )
    assert renamed.name == "Atelier Dupont & Fils"
    assert renamed.city == "Lyon"

    with pytest.raises(DuplicateError):
        asyncio.run(companies.update(billing.company_id, CompanyUpdateRequest(siret="11122233300011")))
    with pytest.raises(NotFoundError):
        asyncio.run(companies.update("cmp_missing", CompanyUpdateRequest(name="x")))


def test_customer_update_rechecks_email(billing) -> None:
    customers = CustomerService(billing.store)
    other = asyncio.run(
        customers.create(billing.company_id, CustomerCreateRequest(name="Fromagerie", email="hello@fromage.example"))
    )

    with pytest.raises(DuplicateError):
        asyncio.run(
            customers.update(
                other.customer_id, billing.company_id, CustomerUpdateRequest(email="CONTACT@martin.example")
            )
        )

    # Keeping its own address is not a conflict.
    updated = asyncio.run(
        customers.update(
            billing.customer_id,
            billing.company_id,
            CustomerUpdateRequest(email="contact@martin.example", phone="0102030405", name=None),
        )
    )
    assert updated.phone == "0102030405"
    assert updated.name == "Boulangerie Martin"


def test_customer_update_is_scoped_to_company(billing) -> None:
    other_company = asyncio.run(CompanyService(billing.store).create(CompanyCreateRequest(name="Other")))

    with pytest.raises(NotFoundError):
        asyncio.run(
            CustomerService(billing.store).update(
                billing.customer_id, other_company.company_id, CustomerUpdateRequest(phone="1")
            )
        )


def test_unreferenced_customer_is_deleted(billing) -> None:
    customers = CustomerService(billing.store)
    customer = asyncio.run(customers.create(billing.company_id, CustomerCreateRequest(name="Passing trade")))

    asyncio.run(customers.delete(customer.customer_id, billing.company_id))

    assert asyncio.run(billing.store.customers.get(customer.customer_id)) is None


def test_customer_with_documents_is_deactivated(billing) -> None:
    customers = CustomerService(billing.store)
    asyncio.run(
        billing.quotes.create(
            billing.company_id,
            QuoteCreateRequest(
                customer_id=billing.customer_id,
                validity_date=date.today() + timedelta(days=30),
                items=[LineItem(quantity=1, unit_price_excluding_tax=10)],
            ),
        )
    )

    asyncio.run(customers.delete(billing.customer_id, billing.company_id))

    kept = asyncio.run(customers.get(billing.customer_id, billing.company_id))
    assert kept.is_active is False
    assert asyncio.run(customers.list(billing.company_id)).total == 0
    # The address is free again once the holder is inactive.
    asyncio.run(
        customers.create(billing.company_id, CustomerCreateRequest(name="Martin SAS", email="contact@martin.example"))
    )


def test_product_update_rechecks_sku(billing) -> None:
    products = ProductService(billing.store)
    other = asyncio.run(
        products.create(
            billing.company_id,
            ProductCreateRequest(name="Training", sku="TRAIN", unit_price_excluding_tax=50),
        )
    )

    with pytest.raises(DuplicateError):
        asyncio.run(products.update(other.product_id, billing.company_id, ProductUpdateRequest(sku="CONS-DAY")))

    repriced = asyncio.run(
        products.update(
            other.product_id,
            billing.company_id,
            ProductUpdateRequest(sku="TRAIN", unit_price_excluding_tax=65, vat_rate="REDUCED_3"),
        )
    )
    assert repriced.unit_price_excluding_tax == 65
    assert repriced.vat_rate == "REDUCED_3"


def test_product_vat_code_is_stored_as_given(billing) -> None:
    product = asyncio.run(
        ProductService(billing.store).create(
            billing.company_id,
            ProductCreateRequest(name="Odd", unit_price_excluding_tax=1, vat_rate="reduced_1"),
        )
    )

    assert product.vat_rate == "reduced_1"


def test_product_delete_depends_on_usage(billing) -> None:
    products = ProductService(billing.store)
    unused = asyncio.run(
        products.create(billing.company_id, ProductCreateRequest(name="Unused", unit_price_excluding_tax=5))
    )
    asyncio.run(
        billing.invoices.create(
            billing.company_id,
            InvoiceCreateRequest(
                customer_id=billing.customer_id,
                items=[LineItem(product_id=billing.product_id, quantity=2)],
            ),
        )
    )

    asyncio.run(products.delete(unused.product_id, billing.company_id))
    asyncio.run(products.delete(billing.product_id, billing.company_id))

    assert asyncio.run(billing.store.products.get(unused.product_id)) is None
    assert asyncio.run(products.get(billing.product_id, billing.company_id)).is_active is False
    assert [p.product_id for p in asyncio.run(products.list(billing.company_id)).items] == []
