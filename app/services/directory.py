from __future__ import annotations

import logging
from typing import Any, Dict

from app.schemas.company import (
    Company,
    CompanyCreateRequest,
    CompanySettings,
    CompanySettingsUpdate,
    CompanyUpdateRequest,
    Customer,
    CustomerCreateRequest,
    CustomerListResponse,
    CustomerUpdateRequest,
    Product,
    ProductCreateRequest,
    ProductListResponse,
    ProductUpdateRequest,
)
from app.services.documents import contains, enum_value
from app.services.exceptions import (
    CompanyError,
    CustomerError,
    DuplicateError,
    NotFoundError,
    ProductError,
    ServiceError,
)
from app.services.store import BillingStore, Record

logger = logging.getLogger(__name__)


def _patch(patch: Any, required: frozenset) -> Dict[str, Any]:
    """Explicitly set fields of ``patch``; nulls are dropped for columns that must hold a value."""

    return {
        field: enum_value(value)
        for field, value in patch.model_dump(exclude_unset=True).items()
        if value is not None or field not in required
    }


def _active(row: Record) -> bool:
    return row.get("is_active", True)


class CompanyService:
    """Tenant master data and the per-company document settings."""

    def __init__(self, store: BillingStore, *, defaults: Dict[str, Any] | None = None) -> None:
        self._store = store
        self._defaults = defaults or {}

    async def create(self, request: CompanyCreateRequest) -> Company:
        logger.info("Creating company '%s'", request.name)
        try:
            async with self._store.transaction():
                if request.siret and await self._store.companies.find_one(
                    lambda row: row.get("siret") == request.siret
                ):
                    raise DuplicateError("siret", request.siret)
                record = await self._store.companies.create(
                    {**request.model_dump(), "is_active": True}, settings=self._defaults
                )
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while creating company")
            raise CompanyError("Failed to create company", cause=exc) from exc
        return Company(**record)

    async def get(self, company_id: str) -> Company:
        record = await self._store.companies.get(company_id)
        if record is None:
            raise NotFoundError("Company", company_id)
        return Company(**record)

    async def update(self, company_id: str, patch: CompanyUpdateRequest) -> Company:
        logger.info("Updating company %s", company_id)
        try:
            async with self._store.transaction():
                if await self._store.companies.get(company_id) is None:
                    raise NotFoundError("Company", company_id)
                changes = _patch(patch, frozenset({"name"}))
                siret = changes.get("siret")
                if siret and await self._store.companies.find_one(
                    lambda row: row["company_id"] != company_id and row.get("siret") == siret
                ):
                    raise DuplicateError("siret", siret)
                record = await self._store.companies.update(company_id, changes)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while updating company %s", company_id)
            raise CompanyError("Failed to update company", cause=exc) from exc
        return Company(**record)

    async def get_settings(self, company_id: str) -> CompanySettings:
        settings = await self._store.companies.get_settings(company_id)
        if settings is None:
            raise NotFoundError("Company", company_id)
        return CompanySettings(**settings)

    async def update_settings(
        self, company_id: str, patch: CompanySettingsUpdate
    ) -> CompanySettings:
        logger.info("Updating settings for company %s", company_id)
        changes = patch.model_dump(exclude_none=True)
        settings = await self._store.companies.update_settings(company_id, changes)
        if settings is None:
            raise NotFoundError("Company", company_id)
        return CompanySettings(**settings)


class CustomerService:
    def __init__(self, store: BillingStore) -> None:
        self._store = store

    async def _email_taken(self, company_id: str, email: str, exclude: str | None = None) -> bool:
        return (
            await self._store.customers.find_one(
                lambda row: row["company_id"] == company_id
                and row["customer_id"] != exclude
                and _active(row)
                and (row.get("email") or "").lower() == email.lower()
            )
            is not None
        )

    async def create(self, company_id: str, request: CustomerCreateRequest) -> Customer:
        logger.info("Creating customer '%s' for company %s", request.name, company_id)
        try:
            async with self._store.transaction():
                if await self._store.companies.get(company_id) is None:
                    raise NotFoundError("Company", company_id)
                if request.email and await self._email_taken(company_id, request.email):
                    raise DuplicateError("email", request.email)
                payload = {
                    field: enum_value(value) for field, value in request.model_dump().items()
                }
                record = await self._store.customers.insert(
                    {**payload, "company_id": company_id, "is_active": True}
                )
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while creating customer")
            raise CustomerError("Failed to create customer", cause=exc) from exc
        return Customer(**record)

    async def get(self, customer_id: str, company_id: str) -> Customer:
        record = await self._store.customers.get(customer_id)
        if record is None or record["company_id"] != company_id:
            raise NotFoundError("Customer", customer_id)
        return Customer(**record)

    async def update(
        self, customer_id: str, company_id: str, patch: CustomerUpdateRequest
    ) -> Customer:
        logger.info("Updating customer %s", customer_id)
        try:
            async with self._store.transaction():
                current = await self.get(customer_id, company_id)
                changes = _patch(patch, frozenset({"name", "is_active"}))
                email = changes.get("email")
                if (
                    email
                    and email.lower() != (current.email or "").lower()
                    and await self._email_taken(company_id, email, exclude=customer_id)
                ):
                    raise DuplicateError("email", email)
                record = await self._store.customers.update(customer_id, changes)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while updating customer %s", customer_id)
            raise CustomerError("Failed to update customer", cause=exc) from exc
        return Customer(**record)

    async def delete(self, customer_id: str, company_id: str) -> None:
        """Remove a customer, or deactivate it when documents still reference it."""

        logger.info("Deleting customer %s", customer_id)
        try:
            async with self._store.transaction():
                await self.get(customer_id, company_id)

                def referenced(row: Record) -> bool:
                    return row["customer_id"] == customer_id

                documents = await self._store.invoices.count(referenced)
                documents += await self._store.quotes.count(referenced)
                if documents:
                    await self._store.customers.update(customer_id, {"is_active": False})
                    logger.info(
                        "Customer %s has %d documents; deactivated instead of deleted",
                        customer_id,
                        documents,
                    )
                else:
                    await self._store.customers.delete(customer_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while deleting customer %s", customer_id)
            raise CustomerError("Failed to delete customer", cause=exc) from exc

    async def list(self, company_id: str, search: str | None = None) -> CustomerListResponse:
        records = await self._store.customers.find(
            lambda row: row["company_id"] == company_id
            and _active(row)
            and (not search or contains(search, row["name"], row.get("email")))
        )
        records.sort(key=lambda row: row["name"].lower())
        return CustomerListResponse(total=len(records), items=[Customer(**row) for row in records])


class ProductService:
    def __init__(self, store: BillingStore) -> None:
        self._store = store

    async def _sku_taken(self, company_id: str, sku: str, exclude: str | None = None) -> bool:
        return (
            await self._store.products.find_one(
                lambda row: row["company_id"] == company_id
                and row["product_id"] != exclude
                and _active(row)
                and row.get("sku") == sku
            )
            is not None
        )

    async def create(self, company_id: str, request: ProductCreateRequest) -> Product:
        logger.info("Creating product '%s' for company %s", request.name, company_id)
        try:
            async with self._store.transaction():
                if await self._store.companies.get(company_id) is None:
                    raise NotFoundError("Company", company_id)
                if request.sku and await self._sku_taken(company_id, request.sku):
                    raise DuplicateError("sku", request.sku)
                record = await self._store.products.insert(
                    {**request.model_dump(), "company_id": company_id, "is_active": True}
                )
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while creating product")
            raise ProductError("Failed to create product", cause=exc) from exc
        return Product(**record)

    async def get(self, product_id: str, company_id: str) -> Product:
        record = await self._store.products.get(product_id)
        if record is None or record["company_id"] != company_id:
            raise NotFoundError("Product", product_id)
        return Product(**record)

    async def update(
        self, product_id: str, company_id: str, patch: ProductUpdateRequest
    ) -> Product:
        logger.info("Updating product %s", product_id)
        try:
            async with self._store.transaction():
                current = await self.get(product_id, company_id)
                changes = _patch(
                    patch,
                    frozenset({"name", "unit", "unit_price_excluding_tax", "vat_rate", "is_active"}),
                )
                sku = changes.get("sku")
                if sku and sku != current.sku and await self._sku_taken(
                    company_id, sku, exclude=product_id
                ):
                    raise DuplicateError("sku", sku)
                record = await self._store.products.update(product_id, changes)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while updating product %s", product_id)
            raise ProductError("Failed to update product", cause=exc) from exc
        return Product(**record)

    async def delete(self, product_id: str, company_id: str) -> None:
        logger.info("Deleting product %s", product_id)
        try:
            async with self._store.transaction():
                await self.get(product_id, company_id)

                def referenced(row: Record) -> bool:
                    return row.get("product_id") == product_id

                lines = await self._store.invoices.count_items(referenced)
                lines += await self._store.quotes.count_items(referenced)
                if lines:
                    await self._store.products.update(product_id, {"is_active": False})
                    logger.info(
                        "Product %s is used on %d lines; deactivated instead of deleted",
                        product_id,
                        lines,
                    )
                else:
                    await self._store.products.delete(product_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while deleting product %s", product_id)
            raise ProductError("Failed to delete product", cause=exc) from exc

    async def list(self, company_id: str, search: str | None = None) -> ProductListResponse:
        records = await self._store.products.find(
            lambda row: row["company_id"] == company_id
            and _active(row)
            and (not search or contains(search, row["name"], row.get("sku"), row.get("description")))
        )
        records.sort(key=lambda row: row["name"].lower())
        return ProductListResponse(total=len(records), items=[Product(**row) for row in records])
