"""In-process storage backing the billing services.

Every table is a dict of plain records keyed by identity. Writers are
serialized and work on a private copy of the tables which is published only
when the outermost transaction exits cleanly, so readers never observe a
half-written document. A ``transaction()`` opened while another one is
active in the same task joins it instead of starting a new one.
"""
from __future__ import annotations

import asyncio
import copy
import itertools
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

Record = Dict[str, Any]
Predicate = Callable[[Record], bool]

TABLES = (
    "companies",
    "company_settings",
    "customers",
    "products",
    "users",
    "invoices",
    "invoice_items",
    "quotes",
    "quote_items",
    "payments",
)

DEFAULT_SETTINGS: Record = {
    "invoice_prefix": "INV",
    "quote_prefix": "QUO",
    "next_invoice_number": 1,
    "next_quote_number": 1,
    "default_payment_terms": 30,
    "default_currency": "EUR",
    "default_language": "fr",
    "default_vat_rate": "STANDARD",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _always(_: Record) -> bool:
    return True


class InMemoryDatabase:
    def __init__(self) -> None:
        self._committed: Dict[str, Dict[str, Record]] = {name: {} for name in TABLES}
        self._working: ContextVar[Optional[Dict[str, Dict[str, Record]]]] = ContextVar(
            f"billing_tx_{id(self)}", default=None
        )
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    @property
    def in_transaction(self) -> bool:
        return self._working.get() is not None

    def table(self, name: str) -> Dict[str, Record]:
        working = self._working.get()
        if working is not None:
            return working[name]
        return self._committed[name]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._working.get() is not None:
            yield
            return

        async with self._get_lock():
            working = copy.deepcopy(self._committed)
            token = self._working.set(working)
            try:
                yield
            finally:
                self._working.reset(token)
            # Only reached when the block did not raise.
            self._committed = working


class _BaseRepository:
    def __init__(self, db: InMemoryDatabase, table: str, key: str, prefix: str) -> None:
        self._db = db
        self._table = table
        self._key = key
        self._prefix = prefix
        self._counter = itertools.count(1)

    def _next_id(self) -> str:
        return f"{self._prefix}_{next(self._counter):06d}"

    def _rows(self) -> Dict[str, Record]:
        return self._db.table(self._table)

    async def insert(self, record: Record) -> Record:
        async with self._db.transaction():
            record = copy.deepcopy(record)
            record.setdefault(self._key, self._next_id())
            record.setdefault("created_at", _utc_now())
            self._rows()[record[self._key]] = record
            return copy.deepcopy(record)

    async def get(self, identifier: str) -> Optional[Record]:
        record = self._rows().get(identifier)
        return copy.deepcopy(record) if record is not None else None

    async def update(self, identifier: str, changes: Record) -> Optional[Record]:
        async with self._db.transaction():
            record = self._rows().get(identifier)
            if record is None:
                return None
            record.update(copy.deepcopy(changes))
            if "updated_at" in record:
                record["updated_at"] = _utc_now()
            return copy.deepcopy(record)

    async def delete(self, identifier: str) -> bool:
        async with self._db.transaction():
            return self._rows().pop(identifier, None) is not None

    async def find(self, where: Predicate = _always) -> List[Record]:
        return [copy.deepcopy(row) for row in self._rows().values() if where(row)]

    async def find_one(self, where: Predicate) -> Optional[Record]:
        for row in self._rows().values():
            if where(row):
                return copy.deepcopy(row)
        return None

    async def count(self, where: Predicate = _always) -> int:
        return sum(1 for row in self._rows().values() if where(row))

    async def sum(self, field: str, where: Predicate = _always) -> float:
        return float(sum(row.get(field) or 0.0 for row in self._rows().values() if where(row)))

    async def group_count(self, field: str, where: Predicate = _always) -> Dict[str, int]:
        groups: Dict[str, int] = {}
        for row in self._rows().values():
            if not where(row) or row.get(field) is None:
                continue
            groups[str(row[field])] = groups.get(str(row[field]), 0) + 1
        return groups


class CompanyRepository(_BaseRepository):
    def __init__(self, db: InMemoryDatabase) -> None:
        super().__init__(db, "companies", "company_id", "cmp")

    async def create(self, record: Record, settings: Record | None = None) -> Record:
        async with self._db.transaction():
            company = await self.insert(record)
            self._db.table("company_settings")[company["company_id"]] = {
                **DEFAULT_SETTINGS,
                **(settings or {}),
                "company_id": company["company_id"],
            }
            return company

    async def get_settings(self, company_id: str) -> Optional[Record]:
        if company_id not in self._rows():
            return None
        settings = self._db.table("company_settings").get(company_id)
        if settings is None:
            async with self._db.transaction():
                settings = self._db.table("company_settings").setdefault(
                    company_id, {**DEFAULT_SETTINGS, "company_id": company_id}
                )
        return copy.deepcopy(settings)

    async def update_settings(self, company_id: str, changes: Record) -> Optional[Record]:
        if await self.get_settings(company_id) is None:
            return None
        async with self._db.transaction():
            settings = self._db.table("company_settings")[company_id]
            settings.update(copy.deepcopy(changes))
            return copy.deepcopy(settings)

    async def increment_counter(self, company_id: str, field: str) -> int:
        """Atomically bump ``field`` and return the value it held before."""

        if await self.get_settings(company_id) is None:
            raise KeyError(f"Company {company_id} not found")
        async with self._db.transaction():
            settings = self._db.table("company_settings")[company_id]
            current = int(settings[field])
            settings[field] = current + 1
            return current


class CustomerRepository(_BaseRepository):
    def __init__(self, db: InMemoryDatabase) -> None:
        super().__init__(db, "customers", "customer_id", "cus")


class ProductRepository(_BaseRepository):
    def __init__(self, db: InMemoryDatabase) -> None:
        super().__init__(db, "products", "product_id", "prd")


class UserRepository(_BaseRepository):
    def __init__(self, db: InMemoryDatabase) -> None:
        super().__init__(db, "users", "id", "usr")

    async def find_by_token(self, token: str) -> Optional[Record]:
        return await self.find_one(lambda row: row.get("token") == token)


class PaymentRepository(_BaseRepository):
    def __init__(self, db: InMemoryDatabase) -> None:
        super().__init__(db, "payments", "payment_id", "pay")

    async def list_for_invoice(self, invoice_id: str) -> List[Record]:
        payments = await self.find(lambda row: row["invoice_id"] == invoice_id)
        payments.sort(key=lambda row: row["payment_date"], reverse=True)
        return payments

    async def count_for_invoice(self, invoice_id: str) -> int:
        return await self.count(lambda row: row["invoice_id"] == invoice_id)


class DocumentRepository(_BaseRepository):
    """A header table plus an exclusively owned, ordered item table."""

    def __init__(
        self,
        db: InMemoryDatabase,
        table: str,
        key: str,
        prefix: str,
        items_table: str,
    ) -> None:
        super().__init__(db, table, key, prefix)
        self._items_table = items_table
        self._item_counter = itertools.count(1)

    def _item_rows(self) -> Dict[str, Record]:
        return self._db.table(self._items_table)

    def _insert_items(self, document_id: str, items: Iterable[Record]) -> None:
        rows = self._item_rows()
        for item in items:
            item_id = f"{self._prefix}i_{next(self._item_counter):06d}"
            rows[item_id] = {**copy.deepcopy(item), "item_id": item_id, self._key: document_id}

    async def create(self, header: Record, items: Iterable[Record]) -> Record:
        async with self._db.transaction():
            now = _utc_now()
            document = await self.insert({**header, "created_at": now, "updated_at": now})
            self._insert_items(document[self._key], items)
            return document

    async def get_items(self, document_id: str) -> List[Record]:
        items = [
            copy.deepcopy(row)
            for row in self._item_rows().values()
            if row[self._key] == document_id
        ]
        items.sort(key=lambda row: row["sort_order"])
        return items

    async def count_items(self, where: Predicate = _always) -> int:
        return sum(1 for row in self._item_rows().values() if where(row))

    async def replace_items(self, document_id: str, items: Iterable[Record]) -> None:
        async with self._db.transaction():
            rows = self._item_rows()
            for item_id in [k for k, row in rows.items() if row[self._key] == document_id]:
                del rows[item_id]
            self._insert_items(document_id, items)

    async def delete(self, identifier: str) -> bool:
        async with self._db.transaction():
            rows = self._item_rows()
            for item_id in [k for k, row in rows.items() if row[self._key] == identifier]:
                del rows[item_id]
            return self._rows().pop(identifier, None) is not None


class InvoiceRepository(DocumentRepository):
    def __init__(self, db: InMemoryDatabase) -> None:
        super().__init__(db, "invoices", "invoice_id", "inv", "invoice_items")


class QuoteRepository(DocumentRepository):
    def __init__(self, db: InMemoryDatabase) -> None:
        super().__init__(db, "quotes", "quote_id", "quo", "quote_items")


@dataclass
class BillingStore:
    db: InMemoryDatabase
    companies: CompanyRepository
    customers: CustomerRepository
    products: ProductRepository
    users: UserRepository
    invoices: InvoiceRepository
    quotes: QuoteRepository
    payments: PaymentRepository

    def transaction(self):
        return self.db.transaction()


def build_store() -> BillingStore:
    db = InMemoryDatabase()
    return BillingStore(
        db=db,
        companies=CompanyRepository(db),
        customers=CustomerRepository(db),
        products=ProductRepository(db),
        users=UserRepository(db),
        invoices=InvoiceRepository(db),
        quotes=QuoteRepository(db),
        payments=PaymentRepository(db),
    )
