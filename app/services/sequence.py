from __future__ import annotations

import logging
from typing import Literal

from app.services.exceptions import NotFoundError
from app.services.store import BillingStore

logger = logging.getLogger(__name__)

DocumentKind = Literal["invoice", "quote"]

_COUNTER_FIELDS = {
    "invoice": ("invoice_prefix", "next_invoice_number"),
    "quote": ("quote_prefix", "next_quote_number"),
}


def format_document_number(prefix: str, counter: int) -> str:
    return f"{prefix}-{counter:04d}"


class SequenceGenerator:
    """Hands out per-company document numbers from the persisted counters.

    The counter is read and bumped inside a storage transaction. When called
    from within an enclosing transaction (a document create) the increment
    commits or rolls back together with the document.
    """

    def __init__(self, store: BillingStore) -> None:
        self._store = store

    async def next_number(self, company_id: str, kind: DocumentKind) -> str:
        prefix_field, counter_field = _COUNTER_FIELDS[kind]
        async with self._store.transaction():
            settings = await self._store.companies.get_settings(company_id)
            if settings is None:
                raise NotFoundError("Company", company_id)
            counter = await self._store.companies.increment_counter(company_id, counter_field)
        number = format_document_number(settings[prefix_field], counter)
        logger.debug("Issued %s number %s for company %s", kind, number, company_id)
        return number
