"""Helpers shared by the invoice and quote lifecycle services."""
from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from app.schemas.billing import LineItem
from app.schemas.common import MonthlyStat, SortOrder
from app.services.calculator import calculate_totals
from app.services.exceptions import ValidationError
from app.services.store import BillingStore, Record


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


async def resolve_item_prices(
    store: BillingStore,
    company_id: str,
    items: Sequence[LineItem],
    *,
    refresh: bool = False,
) -> List[LineItem]:
    """Fill in missing unit prices from the company's product catalog.

    With ``refresh`` every item referencing a product takes the catalog's
    current price even when it already carries one.
    """

    resolved: List[LineItem] = []
    errors: Dict[str, str] = {}
    for index, item in enumerate(items):
        price = None if refresh and item.product_id else item.unit_price_excluding_tax
        if price is None and item.product_id:
            product = await store.products.get(item.product_id)
            if product is not None and product["company_id"] == company_id:
                price = product["unit_price_excluding_tax"]
                if not item.name:
                    item = item.model_copy(update={"name": product["name"]})
            elif item.unit_price_excluding_tax is None:
                errors[f"items.{index}.product_id"] = f"Product '{item.product_id}' not found"
                continue
            else:
                price = item.unit_price_excluding_tax
        if price is None:
            errors[f"items.{index}.unit_price_excluding_tax"] = (
                "A unit price or a product reference is required"
            )
            continue
        resolved.append(item.model_copy(update={"unit_price_excluding_tax": float(price)}))

    if errors:
        raise ValidationError("Invalid line items", errors)
    return resolved


def price_items(items: Sequence[LineItem]) -> Tuple[List[Record], Dict[str, float]]:
    """Compute every line and return storable item records plus header amounts."""

    calculated, totals = calculate_totals(items)
    amounts = {
        "amount_excluding_tax": totals.total_excluding_tax,
        "tax": totals.total_tax,
        "amount_including_tax": totals.total_including_tax,
    }
    return [line.as_record() for line in calculated], amounts


def contains(term: str, *values: Optional[str]) -> bool:
    needle = term.lower()
    return any(needle in value.lower() for value in values if value)


def in_range(value: Any, low: Any = None, high: Any = None) -> bool:
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def sort_records(records: List[Record], field: str, order: SortOrder) -> List[Record]:
    present = [record for record in records if record.get(field) is not None]
    missing = [record for record in records if record.get(field) is None]
    present.sort(
        key=lambda record: enum_value(record[field]),
        reverse=order == SortOrder.DESC,
    )
    return present + missing


def paginate(records: List[Record], page: int, limit: int) -> Tuple[List[Record], Dict[str, Any]]:
    total = len(records)
    total_pages = math.ceil(total / limit) if total else 0
    start = (page - 1) * limit
    meta = {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_previous_page": page > 1,
    }
    return records[start : start + limit], meta


def count_by(records: Iterable[Record], field: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for record in records:
        value = record.get(field)
        if value is None:
            continue
        key = str(enum_value(value))
        counts[key] = counts.get(key, 0) + 1
    return counts


def monthly_stats(
    records: Iterable[Record],
    date_field: str,
    *,
    paid: Callable[[Record], bool] | None = None,
    accepted: Callable[[Record], bool] | None = None,
) -> List[MonthlyStat]:
    months: Dict[str, MonthlyStat] = {}
    for record in records:
        month = record[date_field].strftime("%Y-%m")
        bucket = months.setdefault(month, MonthlyStat(month=month, count=0, amount=0.0))
        amount = record["amount_including_tax"]
        bucket.count += 1
        bucket.amount += amount
        if paid is not None and paid(record):
            bucket.paid_amount += amount
        if accepted is not None and accepted(record):
            bucket.accepted_count += 1
            bucket.accepted_amount += amount
    return [months[month] for month in sorted(months)]


def days_between(start: date | datetime, end: date | datetime) -> float:
    if isinstance(start, datetime) != isinstance(end, datetime):
        start = _as_datetime(start)
        end = _as_datetime(end)
    return (end - start).total_seconds() / 86400


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
