"""Line-item tax, discount and total computation shared by invoices and quotes.

Amounts are plain floats and are never rounded here; rounding is left to
whatever renders them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from app.schemas.billing import LineItem

VAT_RATES = {
    "ZERO": 0.0,
    "REDUCED_1": 2.1,
    "REDUCED_2": 5.5,
    "REDUCED_3": 10.0,
    "STANDARD": 20.0,
    "EXPORT": 0.0,
}
DEFAULT_VAT_CODE = "STANDARD"
DEFAULT_VAT_RATE = VAT_RATES[DEFAULT_VAT_CODE]


def get_vat_rate_value(code: Optional[str]) -> float:
    """Return the percentage for a VAT category; unknown codes fall back to STANDARD."""

    if code is None:
        return DEFAULT_VAT_RATE
    # Category codes are matched exactly; "standard" is not STANDARD.
    return VAT_RATES.get(code, DEFAULT_VAT_RATE)


@dataclass(frozen=True)
class CalculatedItem:
    product_id: Optional[str]
    name: str
    description: Optional[str]
    quantity: float
    unit: str
    unit_price_excluding_tax: float
    discount_percentage: Optional[float]
    discount_amount: Optional[float]
    vat_rate: str
    sort_order: int
    total_excluding_tax: float
    total_including_tax: float

    @property
    def tax(self) -> float:
        return self.total_including_tax - self.total_excluding_tax

    def as_record(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "description": self.description,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_price_excluding_tax": self.unit_price_excluding_tax,
            "discount_percentage": self.discount_percentage,
            "discount_amount": self.discount_amount,
            "vat_rate": self.vat_rate,
            "sort_order": self.sort_order,
            "total_excluding_tax": self.total_excluding_tax,
            "total_including_tax": self.total_including_tax,
        }


@dataclass(frozen=True)
class DocumentTotals:
    total_excluding_tax: float = 0.0
    total_tax: float = 0.0
    total_including_tax: float = 0.0


def calculate_line(item: LineItem, index: int = 0) -> CalculatedItem:
    if item.unit_price_excluding_tax is None:
        raise ValueError("unit_price_excluding_tax must be resolved before calculation")

    line_total = item.quantity * item.unit_price_excluding_tax
    # A percentage, when present, wins over an explicit amount.
    if item.discount_percentage is not None:
        discount = line_total * item.discount_percentage / 100
    else:
        discount = item.discount_amount or 0.0
    total_excluding_tax = line_total - discount
    vat_code = item.vat_rate or DEFAULT_VAT_CODE
    vat_amount = total_excluding_tax * get_vat_rate_value(vat_code) / 100

    return CalculatedItem(
        product_id=item.product_id,
        name=item.name,
        description=item.description,
        quantity=item.quantity,
        unit=item.unit,
        unit_price_excluding_tax=item.unit_price_excluding_tax,
        discount_percentage=item.discount_percentage,
        discount_amount=item.discount_amount,
        vat_rate=vat_code,
        sort_order=index if item.sort_order is None else item.sort_order,
        total_excluding_tax=total_excluding_tax,
        total_including_tax=total_excluding_tax + vat_amount,
    )


def calculate_totals(items: Iterable[LineItem]) -> Tuple[List[CalculatedItem], DocumentTotals]:
    """Compute every line and the document totals in one pass."""

    calculated = [calculate_line(item, index) for index, item in enumerate(items)]
    totals = DocumentTotals(
        total_excluding_tax=sum(line.total_excluding_tax for line in calculated),
        total_tax=sum(line.tax for line in calculated),
        total_including_tax=sum(line.total_including_tax for line in calculated),
    )
    return calculated, totals
