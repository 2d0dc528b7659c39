from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    OTHER = "other"


class BulkActionFailure(BaseModel):
    id: str
    error: str


class BulkActionResult(BaseModel):
    success: int = 0
    failed: int = 0
    errors: List[BulkActionFailure] = Field(default_factory=list)


class MonthlyStat(BaseModel):
    month: str
    count: int
    amount: float
    paid_amount: float = 0.0
    accepted_count: int = 0
    accepted_amount: float = 0.0


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    errors: Optional[Dict[str, Any]] = None
