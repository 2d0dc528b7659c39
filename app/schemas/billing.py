from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.common import MonthlyStat, PaymentMethod, SortOrder


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERPAID = "overpaid"
    REFUNDED = "refunded"
    FAILED = "failed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class LineItem(BaseModel):
    """A line as submitted by the caller; totals are always derived."""

    product_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    quantity: float = Field(gt=0)
    unit: str = "unit"
    unit_price_excluding_tax: Optional[float] = Field(default=None, ge=0)
    discount_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    discount_amount: Optional[float] = Field(default=None, ge=0)
    vat_rate: Optional[str] = None  # category code, e.g. "STANDARD"
    sort_order: Optional[int] = None


class DocumentItem(BaseModel):
    item_id: str
    product_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    quantity: float
    unit: str = "unit"
    unit_price_excluding_tax: float
    discount_percentage: Optional[float] = None
    discount_amount: Optional[float] = None
    vat_rate: str
    total_excluding_tax: float
    total_including_tax: float
    sort_order: int


class InvoiceItem(DocumentItem):
    invoice_id: str


class Payment(BaseModel):
    payment_id: str
    invoice_id: str
    payment_date: datetime
    amount: float
    currency: str
    payment_method: PaymentMethod = PaymentMethod.CASH
    reference: Optional[str] = None
    status: str = "completed"
    created_at: datetime


class CustomerSummary(BaseModel):
    customer_id: str
    name: str
    email: Optional[str] = None
    type: str = "company"


class InvoiceCreateRequest(BaseModel):
    customer_id: str
    reference: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    discount_amount: Optional[float] = None
    discount_percentage: Optional[float] = None
    shipping_cost: Optional[float] = None
    currency: Optional[str] = None
    exchange_rate: Optional[float] = None
    conditions: Optional[str] = None
    late_payment_penalty: Optional[str] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    language: Optional[str] = None
    template_id: Optional[str] = None
    meta_data: Optional[Dict[str, Any]] = None
    items: List[LineItem] = Field(min_length=1)


class InvoiceUpdateRequest(BaseModel):
    customer_id: Optional[str] = None
    reference: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    discount_amount: Optional[float] = None
    discount_percentage: Optional[float] = None
    shipping_cost: Optional[float] = None
    status: Optional[InvoiceStatus] = None
    payment_method: Optional[PaymentMethod] = None
    currency: Optional[str] = None
    exchange_rate: Optional[float] = None
    conditions: Optional[str] = None
    late_payment_penalty: Optional[str] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    language: Optional[str] = None
    template_id: Optional[str] = None
    meta_data: Optional[Dict[str, Any]] = None
    items: Optional[List[LineItem]] = None


class Invoice(BaseModel):
    invoice_id: str
    company_id: str
    customer_id: str
    user_id: Optional[str] = None
    invoice_number: str
    reference: Optional[str] = None
    invoice_date: date
    due_date: date
    amount_excluding_tax: float
    tax: float
    amount_including_tax: float
    discount_amount: float = 0.0
    discount_percentage: Optional[float] = None
    shipping_cost: float = 0.0
    status: InvoiceStatus = InvoiceStatus.DRAFT
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_method: Optional[PaymentMethod] = None
    currency: str = "EUR"
    exchange_rate: Optional[float] = None
    conditions: Optional[str] = None
    late_payment_penalty: Optional[str] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    language: str = "fr"
    template_id: Optional[str] = None
    meta_data: Optional[Dict[str, Any]] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    items: List[InvoiceItem] = Field(default_factory=list)
    payments: List[Payment] = Field(default_factory=list)
    customer: Optional[CustomerSummary] = None


class PaymentData(BaseModel):
    payment_date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    amount: Optional[float] = Field(default=None, gt=0)


class InvoiceSortField(str, Enum):
    INVOICE_NUMBER = "invoice_number"
    INVOICE_DATE = "invoice_date"
    DUE_DATE = "due_date"
    AMOUNT_INCLUDING_TAX = "amount_including_tax"
    STATUS = "status"
    CREATED_AT = "created_at"


class InvoiceListParams(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    search: Optional[str] = None
    customer_id: Optional[str] = None
    status: Optional[List[InvoiceStatus]] = None
    payment_status: Optional[List[PaymentStatus]] = None
    payment_method: Optional[List[PaymentMethod]] = None
    currency: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    due_date_from: Optional[date] = None
    due_date_to: Optional[date] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    overdue_only: bool = False
    paid_only: bool = False
    sort_by: InvoiceSortField = InvoiceSortField.INVOICE_DATE
    sort_order: SortOrder = SortOrder.DESC


class InvoiceListSummary(BaseModel):
    total_amount: float = 0.0
    paid_amount: float = 0.0
    pending_amount: float = 0.0
    overdue_amount: float = 0.0
    count_by_status: Dict[str, int] = Field(default_factory=dict)


class InvoiceListResponse(BaseModel):
    items: List[Invoice]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool
    summary: InvoiceListSummary


class InvoiceStats(BaseModel):
    total_invoices: int
    total_amount: float
    paid_amount: float
    pending_amount: float
    overdue_amount: float
    average_amount: float
    average_payment_delay: int
    conversion_rate: float
    status_distribution: Dict[str, int]
    payment_method_distribution: Dict[str, int]
    monthly_stats: List[MonthlyStat]


class InvoiceBulkActionType(str, Enum):
    SEND = "send"
    MARK_PAID = "mark_paid"
    MARK_CANCELLED = "mark_cancelled"
    DELETE = "delete"


class InvoiceBulkAction(BaseModel):
    action: InvoiceBulkActionType
    invoice_ids: List[str] = Field(min_length=1)
    options: Optional[PaymentData] = None
