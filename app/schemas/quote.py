from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.billing import CustomerSummary, DocumentItem, Invoice, LineItem
from app.schemas.common import MonthlyStat, SortOrder


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    CONVERTED = "converted"


class QuoteItem(DocumentItem):
    quote_id: str


class QuoteCreateRequest(BaseModel):
    customer_id: str
    reference: Optional[str] = None
    title: Optional[str] = None
    quote_date: Optional[date] = None
    validity_date: date
    discount_amount: Optional[float] = None
    discount_percentage: Optional[float] = None
    shipping_cost: Optional[float] = None
    currency: Optional[str] = None
    exchange_rate: Optional[float] = None
    conditions: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    language: Optional[str] = None
    template_id: Optional[str] = None
    meta_data: Optional[Dict[str, Any]] = None
    items: List[LineItem] = Field(min_length=1)


class QuoteUpdateRequest(BaseModel):
    customer_id: Optional[str] = None
    reference: Optional[str] = None
    title: Optional[str] = None
    quote_date: Optional[date] = None
    validity_date: Optional[date] = None
    discount_amount: Optional[float] = None
    discount_percentage: Optional[float] = None
    shipping_cost: Optional[float] = None
    status: Optional[QuoteStatus] = None
    currency: Optional[str] = None
    exchange_rate: Optional[float] = None
    conditions: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    language: Optional[str] = None
    template_id: Optional[str] = None
    meta_data: Optional[Dict[str, Any]] = None
    items: Optional[List[LineItem]] = None


class Quote(BaseModel):
    quote_id: str
    company_id: str
    customer_id: str
    user_id: Optional[str] = None
    quote_number: str
    reference: Optional[str] = None
    title: Optional[str] = None
    quote_date: date
    validity_date: date
    amount_excluding_tax: float
    tax: float
    amount_including_tax: float
    discount_amount: float = 0.0
    discount_percentage: Optional[float] = None
    shipping_cost: float = 0.0
    status: QuoteStatus = QuoteStatus.DRAFT
    currency: str = "EUR"
    exchange_rate: Optional[float] = None
    conditions: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    language: str = "fr"
    template_id: Optional[str] = None
    meta_data: Optional[Dict[str, Any]] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    converted_to_invoice: bool = False
    invoice_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[QuoteItem] = Field(default_factory=list)
    customer: Optional[CustomerSummary] = None


class QuoteConversionRequest(BaseModel):
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_terms: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    apply_current_prices: bool = False


class QuoteConversionResponse(BaseModel):
    quote: Quote
    invoice: Invoice


class QuoteSortField(str, Enum):
    QUOTE_NUMBER = "quote_number"
    QUOTE_DATE = "quote_date"
    VALIDITY_DATE = "validity_date"
    AMOUNT_INCLUDING_TAX = "amount_including_tax"
    STATUS = "status"
    CREATED_AT = "created_at"


class QuoteListParams(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    search: Optional[str] = None
    customer_id: Optional[str] = None
    status: Optional[List[QuoteStatus]] = None
    currency: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    validity_from: Optional[date] = None
    validity_to: Optional[date] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    expired_only: bool = False
    convertible_only: bool = False
    sort_by: QuoteSortField = QuoteSortField.QUOTE_DATE
    sort_order: SortOrder = SortOrder.DESC


class QuoteListSummary(BaseModel):
    total_amount: float = 0.0
    accepted_amount: float = 0.0
    pending_amount: float = 0.0
    expired_amount: float = 0.0
    count_by_status: Dict[str, int] = Field(default_factory=dict)


class QuoteListResponse(BaseModel):
    items: List[Quote]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool
    summary: QuoteListSummary


class QuoteStats(BaseModel):
    total_quotes: int
    total_amount: float
    accepted_amount: float
    pending_amount: float
    expired_amount: float
    average_amount: float
    acceptance_rate: float
    conversion_rate: float
    average_response_time: int  # days
    status_distribution: Dict[str, int]
    monthly_stats: List[MonthlyStat]


class QuoteBulkActionType(str, Enum):
    SEND = "send"
    MARK_ACCEPTED = "mark_accepted"
    MARK_REJECTED = "mark_rejected"
    MARK_EXPIRED = "mark_expired"
    CONVERT_TO_INVOICE = "convert_to_invoice"
    DELETE = "delete"


class QuoteBulkAction(BaseModel):
    action: QuoteBulkActionType
    quote_ids: List[str] = Field(min_length=1)
    conversion_settings: Optional[QuoteConversionRequest] = None
