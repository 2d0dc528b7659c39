from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class CompanyCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    siret: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None


class CompanyUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    siret: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None


class Company(CompanyCreateRequest):
    company_id: str
    is_active: bool = True
    created_at: datetime


class CompanySettings(BaseModel):
    company_id: str
    invoice_prefix: str = "INV"
    quote_prefix: str = "QUO"
    next_invoice_number: int = 1
    next_quote_number: int = 1
    default_payment_terms: int = 30
    default_currency: str = "EUR"
    default_language: str = "fr"
    default_vat_rate: str = "STANDARD"


class CompanySettingsUpdate(BaseModel):
    """Counters are not part of the patch: they only move through numbering."""

    invoice_prefix: Optional[str] = Field(default=None, min_length=1)
    quote_prefix: Optional[str] = Field(default=None, min_length=1)
    default_payment_terms: Optional[int] = Field(default=None, ge=0)
    default_currency: Optional[str] = None
    default_language: Optional[str] = None
    default_vat_rate: Optional[str] = None


class CustomerType(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"


class CustomerCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    type: CustomerType = CustomerType.COMPANY
    address: Optional[str] = None


class CustomerUpdateRequest(BaseModel):
    """Customer type is fixed at creation."""

    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    is_active: Optional[bool] = None


class Customer(CustomerCreateRequest):
    customer_id: str
    company_id: str
    is_active: bool = True
    created_at: datetime


class CustomerListResponse(BaseModel):
    total: int
    items: List[Customer]


class ProductCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    sku: Optional[str] = None
    description: Optional[str] = None
    unit: str = "unit"
    unit_price_excluding_tax: float = Field(ge=0)
    vat_rate: str = "STANDARD"


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    sku: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    unit_price_excluding_tax: Optional[float] = Field(default=None, ge=0)
    vat_rate: Optional[str] = None
    is_active: Optional[bool] = None


class Product(ProductCreateRequest):
    product_id: str
    company_id: str
    is_active: bool = True
    created_at: datetime


class ProductListResponse(BaseModel):
    total: int
    items: List[Product]
