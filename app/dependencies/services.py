from __future__ import annotations

from fastapi import Request

from app.services import (
    AuthService,
    CompanyService,
    CustomerService,
    InvoiceService,
    ProductService,
    QuoteService,
)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_company_service(request: Request) -> CompanyService:
    return request.app.state.company_service


def get_customer_service(request: Request) -> CustomerService:
    return request.app.state.customer_service


def get_product_service(request: Request) -> ProductService:
    return request.app.state.product_service


def get_invoice_service(request: Request) -> InvoiceService:
    return request.app.state.invoice_service


def get_quote_service(request: Request) -> QuoteService:
    return request.app.state.quote_service
