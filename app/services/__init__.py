"""Service package public API definitions.

Service implementations are imported lazily on first access so that
``app.services.exceptions`` can be imported by the HTTP clients without
pulling in the services that themselves depend on those clients.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "AuthService",
    "CacheService",
    "CompanyService",
    "CustomerService",
    "InvoiceService",
    "ProductService",
    "QuoteService",
    "SequenceGenerator",
]

_SERVICE_MODULES = {
    "AuthService": "auth",
    "CacheService": "cache",
    "CompanyService": "directory",
    "CustomerService": "directory",
    "InvoiceService": "invoice",
    "ProductService": "directory",
    "QuoteService": "quote",
    "SequenceGenerator": "sequence",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .auth import AuthService as AuthService
    from .cache import CacheService as CacheService
    from .directory import CompanyService as CompanyService
    from .directory import CustomerService as CustomerService
    from .directory import ProductService as ProductService
    from .invoice import InvoiceService as InvoiceService
    from .quote import QuoteService as QuoteService
    from .sequence import SequenceGenerator as SequenceGenerator
