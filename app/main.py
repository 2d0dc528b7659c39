from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.clients.identity import IdentityServiceClient
from app.config import Settings, get_settings
from app.health import router as health_router
from app.routers.companies import router as companies_router
from app.routers.customers import router as customers_router
from app.routers.invoices import router as invoices_router
from app.routers.products import router as products_router
from app.routers.quotes import router as quotes_router
from app.schemas.common import ErrorResponse
from app.services.auth import AuthService
from app.services.cache import CacheService, InMemoryCacheBackend
from app.services.directory import CompanyService, CustomerService, ProductService
from app.services.exceptions import ServiceError
from app.services.invoice import InvoiceService
from app.services.quote import QuoteService
from app.services.sequence import SequenceGenerator
from app.services.store import BillingStore, build_store


def configure_logging() -> None:
    """Ensure application logs use the INFO level by default."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(logging.INFO)

# Configure logging as soon as the module is loaded
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    settings: Settings = app.state.settings
    settings_snapshot = settings.model_dump(
        exclude={"identity_api_key", "identity_service_key"},
    )
    logger.info("Application settings on startup: %s", settings_snapshot)
    logger.info("Application startup complete.")

    try:
        yield
    finally:
        logger.info("Closing identity client connection.")
        await app.state.identity_client.close()
        logger.info("Application shutdown complete.")


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected: %s %s", request.method, request.url.path, exc.code, exc.message)
    body = ErrorResponse(error=exc.code, message=exc.message, errors=exc.details or None)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = {
        ".".join(str(part) for part in error["loc"]): error["msg"] for error in exc.errors()
    }
    logger.warning("%s %s invalid request: %s", request.method, request.url.path, errors)
    body = ErrorResponse(
        error="VALIDATION_ERROR",
        message="Request validation failed",
        errors={"errors": errors},
    )
    return JSONResponse(status_code=422, content=body.model_dump(mode="json"))


def create_app(
    settings: Settings | None = None,
    *,
    store: BillingStore | None = None,
    identity_client: IdentityServiceClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or build_store()
    identity_client = identity_client or IdentityServiceClient(
        settings.identity_base_url,
        api_key=settings.identity_api_key,
        service_key=settings.identity_service_key,
        timeout=settings.identity_timeout,
        use_mock_data=settings.use_mock_data,
    )
    cache = CacheService(
        InMemoryCacheBackend(),
        enabled=settings.cache_enabled,
        default_ttl=settings.cache_default_ttl,
        entity_ttl=settings.cache_entity_ttl,
        list_ttl=settings.cache_list_ttl,
        stats_ttl=settings.cache_stats_ttl,
    )
    sequence = SequenceGenerator(store)
    invoice_service = InvoiceService(store, cache, sequence=sequence)

    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
        redirect_slashes=False,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.identity_client = identity_client
    app.state.auth_service = AuthService(identity_client, store)
    app.state.company_service = CompanyService(
        store,
        defaults={
            "default_currency": settings.default_currency,
            "default_language": settings.default_language,
            "default_payment_terms": settings.default_payment_terms,
        },
    )
    app.state.customer_service = CustomerService(store)
    app.state.product_service = ProductService(store)
    app.state.invoice_service = invoice_service
    app.state.quote_service = QuoteService(store, cache, invoice_service, sequence=sequence)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(health_router)
    app.include_router(companies_router, prefix="/companies")
    app.include_router(customers_router, prefix="/customers")
    app.include_router(products_router, prefix="/products")
    app.include_router(invoices_router, prefix="/invoices")
    app.include_router(quotes_router, prefix="/quotes")
    return app


app = create_app()
