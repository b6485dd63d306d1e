from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ticketsale_api.core.errors import AppError
from ticketsale_api.core.settings import settings
from ticketsale_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .services.cache import build_cache_backend
from .services.checkout import CheckoutLinkStore, SaleDraftStore
from .workers import WebhookTaskQueue


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    queue: WebhookTaskQueue = app.state.webhook_queue
    queue.start()
    logger.info("Webhook queue enabled", concurrency=queue.concurrency)

    try:
        yield
    finally:
        if queue.is_running:
            await queue.stop()


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    level = "ERROR" if exc.status_code >= 500 else "WARNING"
    logger.log(
        level,
        "Request failed",
        path=request.url.path,
        code=exc.code.value,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_payload()})


def create_app() -> FastAPI:
    """Application factory for the ticket sale settlement service."""
    configure_logging(
        service_name=settings.service_name,
        environment=settings.environment,
        version=settings.version,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Ticket Sale API",
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.webhook_queue = WebhookTaskQueue(concurrency=settings.webhook_queue_concurrency)
    app.state.session_factory = _session_factory
    cache = build_cache_backend(settings.cache_backend)
    app.state.checkout_links = CheckoutLinkStore(cache)
    app.state.sale_drafts = SaleDraftStore(cache)

    app.add_exception_handler(AppError, _app_error_handler)
    app.include_router(api_router)

    return app
