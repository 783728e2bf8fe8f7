"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, cast

from fastapi import APIRouter, FastAPI, Request
from starlette.responses import JSONResponse, Response
import structlog

from .api.routes import feedback_router, retrieval_router, state_router
from .config import load_settings
from .core.errors import AppError, app_error_handler
from .observability import MetricsConfig, create_metrics_endpoint, set_cache_size
from .orchestrator import AdaptiveRetrievalLoop
from .retrieval.keyword_retriever import KeywordRetriever

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the adaptive retrieval loop on startup and drains the reward bus
    on shutdown. Services are stored in app.state for dependency injection.
    """
    settings = getattr(app.state, "settings", None) or load_settings()
    app.state.settings = settings

    retriever = KeywordRetriever()
    app.state.keyword_retriever = retriever
    app.state.adaptive_loop = AdaptiveRetrievalLoop.build(settings, retriever)
    await app.state.adaptive_loop.start()

    yield

    if getattr(app.state, "adaptive_loop", None) is not None:
        await app.state.adaptive_loop.stop(drain=True)
    logger.info("adaptive_services_closed")


def _refresh_cache_gauge(app: FastAPI) -> None:
    loop = getattr(app.state, "adaptive_loop", None)
    if loop is not None:
        set_cache_size(loop.cache.stats().entries)


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    settings = load_settings()
    app = FastAPI(
        title="Adaptive RAG Backend",
        version="0.1.0",
        description="Feedback-driven retrieval tuning and semantic answer caching",
        lifespan=lifespan,
    )
    app.state.settings = settings
    install_middleware(app)

    app.add_exception_handler(
        AppError,
        cast(Callable[[Request, Exception], Awaitable[Response]], app_error_handler),
    )

    app.include_router(router)
    app.include_router(feedback_router, prefix="/api/v1")
    app.include_router(retrieval_router, prefix="/api/v1")
    app.include_router(state_router, prefix="/api/v1")

    create_metrics_endpoint(
        app,
        MetricsConfig(enabled=settings.metrics_enabled, path=settings.metrics_path),
        on_scrape=_refresh_cache_gauge,
    )
    return app


router = APIRouter()


def install_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def enforce_request_size(request: Request, call_next):
        settings = request.app.state.settings
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                if int(content_length) > settings.request_max_bytes:
                    return JSONResponse(
                        status_code=413,
                        content={"detail": "Request body too large"},
                    )
            except ValueError:
                return JSONResponse(
                    status_code=400,
                    content={"detail": "Invalid content-length header"},
                )
        return await call_next(request)


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint."""
    loop = getattr(request.app.state, "adaptive_loop", None)
    return {
        "status": "ok",
        "feedback_loop": bool(loop is not None and loop.enabled and loop.started),
    }


def run() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "adaptive_rag_backend.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
    )


app = create_app()
