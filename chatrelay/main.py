from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from chatrelay.api.routes import blog, chat, history
from chatrelay.core.config import settings
from chatrelay.core.errors import ChatRelayError, DependencyFailure, InternalError, RateLimited
from chatrelay.core.limiter import CooldownRateLimiter, build_request_limiter
from chatrelay.core.logging import logger
from chatrelay.services.context_service import ContextAssembler
from chatrelay.services.database_service import DatabaseService
from chatrelay.services.embedding_service import EmbeddingProvider
from chatrelay.services.exchange import ExchangeCoordinator
from chatrelay.services.llm_service import GenerationProvider
from chatrelay.services.session_resolver import SessionResolver

SHUTDOWN_DRAIN_SECONDS = 30.0


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatRelayError)
    async def chat_relay_error_handler(request: Request, exc: ChatRelayError):
        if isinstance(exc, DependencyFailure):
            logger.error("dependency_failure", path=request.url.path, detail=exc.detail)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Invalid request body"
        if errors:
            message = str(errors[0].get("msg", message)).removeprefix("Value error, ")
        return _error(400, message)

    @app.exception_handler(RateLimitExceeded)
    async def request_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.info("request_limit_exceeded", path=request.url.path, limit=str(exc.detail))
        return _error(429, RateLimited.public_message)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path, error_type=type(exc).__name__)
        error = InternalError()
        return _error(error.status_code, error.message)


def create_app(
    store: Optional[DatabaseService] = None,
    generator: Optional[GenerationProvider] = None,
    embedder: Optional[EmbeddingProvider] = None,
    rate_limiter: Optional[CooldownRateLimiter] = None,
    context_strategy: Optional[str] = None,
) -> FastAPI:
    """
    Build the app and wire its components. Anything not injected is built from settings.

    Run with: uvicorn --factory chatrelay.main:create_app
    """
    strategy = context_strategy or settings.CONTEXT_STRATEGY
    if store is None:
        store = DatabaseService()
    if rate_limiter is None:
        rate_limiter = CooldownRateLimiter()

    if generator is None:
        from chatrelay.services.llm_service import LLMService
        generator = LLMService()
    if embedder is None and strategy == "semantic":
        from chatrelay.services.embedding_service import EmbeddingService
        embedder = EmbeddingService()

    assembler = ContextAssembler(store, strategy=strategy, embedder=embedder)
    coordinator = ExchangeCoordinator(
        rate_limiter=rate_limiter,
        resolver=SessionResolver(store),
        store=store,
        assembler=assembler,
        generator=generator,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rate_limiter.start()
        logger.info("application_startup", environment=settings.ENVIRONMENT.value, context_strategy=strategy)
        yield
        await rate_limiter.stop()
        await coordinator.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        logger.info("application_shutdown")

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.state.store = store
    app.state.rate_limiter = rate_limiter
    app.state.coordinator = coordinator
    app.state.generator = generator

    # slowapi: coarse per-IP ceiling on every route
    app.state.limiter = build_request_limiter()
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)
    app.include_router(chat.router)
    app.include_router(history.router)
    app.include_router(blog.router)

    @app.get("/health")
    async def health():
        database_ok = await store.health_check()
        return JSONResponse(
            status_code=200 if database_ok else 503,
            content={"status": "healthy" if database_ok else "degraded",
                     "database": "healthy" if database_ok else "unreachable"},
        )

    return app
