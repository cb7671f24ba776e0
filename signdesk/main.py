"""SignDesk - subscription agreement signing API."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from signdesk import __version__
from signdesk.api.api_v1 import api_router
from signdesk.core.config import settings
from signdesk.core.database import init_db, test_connection
from signdesk.core.rate_limit import RateLimitExceeded
from signdesk.core.responses import error_response, success_response
from signdesk.core.results import ContractStateError

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("signdesk")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME} {__version__}")
    init_db()
    if not test_connection():
        logger.error("Database is not reachable; requests will fail until it is")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{location}: {err.get('msg')}" if location else err.get("msg", "Invalid request"))
    return "; ".join(parts) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(str(exc.detail), exc.status_code, getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        message = _validation_message(exc)
        logger.info(f"Rejected payload on {request.url.path}: {message}")
        return error_response(message, 400)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return error_response(str(exc), 429, {"Retry-After": str(exc.retry_after)})

    @app.exception_handler(ContractStateError)
    async def contract_state_handler(request: Request, exc: ContractStateError):
        logger.error(f"Illegal contract state refused on {request.url.path}: {exc}")
        return error_response("Internal Server Error", 500)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global handler to catch all unhandled exceptions."""
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return error_response("Internal Server Error", 500)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Subscription agreement review and e-signature service",
        version=__version__,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/health")
    async def health():
        return success_response({"name": settings.APP_NAME, "version": __version__, "status": "running"})

    return app


app = create_app()
