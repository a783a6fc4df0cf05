import logging
import os
import re
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from slowapi.errors import RateLimitExceeded

from analysis.errors import AnalysisError
from api.auth import AuthMiddleware, REQUIRE_AUTH
from api.middleware import add_cors_middleware
from api.rate_limit import limiter, rate_limit_exceeded_handler
from api.routes import analysis_error_handler, router
from server import resolve_port, start_server
from storage import get_db, get_keychain

_logger = logging.getLogger(__name__)

_SENTRY_DSN = os.getenv("SENTRY_DSN", "")
_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Patient identifiers to scrub from error reports
_PII_PATTERNS = [
    re.compile(r"\b\d{3}\.?\d{3}\.?\d{3}-?\d{2}\b"),                       # CPF
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),                                 # SSN
    re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b"),                     # dates
    re.compile(r"\+?\d[\d\s().-]{8,}\d"),                                 # phone
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),    # email
    re.compile(r"(?i)(?:patient(?:Name)?|name)\s*[:=]\s*[^\n,;]{2,40}"),   # labeled patient name
    re.compile(r"(?i)sk-[A-Za-z0-9_-]{10,}"),                             # provider API keys
]


def scrub_pii(text: str) -> str:
    for pattern in _PII_PATTERNS:
        text = pattern.sub("[REDACTED]", text)
    return text


def _before_send(event, hint):
    if "exception" in event:
        for exc_info in event["exception"].get("values", []):
            if exc_info.get("value"):
                exc_info["value"] = scrub_pii(exc_info["value"])
    for bc in event.get("breadcrumbs", {}).get("values", []):
        if bc.get("message"):
            bc["message"] = scrub_pii(bc["message"])
    # Request bodies carry patient records and prompts.
    request = event.get("request")
    if request and "data" in request:
        request["data"] = "[REDACTED]"
    return event


def _init_sentry() -> None:
    if not _SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=_SENTRY_DSN,
        environment=os.getenv("SENTRY_ENVIRONMENT", "development"),
        integrations=[FastApiIntegration(), StarletteIntegration()],
        before_send=_before_send,
        send_default_pii=False,
    )


def _init_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, _LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize SQLite and the keychain before serving."""
    get_db()
    if not REQUIRE_AUTH:
        get_keychain()
    _logger.info("lyz analysis service ready (web mode: %s)", REQUIRE_AUTH)
    yield


def create_app() -> FastAPI:
    _init_logging()
    _init_sentry()
    app = FastAPI(title="Lyz Analysis Service", version="1.0.0", lifespan=lifespan)
    # Middleware order (inner -> outer): Auth -> CORS
    app.add_middleware(AuthMiddleware)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(AnalysisError, analysis_error_handler)
    add_cors_middleware(app)

    # Catch-all so unhandled errors still return JSON without a stack trace.
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        _logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error.", "category": "InternalError", "analysis_id": None},
        )

    app.include_router(router)
    return app


if __name__ == "__main__":
    app = create_app()
    start_server(app, resolve_port(), require_auth=REQUIRE_AUTH)
