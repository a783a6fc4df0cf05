"""Per-professional throttling of analysis runs (slowapi).

Runs are keyed by clinic and professional so one clinic cannot exhaust
another's budget. The limiter only runs in web mode.
"""

import os

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

REQUIRE_AUTH = os.getenv("REQUIRE_AUTH", "").lower() == "true"

ANALYZE_RATE_LIMIT = os.getenv("ANALYZE_RATE_LIMIT", "30/minute")


def professional_key(request: Request) -> str:
    """``company:user`` for authenticated calls, else the client address."""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        return get_remote_address(request)
    company_id = getattr(request.state, "company_id", None) or "-"
    return f"{company_id}:{user_id}"


limiter = Limiter(key_func=professional_key, enabled=REQUIRE_AUTH)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the same body shape as analysis failures."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Too many analysis runs. Please wait before starting another.",
            "category": "RateLimited",
            "analysis_id": None,
            "retry_after": exc.detail,
        },
    )
