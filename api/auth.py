"""JWT authentication and tenancy middleware.

In desktop mode (REQUIRE_AUTH not set) every request runs as the local user
(LYZ_LOCAL_USER_ID) of the local company (LYZ_LOCAL_COMPANY_ID) with the
superadmin role. In web mode, validates HS256 bearer tokens signed with
AUTH_JWT_SECRET and reads user, company and role from the claims.
"""

import logging
import os

import jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

_logger = logging.getLogger(__name__)

REQUIRE_AUTH = os.getenv("REQUIRE_AUTH", "").lower() == "true"
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "")
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "") or None
LOCAL_COMPANY_ID = os.getenv("LYZ_LOCAL_COMPANY_ID", "local")
LOCAL_USER_ID = os.getenv("LYZ_LOCAL_USER_ID", "local-user")

if REQUIRE_AUTH and not AUTH_JWT_SECRET:
    raise ValueError("AUTH_JWT_SECRET must be set when REQUIRE_AUTH=true")

ROLE_SUPERADMIN = "superadmin"
ROLE_ADMIN = "admin"
ROLE_PROFESSIONAL = "professional"
_ROLES = {ROLE_SUPERADMIN, ROLE_ADMIN, ROLE_PROFESSIONAL}

_PUBLIC_PATHS = ("/health",)


def _decode_token(token: str) -> dict:
    """Decode an HS256 JWT. Requires sub and exp."""
    options = {"require": ["sub", "exp"]}
    if AUTH_JWT_AUDIENCE:
        return jwt.decode(
            token, AUTH_JWT_SECRET, algorithms=["HS256"],
            audience=AUTH_JWT_AUDIENCE, options=options,
        )
    return jwt.decode(token, AUTH_JWT_SECRET, algorithms=["HS256"], options=options)


def _set_identity(request: Request, user_id, company_id, role) -> None:
    request.state.user_id = user_id
    request.state.company_id = company_id
    request.state.role = role


class AuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Desktop mode: single local tenant
        if not REQUIRE_AUTH:
            _set_identity(request, LOCAL_USER_ID, LOCAL_COMPANY_ID, ROLE_SUPERADMIN)
            return await call_next(request)

        # Skip auth for health check and CORS preflight
        if request.url.path in _PUBLIC_PATHS or request.method == "OPTIONS":
            _set_identity(request, None, None, None)
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return JSONResponse(
                {"detail": "Missing authorization header"}, status_code=401
            )

        token = auth_header[7:]
        try:
            payload = _decode_token(token)
        except jwt.ExpiredSignatureError:
            return JSONResponse({"detail": "Token expired"}, status_code=401)
        except jwt.InvalidTokenError:
            return JSONResponse({"detail": "Invalid token"}, status_code=401)

        company_id = payload.get("company")
        if not company_id:
            return JSONResponse(
                {"detail": "Invalid token: missing company"}, status_code=401
            )
        role = payload.get("role", ROLE_PROFESSIONAL)
        if role not in _ROLES:
            _logger.warning("Token for %s carries unknown role %r", payload["sub"], role)
            role = ROLE_PROFESSIONAL

        _set_identity(request, payload["sub"], company_id, role)
        return await call_next(request)
