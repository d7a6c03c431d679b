"""HTTP middleware for FastAPI hosts.

SecurityHeadersMiddleware: sets the policy's security headers on every response.
CSRFProtectionMiddleware: requires a valid one-time CSRF token on state-changing requests.
"""

from typing import Iterable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from train_station_security.core.logging import (
    generate_request_id,
    get_security_logger,
    set_request_context,
)
from train_station_security.security.middleware import (
    CSRF_HEADER,
    MUTATING_METHODS,
    SESSION_HEADER,
    SecurityMiddleware,
)

security_logger = get_security_logger(__name__)

CSRF_TOKEN_PATH = "/csrf-token"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Set security headers on every response, including error responses."""

    def __init__(self, app, security: SecurityMiddleware):
        super().__init__(app)
        self._security = security

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for header, value in self._security.apply_security_headers().items():
            response.headers[header] = value
        return response


class CSRFProtectionMiddleware(BaseHTTPMiddleware):
    """Validate the session's CSRF token on state-changing requests."""

    def __init__(self, app, security: SecurityMiddleware, exempt_paths: Iterable[str] = ()):
        super().__init__(app)
        self._security = security
        self._exempt = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next):
        set_request_context(request_id=request.headers.get("X-Request-ID") or generate_request_id())

        if (
            self._security.policy.enable_csrf
            and request.method.upper() in MUTATING_METHODS
            and request.url.path not in self._exempt
        ):
            session_id = request.headers.get(SESSION_HEADER, "")
            token = request.headers.get(CSRF_HEADER)
            set_request_context(session_id=session_id)

            if not session_id or not self._security.validate_csrf_token(session_id, token):
                security_logger.authorization_failure(
                    resource=request.url.path,
                    action=request.method,
                    reason="csrf_token_missing_or_invalid",
                )
                return JSONResponse(
                    status_code=403,
                    content={"detail": "CSRF token missing or invalid"},
                )

        return await call_next(request)


def csrf_token_endpoint(security: SecurityMiddleware):
    """Build a route handler that issues a CSRF token for ``X-Session-ID``."""

    async def issue_csrf_token(request: Request):
        session_id = request.headers.get(SESSION_HEADER)
        if not session_id:
            return JSONResponse(
                status_code=400,
                content={"detail": f"{SESSION_HEADER} header is required"},
            )
        return JSONResponse(content={"csrf_token": security.generate_csrf_token(session_id)})

    return issue_csrf_token


def install_security(
    app: FastAPI,
    security: SecurityMiddleware,
    exempt_paths: Iterable[str] = (),
    token_path: str = CSRF_TOKEN_PATH,
) -> None:
    """Register the token route and both middlewares on ``app``.

    Headers are added outermost so CSRF rejections carry them too.
    """
    app.add_api_route(token_path, csrf_token_endpoint(security), methods=["GET"])
    app.add_middleware(
        CSRFProtectionMiddleware,
        security=security,
        exempt_paths=[token_path, *exempt_paths],
    )
    app.add_middleware(SecurityHeadersMiddleware, security=security)
