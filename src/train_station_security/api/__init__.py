"""ASGI integration for FastAPI/Starlette applications."""

from train_station_security.api.middleware import (
    CSRFProtectionMiddleware,
    SecurityHeadersMiddleware,
    csrf_token_endpoint,
    install_security,
)

__all__ = [
    "CSRFProtectionMiddleware",
    "SecurityHeadersMiddleware",
    "csrf_token_endpoint",
    "install_security",
]
