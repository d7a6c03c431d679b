"""
Train Station Security

Security-hardening layer for the Train Station Dashboard venue-management
application: input sanitization, CSRF protection, security headers, file
upload validation and session management behind a single middleware.

Version: 0.1.0
"""

__version__ = "0.1.0"
__description__ = "Security middleware for the Train Station Dashboard"

# Core imports for easy access
from train_station_security.config.settings import SecurityPolicy, Settings, get_settings
from train_station_security.core.logging import get_logger, setup_logging
from train_station_security.security.middleware import SecurityMiddleware

__all__ = [
    "__version__",
    "__description__",
    "SecurityMiddleware",
    "SecurityPolicy",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
