"""
Security components for the Train Station Dashboard.

Input sanitization, CSRF tokens, response headers, upload validation and
sessions, composed by ``SecurityMiddleware``.
"""

from train_station_security.security.csrf import CSRFTokenManager, CSRFTokenRecord
from train_station_security.security.headers import SecurityHeaders
from train_station_security.security.housekeeping import HousekeepingSweeper
from train_station_security.security.middleware import ProcessedRequest, SecurityMiddleware
from train_station_security.security.sanitization import (
    BleachMarkupStripper,
    InputSanitizer,
    MarkupStripper,
    SanitizationMode,
    sanitize_header_value,
)
from train_station_security.security.sessions import (
    SessionFailureReason,
    SessionRecord,
    SessionRegistry,
    SessionValidation,
)
from train_station_security.security.uploads import (
    FileUploadDescriptor,
    FileUploadValidator,
    FileValidationResult,
)

__all__ = [
    "BleachMarkupStripper",
    "CSRFTokenManager",
    "CSRFTokenRecord",
    "FileUploadDescriptor",
    "FileUploadValidator",
    "FileValidationResult",
    "HousekeepingSweeper",
    "InputSanitizer",
    "MarkupStripper",
    "ProcessedRequest",
    "SanitizationMode",
    "SecurityHeaders",
    "SecurityMiddleware",
    "SessionFailureReason",
    "SessionRecord",
    "SessionRegistry",
    "SessionValidation",
    "sanitize_header_value",
]
