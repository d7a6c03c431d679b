"""
Core exception classes for the Train Station security layer.

This module defines custom exceptions used throughout the package
for better error handling and debugging.
"""


class TrainStationSecurityError(Exception):
    """Base exception for all Train Station security errors."""
    pass


class ConfigurationError(TrainStationSecurityError):
    """Raised when there's a configuration error."""
    pass


class ValidationError(TrainStationSecurityError):
    """Raised when caller-supplied input fails validation."""
    pass


class ExternalAPIError(TrainStationSecurityError):
    """Raised when an outbound request fails at the transport level."""
    pass
