"""Configuration for the security layer."""

from train_station_security.config.settings import (
    SecurityPolicy,
    Settings,
    get_settings,
    validate_required_settings,
)

__all__ = ["SecurityPolicy", "Settings", "get_settings", "validate_required_settings"]
