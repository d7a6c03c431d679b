"""
Pytest configuration and fixtures for Train Station Security tests.

This module provides common test fixtures and configuration
for the entire test suite.
"""

import os
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from train_station_security.config.settings import SecurityPolicy, Settings
from train_station_security.core.logging import setup_logging
from train_station_security.security.middleware import SecurityMiddleware


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    setup_logging(log_level="DEBUG", environment="testing")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> SecurityPolicy:
    """Default security policy, independent of the environment."""
    return SecurityPolicy(_env_file=None)


@pytest.fixture
def client_store() -> dict:
    return {}


@pytest.fixture
def middleware(policy, clock, client_store) -> SecurityMiddleware:
    """Middleware wired to the fake clock and an in-memory client store."""
    return SecurityMiddleware(policy, clock=clock, client_store=client_store)


@pytest.fixture
def test_settings() -> Generator[Settings, None, None]:
    """Create test settings with safe defaults."""
    test_env = {
        "ENVIRONMENT": "testing",
        "DEBUG": "true",
        "LOG_LEVEL": "DEBUG",
    }

    # Temporarily set environment variables
    original_env = {}
    for key, value in test_env.items():
        original_env[key] = os.environ.get(key)
        os.environ[key] = value

    try:
        # Clear the settings cache and create new settings
        from train_station_security.config.settings import get_settings
        get_settings.cache_clear()
        settings = get_settings()
        yield settings
    finally:
        # Restore original environment variables
        for key, value in original_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

        # Clear the cache again
        get_settings.cache_clear()


@pytest.fixture
def xss_payloads():
    """Script-injection payloads, including common evasion variants."""
    return [
        "<script>alert('XSS')</script>",
        "<SCRIPT>alert('XSS')</SCRIPT>",
        "<ScRiPt>alert('XSS')</sCrIpT>",
        "<scr<script>ipt>alert('XSS')</script>",
        "<script>alert('unclosed')",
        "&lt;script&gt;alert('XSS')&lt;/script&gt;",
        "&amp;lt;script&amp;gt;alert(1)&amp;lt;/script&amp;gt;",
        "<scr\u200bipt>alert('XSS')</scr\u200bipt>",
        "<img src=x onerror=alert('XSS')>",
        "<svg onload=alert('XSS')>",
        "<body onload=alert('XSS')>",
        "<a href=\"javascript:alert('XSS')\">click</a>",
        "javascript:alert('XSS')",
        "JaVaScRiPt:alert('XSS')",
        "vbscript:msgbox('XSS')",
        "<iframe src=\"javascript:alert('XSS')\"></iframe>",
        "<div style=\"background:url(javascript:alert('XSS'))\">x</div>",
        "\"><script>alert(String.fromCharCode(88,83,83))</script>",
        "<input onfocus=alert(1) autofocus>",
        "<object data=\"data:text/html;base64,PHNjcmlwdD5hbGVydCgxKTwvc2NyaXB0Pg==\"></object>",
    ]


@pytest.fixture
def sql_payloads():
    """SQL-injection-shaped strings."""
    return [
        "'; DROP TABLE users; --",
        "1' OR '1'='1",
        "1; DELETE FROM events WHERE 1=1",
        "admin'--",
        "1 UNION SELECT password FROM users",
        "x'; EXEC xp_cmdshell('dir'); --",
        "1; UpDaTe staff SET role='admin'",
        "DR;OP TABLE artists",
        "/* comment */ SELECT * FROM venues",
    ]


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "security: mark test as a security test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on file location."""
    for item in items:
        # Add unit marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add security marker to tests in security/ directory
        elif "security" in str(item.fspath):
            item.add_marker(pytest.mark.security)
