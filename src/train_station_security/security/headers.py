"""Security response headers."""

from typing import Dict, Optional

from train_station_security.config.settings import SecurityPolicy
from train_station_security.security.sanitization import sanitize_header_value


class SecurityHeaders:
    """Build the hardening headers attached to every response."""

    def __init__(self, policy: Optional[SecurityPolicy] = None):
        self.policy = policy or SecurityPolicy()

    def content_security_policy(self) -> str:
        return "; ".join(
            f"{directive} {sources}".strip()
            for directive, sources in self.policy.csp_directives.items()
        )

    def strict_transport_security(self) -> str:
        return f"max-age={self.policy.hsts_max_age}; includeSubDomains; preload"

    def permissions_policy(self) -> str:
        return ", ".join(f"{feature}=()" for feature in self.policy.permissions_policy_denied)

    def get_headers(self) -> Dict[str, str]:
        """
        Get the security headers for the current policy.

        Returns:
            Dict[str, str]: Header name to value, empty when headers are disabled.
        """
        if not self.policy.enable_security_headers:
            return {}

        headers = {
            "Content-Security-Policy": self.content_security_policy(),
            "Strict-Transport-Security": self.strict_transport_security(),
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "X-XSS-Protection": "1; mode=block",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Permissions-Policy": self.permissions_policy(),
        }

        return {name: sanitize_header_value(value) for name, value in headers.items()}
