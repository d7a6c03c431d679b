"""
Security middleware façade.

``SecurityMiddleware`` composes the sanitizer, CSRF manager, header
generator, upload validator and session registry behind one policy, and
owns the housekeeping sweep that expires their records.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
    Union,
)
from urllib.parse import parse_qsl

import httpx

from train_station_security.config.settings import SecurityPolicy, get_settings
from train_station_security.core.exceptions import ExternalAPIError, ValidationError
from train_station_security.core.logging import (
    get_logger,
    get_performance_logger,
    log_execution_time,
    set_request_context,
)
from train_station_security.security.csrf import CSRFTokenManager
from train_station_security.security.headers import SecurityHeaders
from train_station_security.security.housekeeping import HousekeepingSweeper
from train_station_security.security.sanitization import InputSanitizer, SanitizationMode
from train_station_security.security.sessions import SessionRegistry, SessionValidation
from train_station_security.security.uploads import (
    FileUploadDescriptor,
    FileUploadValidator,
    FileValidationResult,
)

logger = get_logger(__name__)
performance_logger = get_performance_logger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
BODYLESS_METHODS = frozenset({"GET", "HEAD"})

CSRF_HEADER = "X-CSRF-Token"
SESSION_HEADER = "X-Session-ID"

UrlParams = Union[str, Mapping[str, Any], Iterable[Tuple[str, Any]]]


@dataclass
class ProcessedRequest:
    """Result of screening an inbound request."""

    security_headers: Dict[str, str]
    sanitized_body: Any = None
    csrf_token: Optional[str] = None
    errors: List[str] = field(default_factory=list)


class SecurityMiddleware:
    """Security layer for the dashboard's requests and responses."""

    def __init__(
        self,
        policy: Optional[SecurityPolicy] = None,
        *,
        sanitizer: Optional[InputSanitizer] = None,
        csrf: Optional[CSRFTokenManager] = None,
        headers: Optional[SecurityHeaders] = None,
        uploads: Optional[FileUploadValidator] = None,
        sessions: Optional[SessionRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        client_store: Optional[MutableMapping[str, str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.policy = policy or get_settings().security
        self.sanitizer = sanitizer or InputSanitizer(self.policy)
        self.csrf = csrf or CSRFTokenManager(
            ttl_seconds=self.policy.csrf_token_ttl_seconds, clock=clock
        )
        self.headers = headers or SecurityHeaders(self.policy)
        self.uploads = uploads or FileUploadValidator(self.policy, self.sanitizer)
        self.sessions = sessions or SessionRegistry(
            max_age_seconds=self.policy.session_max_age_seconds,
            max_idle_seconds=self.policy.session_max_idle_seconds,
            enforce_ip_binding=self.policy.enforce_ip_binding,
            enforce_user_agent_binding=self.policy.enforce_user_agent_binding,
            clock=clock,
        )
        self.http_client = http_client
        self.client_store: MutableMapping[str, str] = (
            client_store if client_store is not None else {}
        )
        self.sweeper = HousekeepingSweeper(
            [("csrf_tokens", self.csrf.cleanup), ("sessions", self.sessions.cleanup)],
            interval_seconds=self.policy.sweep_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start periodic cleanup of expired tokens and sessions."""
        await self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()

    def sweep(self) -> Dict[str, int]:
        """Run one cleanup pass immediately."""
        return self.sweeper.run_once()

    # ------------------------------------------------------------------
    # Sanitization
    # ------------------------------------------------------------------

    @log_execution_time("sanitize_form_data")
    def sanitize_form_data(self, data: Any) -> Any:
        """Sanitize every string in submitted form data."""
        if not self.policy.enable_input_sanitization:
            return data

        return self.sanitizer.sanitize(data, SanitizationMode.TEXT)

    def sanitize_url_params(self, params: UrlParams) -> List[Tuple[str, str]]:
        """
        Sanitize query parameter names and values.

        Args:
            params: A query string, a mapping (list values repeat the key) or
                an iterable of ``(name, value)`` pairs.

        Returns:
            List[Tuple[str, str]]: Sanitized pairs in their original order.
        """
        if isinstance(params, str):
            pairs: Iterable[Tuple[str, Any]] = parse_qsl(params.lstrip("?"), keep_blank_values=True)
        elif isinstance(params, Mapping):
            pairs = [
                (key, item)
                for key, value in params.items()
                for item in (value if isinstance(value, (list, tuple)) else [value])
            ]
        else:
            pairs = params

        return [
            (self.sanitizer.sanitize_text(str(key)), self.sanitizer.sanitize_text(str(value)))
            for key, value in pairs
        ]

    # ------------------------------------------------------------------
    # CSRF
    # ------------------------------------------------------------------

    def generate_csrf_token(self, session_id: str) -> str:
        if not self.policy.enable_csrf:
            return ""
        return self.csrf.generate_token(session_id)

    def validate_csrf_token(self, session_id: str, token: Optional[str]) -> bool:
        if not self.policy.enable_csrf:
            return True
        return self.csrf.validate_token(session_id, token)

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------

    def apply_security_headers(self) -> Dict[str, str]:
        return self.headers.get_headers()

    def create_secure_response_headers(self) -> httpx.Headers:
        """Security headers as a case-insensitive header collection."""
        return httpx.Headers(self.apply_security_headers())

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def validate_file_upload(self, descriptor: FileUploadDescriptor) -> FileValidationResult:
        return self.uploads.validate(descriptor)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session_id(self) -> str:
        """Return the client session id, creating and storing one if absent."""
        key = self.policy.session_storage_key
        session_id = self.client_store.get(key)
        if not session_id:
            session_id = str(uuid.uuid4())
            self.client_store[key] = session_id
        return session_id

    def create_session(
        self,
        user_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        return self.sessions.create_session(user_id, ip_address, user_agent)

    def validate_session(
        self,
        session_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionValidation:
        """Validate a session and bind its user to the logging context."""
        result = self.sessions.validate_session(session_id, ip_address, user_agent)
        if result.valid:
            set_request_context(user_id=result.user_id, session_id=session_id)
        return result

    def destroy_session(self, session_id: str) -> bool:
        return self.sessions.destroy_session(session_id)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _sanitize_body(self, body: Any) -> Any:
        """Sanitize JSON bodies; anything that is not JSON is sent as-is."""
        if body is None:
            return None

        if isinstance(body, (Mapping, list)):
            return json.dumps(self.sanitize_form_data(body))

        if isinstance(body, (str, bytes, bytearray)):
            try:
                parsed = json.loads(body)
            except ValueError:
                return body
            return json.dumps(self.sanitize_form_data(parsed))

        return body

    async def secure_request(
        self,
        url: Union[str, httpx.URL],
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request with security headers, CSRF token and sanitized body.

        Args:
            url: Target URL
            method: HTTP method
            headers: Caller headers; these override the defaults
            body: Mapping, list, JSON text or any other request content
            **kwargs: Passed through to ``httpx.AsyncClient.request``

        Returns:
            httpx.Response: The response

        Raises:
            ExternalAPIError: If the request could not be completed
        """
        method = method.upper()

        request_headers = httpx.Headers({"Content-Type": "application/json"})
        request_headers.update(self.apply_security_headers())
        if headers:
            request_headers.update(headers)

        if method in MUTATING_METHODS and self.policy.enable_csrf:
            request_headers[CSRF_HEADER] = self.generate_csrf_token(self.get_session_id())

        content = self._sanitize_body(body)

        start_time = time.perf_counter()
        try:
            if self.http_client is not None:
                response = await self.http_client.request(
                    method, url, headers=request_headers, content=content, **kwargs
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(
                        method, url, headers=request_headers, content=content, **kwargs
                    )
        except httpx.HTTPError as e:
            logger.error("Secure request failed", url=str(url), method=method, error=str(e))
            raise ExternalAPIError(f"Request to {url} failed: {e}") from e

        performance_logger.log_api_call(
            api_name="secure_request",
            endpoint=str(url),
            method=method,
            status_code=response.status_code,
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
        return response

    def process_request(self, request: httpx.Request) -> ProcessedRequest:
        """
        Screen an inbound request.

        Bodies of methods other than GET and HEAD are parsed as JSON and
        sanitized. A CSRF token is issued when the request names its session.
        """
        result = ProcessedRequest(security_headers=self.apply_security_headers())

        if request.method.upper() in BODYLESS_METHODS:
            return result

        try:
            body = json.loads(request.read())
        except ValueError:
            result.errors.append("Invalid request body")
            return result

        try:
            if self.policy.enable_sql_injection_protection:
                result.sanitized_body = self.sanitizer.sanitize(body, SanitizationMode.SQL_PARAMETER)
            else:
                result.sanitized_body = self.sanitize_form_data(body)
        except ValidationError as e:
            result.errors.append(str(e))
            return result

        session_id = request.headers.get(SESSION_HEADER)
        if session_id and self.policy.enable_csrf:
            result.csrf_token = self.csrf.generate_token(session_id)

        return result
