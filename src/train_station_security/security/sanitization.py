"""
Input Sanitization Framework.

This module strips executable markup from arbitrary nested form data and
provides format-checked sanitizers for emails, URLs, filenames and header
values. HTML parsing is delegated to a ``MarkupStripper``; the default one
is backed by bleach.

The SQL-parameter mode is a blunt keyword and metacharacter filter. It is a
second line of defense and does not replace parameterized queries in the
data-access layer.
"""

import html
import re
import threading
from enum import Enum
from typing import (
    Annotated,
    Any,
    Callable,
    Collection,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
)
from urllib.parse import urlsplit, urlunsplit

from bleach.sanitizer import Cleaner
from pydantic import AfterValidator, Field, TypeAdapter

from train_station_security.config.settings import FORBIDDEN_RICH_TEXT_TAGS, SecurityPolicy
from train_station_security.core.exceptions import ValidationError
from train_station_security.core.logging import get_logger, get_security_logger

logger = get_logger(__name__)
security_logger = get_security_logger(__name__)


class SanitizationMode(str, Enum):
    """How string leaves are treated."""

    TEXT = "text"                    # No markup survives
    RICH_TEXT = "rich_text"          # Allow-listed formatting tags survive
    SQL_PARAMETER = "sql_parameter"  # TEXT plus SQL keyword/metacharacter removal


ALLOWED_URL_SCHEMES = frozenset({"http", "https"})

TEXT_MAX_LENGTH = 5000
HTML_MAX_LENGTH = 10000

_INVISIBLE_CHARS = re.compile(r"[\u200b-\u200f\u202a-\u202e\u2060-\u2064\ufeff]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HEADER_UNSAFE_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")

# Elements whose content is executable or never meant as visible text.
# Unclosed elements swallow the rest of the input, as a browser would.
_DANGEROUS_BLOCKS = re.compile(
    r"<\s*(script|style|iframe|object|noscript|template)\b[^>]*>.*?(?:<\s*/\s*\1\s*>|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_DANGEROUS_SCHEMES = re.compile(
    r"(?:java|vb|live)\s*script\s*:|data\s*:\s*text/html",
    re.IGNORECASE,
)
_EVENT_HANDLERS = re.compile(r"\bon[a-z]+\s*=", re.IGNORECASE)

_SQL_KEYWORDS = re.compile(
    r"\b(?:SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE|EXEC(?:UTE)?|UNION|"
    r"MERGE|GRANT|REVOKE|DECLARE|SCRIPT)\b|\bxp_\w+",
    re.IGNORECASE,
)
_SQL_METACHARACTERS = re.compile(r"--|/\*|\*/|['\";`#<>\\]")
_WHITESPACE_RUNS = re.compile(r"\s{2,}")

_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_URL_FORBIDDEN_CHARS = re.compile(r"[\s<>\"']")
_FILENAME_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\-_.]")
_DOT_RUNS = re.compile(r"\.+")


class MarkupStripper(Protocol):
    """Anything that can remove non-allow-listed tags and attributes."""

    def strip_unsafe_markup(self, value: str, allowed_tags: Collection[str]) -> str:
        ...


class BleachMarkupStripper:
    """``MarkupStripper`` backed by bleach.

    Cleaner instances are not thread-safe, so each thread keeps its own
    cache keyed by the allow-list.
    """

    def __init__(
        self,
        allowed_attributes: Optional[Dict[str, List[str]]] = None,
        protocols: Collection[str] = ("http", "https", "mailto"),
    ):
        self.allowed_attributes = allowed_attributes or {"*": ["class", "id"]}
        self.protocols = frozenset(protocols)
        self._local = threading.local()

    def _get_cleaner(self, tags: FrozenSet[str]) -> Cleaner:
        cache = getattr(self._local, "cleaners", None)
        if cache is None:
            cache = self._local.cleaners = {}

        cleaner = cache.get(tags)
        if cleaner is None:
            cleaner = Cleaner(
                tags=tags,
                attributes=self.allowed_attributes if tags else {},
                protocols=self.protocols,
                strip=True,
                strip_comments=True,
            )
            cache[tags] = cleaner
        return cleaner

    def strip_unsafe_markup(self, value: str, allowed_tags: Collection[str]) -> str:
        tags = frozenset(tag.lower() for tag in allowed_tags) - FORBIDDEN_RICH_TEXT_TAGS
        return self._get_cleaner(tags).clean(value)


def _remove_until_stable(value: str, *patterns: "re.Pattern[str]") -> str:
    """Remove every match of ``patterns`` until a full pass changes nothing."""
    while True:
        previous = value
        for pattern in patterns:
            value = pattern.sub("", value)
        if value == previous:
            return value


def _decode_entities(value: str) -> str:
    """Decode HTML entities, including multiply-encoded ones."""
    while "&" in value:
        decoded = html.unescape(value)
        if decoded == value:
            break
        value = decoded
    return value


def _as_value_error(sanitize: Callable[[str], str]) -> Callable[[str], str]:
    """Let pydantic report a sanitizer rejection as a field error."""
    def wrapper(value: str) -> str:
        try:
            return sanitize(value)
        except ValidationError as e:
            raise ValueError(str(e)) from e
    return wrapper


def sanitize_header_value(value: str) -> str:
    """Remove CR, LF and other control characters from a header value."""
    return _HEADER_UNSAFE_CHARS.sub("", value).strip()


class InputSanitizer:
    """Input sanitization service."""

    def __init__(
        self,
        policy: Optional[SecurityPolicy] = None,
        stripper: Optional[MarkupStripper] = None,
    ):
        self.policy = policy or SecurityPolicy()
        self.stripper: MarkupStripper = stripper or BleachMarkupStripper()
        self.rich_text_allowed_tags = tuple(self.policy.rich_text_allowed_tags)

    # ------------------------------------------------------------------
    # Structured data
    # ------------------------------------------------------------------

    def sanitize(self, value: Any, mode: SanitizationMode = SanitizationMode.TEXT) -> Any:
        """Sanitize every string leaf of ``value``.

        Mappings, lists, tuples and sets are rebuilt with the same container
        type; mapping keys are kept as-is. Scalars other than strings
        (``None``, booleans, numbers, bytes, arbitrary objects) pass through
        untouched.

        Raises:
            ValidationError: If containers nest deeper than the policy allows.
        """
        return self._visit(value, SanitizationMode(mode), 0)

    def _visit(self, value: Any, mode: SanitizationMode, depth: int) -> Any:
        if isinstance(value, str):
            return self.sanitize_string(value, mode)

        if not isinstance(value, (Mapping, list, tuple, set, frozenset)):
            return value

        if depth >= self.policy.max_nesting_depth:
            raise ValidationError(
                f"Input nesting exceeds maximum depth of {self.policy.max_nesting_depth}"
            )

        if isinstance(value, Mapping):
            return {key: self._visit(item, mode, depth + 1) for key, item in value.items()}

        items = [self._visit(item, mode, depth + 1) for item in value]
        if isinstance(value, list):
            return items
        if isinstance(value, tuple):
            return tuple(items)
        if isinstance(value, frozenset):
            return frozenset(items)
        return set(items)

    # ------------------------------------------------------------------
    # Strings
    # ------------------------------------------------------------------

    def sanitize_string(self, value: str, mode: SanitizationMode = SanitizationMode.TEXT) -> str:
        """Sanitize a single string according to ``mode``."""
        mode = SanitizationMode(mode)
        if mode is SanitizationMode.RICH_TEXT:
            return self.sanitize_html(value)

        sanitized = self.sanitize_text(value)
        if mode is SanitizationMode.SQL_PARAMETER:
            sanitized = self.sanitize_sql_parameter(html.unescape(sanitized))
        return sanitized

    def sanitize_text(self, value: str) -> str:
        """Strip all markup; the result contains no tag delimiters."""
        return self._strip_markup(value, ())

    def sanitize_html(self, value: str, allowed_tags: Optional[Sequence[str]] = None) -> str:
        """Keep allow-listed formatting tags and drop everything else."""
        tags = self.rich_text_allowed_tags if allowed_tags is None else allowed_tags
        return self._strip_markup(value, tags)

    def _strip_markup(self, value: str, allowed_tags: Collection[str]) -> str:
        if not value:
            return value

        normalized = _CONTROL_CHARS.sub("", _INVISIBLE_CHARS.sub("", value))
        normalized = _decode_entities(normalized)

        if (
            _DANGEROUS_BLOCKS.search(normalized)
            or _DANGEROUS_SCHEMES.search(normalized)
            or _EVENT_HANDLERS.search(normalized)
        ):
            security_logger.suspicious_activity(
                activity_type="markup_injection",
                description="Executable markup removed from input",
                severity="high",
                input_value=value[:100],
            )

        without_blocks = _remove_until_stable(normalized, _DANGEROUS_BLOCKS)
        stripped = self.stripper.strip_unsafe_markup(without_blocks, allowed_tags)
        return _remove_until_stable(stripped, _DANGEROUS_SCHEMES, _EVENT_HANDLERS)

    def sanitize_sql_parameter(self, value: Any) -> Any:
        """Remove SQL keywords and metacharacters from a string value.

        Non-string values are returned unchanged, as is everything when SQL
        protection is disabled by policy.

        Keywords are matched as whole words only, so a keyword glued to a
        letter, digit or underscore (``1UNION``, ``name_DROP``) is left in
        place. Queries must still bind values as parameters.
        """
        if not self.policy.enable_sql_injection_protection or not isinstance(value, str):
            return value

        sanitized = _remove_until_stable(value, _SQL_KEYWORDS, _SQL_METACHARACTERS)
        return _WHITESPACE_RUNS.sub(" ", sanitized).strip()

    # ------------------------------------------------------------------
    # Format-checked sanitizers
    # ------------------------------------------------------------------

    def sanitize_email(self, value: str) -> str:
        """Sanitize and validate an email address."""
        sanitized = self.sanitize_text(value.strip().lower())

        if not _EMAIL_PATTERN.match(sanitized):
            raise ValidationError("Invalid email format")

        return sanitized

    def sanitize_url(self, value: str) -> str:
        """Sanitize and validate an http(s) URL."""
        # Undo the sanitizer's own entity escaping so query strings survive
        sanitized = html.unescape(self.sanitize_text(value.strip()))

        if not sanitized or _URL_FORBIDDEN_CHARS.search(sanitized):
            raise ValidationError("Invalid URL format")

        try:
            parts = urlsplit(sanitized)
        except ValueError as e:
            raise ValidationError("Invalid URL format") from e

        if not parts.scheme:
            raise ValidationError("Invalid URL format")
        if parts.scheme.lower() not in ALLOWED_URL_SCHEMES:
            raise ValidationError("Invalid URL protocol")
        if not parts.hostname:
            raise ValidationError("Invalid URL format")

        return urlunsplit(parts)

    def sanitize_filename(self, value: str) -> str:
        """Reduce a filename to ``[A-Za-z0-9._-]`` and cap its length.

        The extension is preserved when the name has to be shortened.
        """
        max_length = self.policy.filename_max_length

        sanitized = _FILENAME_UNSAFE_CHARS.sub("_", value)
        sanitized = _DOT_RUNS.sub(".", sanitized).strip(".")

        if len(sanitized) > max_length:
            stem, dot, extension = sanitized.rpartition(".")
            if dot and stem and len(extension) < max_length - 1:
                stem = stem[: max_length - len(extension) - 1].rstrip(".")
                sanitized = f"{stem}.{extension}"
            else:
                sanitized = sanitized[:max_length].rstrip(".")

        if not sanitized:
            raise ValidationError("Invalid filename")

        return sanitized

    # ------------------------------------------------------------------
    # Field schemas
    # ------------------------------------------------------------------

    def create_validation_schema(self) -> Dict[str, TypeAdapter]:
        """
        Build length-capped validators for single form fields.

        Each adapter's ``validate_python`` sanitizes what it accepts and
        raises ``pydantic.ValidationError`` for over-long or malformed input.

        Returns:
            Dict[str, TypeAdapter]: Adapters keyed by ``text``, ``html``,
            ``email``, ``url``, ``filename`` and ``sql_param``.
        """
        def string_field(sanitize: Callable[[str], str], max_length: Optional[int] = None) -> TypeAdapter:
            return TypeAdapter(
                Annotated[str, Field(max_length=max_length), AfterValidator(_as_value_error(sanitize))]
            )

        return {
            "text": string_field(self.sanitize_text, TEXT_MAX_LENGTH),
            "html": string_field(self.sanitize_html, HTML_MAX_LENGTH),
            "email": string_field(self.sanitize_email),
            "url": string_field(self.sanitize_url),
            "filename": string_field(self.sanitize_filename, self.policy.filename_max_length),
            "sql_param": TypeAdapter(Annotated[Any, AfterValidator(self.sanitize_sql_parameter)]),
        }


__all__ = [
    "SanitizationMode",
    "MarkupStripper",
    "BleachMarkupStripper",
    "InputSanitizer",
    "sanitize_header_value",
    "ALLOWED_URL_SCHEMES",
    "TEXT_MAX_LENGTH",
    "HTML_MAX_LENGTH",
]
