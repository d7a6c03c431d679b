"""
Unit tests for the input sanitizer.

This module tests markup stripping in every mode, recursive traversal of
nested form data, and the email, URL, filename and header sanitizers.
"""

import re
from collections import OrderedDict
from unittest.mock import Mock

import pytest
from pydantic import ValidationError as SchemaValidationError

from train_station_security.config.settings import SecurityPolicy
from train_station_security.core.exceptions import ValidationError
from train_station_security.security.sanitization import (
    HTML_MAX_LENGTH,
    TEXT_MAX_LENGTH,
    BleachMarkupStripper,
    InputSanitizer,
    SanitizationMode,
    sanitize_header_value,
)


@pytest.fixture
def sanitizer(policy):
    return InputSanitizer(policy)


class TestTextMode:
    """Test TEXT mode sanitization."""

    def test_plain_text_unchanged(self, sanitizer):
        """Safe text passes through and sanitizing twice changes nothing."""
        once = sanitizer.sanitize_text("hello world")
        assert once == "hello world"
        assert sanitizer.sanitize_text(once) == once

    def test_script_element_removed_with_content(self, sanitizer):
        result = sanitizer.sanitize_text("nice <script>alert(1)</script> event")
        assert "<script" not in result.lower()
        assert "alert" not in result
        assert "nice" in result and "event" in result

    def test_unclosed_script_swallows_rest(self, sanitizer):
        result = sanitizer.sanitize_text("before <script>alert('x')")
        assert result.strip() == "before"

    def test_formatting_tags_stripped(self, sanitizer):
        result = sanitizer.sanitize_text("<p>Platform <strong>4</strong></p>")
        assert result == "Platform 4"

    def test_no_tag_delimiters_survive(self, sanitizer, xss_payloads):
        for payload in xss_payloads:
            result = sanitizer.sanitize_text(payload)
            assert "<" not in result, payload

    def test_encoded_script_decoded_and_removed(self, sanitizer):
        result = sanitizer.sanitize_text("&lt;script&gt;alert(1)&lt;/script&gt;ok")
        assert "script" not in result.lower()
        assert result == "ok"

    def test_zero_width_characters_removed(self, sanitizer):
        assert sanitizer.sanitize_text("Plat\u200bform\ufeff 9") == "Platform 9"

    def test_control_characters_removed_but_newlines_kept(self, sanitizer):
        assert sanitizer.sanitize_text("line1\x00\x07\nline2\tend") == "line1\nline2\tend"

    def test_javascript_scheme_removed(self, sanitizer):
        result = sanitizer.sanitize_text("JaVaScRiPt :alert(1)")
        assert "javascript" not in result.lower()

    def test_event_handler_text_removed(self, sanitizer):
        result = sanitizer.sanitize_text("x onmouseover = alert(1)")
        assert not re.search(r"on[a-z]+\s*=", result, re.IGNORECASE)

    def test_empty_string(self, sanitizer):
        assert sanitizer.sanitize_text("") == ""

    def test_suspicious_input_logged(self, sanitizer, monkeypatch):
        security_logger = Mock()
        monkeypatch.setattr(
            "train_station_security.security.sanitization.security_logger", security_logger
        )

        sanitizer.sanitize_text("<script>alert(1)</script>")
        sanitizer.sanitize_text("hello")

        security_logger.suspicious_activity.assert_called_once()
        assert security_logger.suspicious_activity.call_args[1]["activity_type"] == "markup_injection"


class TestRichTextMode:
    """Test RICH_TEXT mode sanitization."""

    def test_allowed_tags_kept(self, sanitizer):
        result = sanitizer.sanitize_html("<p>Doors at <strong>7pm</strong></p>")
        assert result == "<p>Doors at <strong>7pm</strong></p>"

    def test_event_handler_attribute_removed(self, sanitizer):
        result = sanitizer.sanitize_html('<p onclick="alert(1)" class="note">hi</p>')
        assert "onclick" not in result
        assert 'class="note"' in result

    def test_disallowed_tag_stripped_text_kept(self, sanitizer):
        result = sanitizer.sanitize_html('<a href="https://example.com">link</a>')
        assert "<a" not in result
        assert "link" in result

    def test_forbidden_tags_never_allowed(self, sanitizer):
        result = sanitizer.sanitize_html(
            "<form><input value='x'><button>go</button></form>",
            allowed_tags=["p", "form", "input", "button"],
        )
        assert "<form" not in result
        assert "<input" not in result
        assert "<button" not in result

    def test_script_removed(self, sanitizer):
        result = sanitizer.sanitize_string(
            "<p>ok</p><script>alert(1)</script>", SanitizationMode.RICH_TEXT
        )
        assert result == "<p>ok</p>"

    def test_custom_stripper_used(self, policy):
        stripper = Mock()
        stripper.strip_unsafe_markup.return_value = "stripped"
        sanitizer = InputSanitizer(policy, stripper=stripper)

        assert sanitizer.sanitize_html("<p>x</p>") == "stripped"
        args = stripper.strip_unsafe_markup.call_args[0]
        assert args[0] == "<p>x</p>"
        assert "p" in args[1]


class TestSQLParameterMode:
    """Test SQL parameter sanitization."""

    def test_keywords_and_separators_removed(self, sanitizer, sql_payloads):
        for payload in sql_payloads:
            result = sanitizer.sanitize_string(payload, SanitizationMode.SQL_PARAMETER)
            assert not re.search(
                r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|UNION|EXEC)\b", result, re.IGNORECASE
            ), payload
            assert ";" not in result, payload
            assert "--" not in result, payload

    def test_drop_table(self, sanitizer):
        result = sanitizer.sanitize_sql_parameter("'; DROP TABLE users; --")
        assert result == "TABLE users"

    def test_ordinary_words_kept(self, sanitizer):
        result = sanitizer.sanitize_sql_parameter("Updated selection of artists")
        assert result == "Updated selection of artists"

    def test_keywords_inside_identifiers_kept(self, sanitizer):
        """Only whole-word keywords are removed."""
        assert sanitizer.sanitize_sql_parameter("1UNION SELECT 1") == "1UNION 1"
        assert sanitizer.sanitize_sql_parameter("name_DROP TABLE") == "name_DROP TABLE"

    def test_non_string_unchanged(self, sanitizer):
        assert sanitizer.sanitize_sql_parameter(42) == 42
        assert sanitizer.sanitize_sql_parameter(None) is None

    def test_disabled_by_policy(self):
        sanitizer = InputSanitizer(
            SecurityPolicy(_env_file=None, enable_sql_injection_protection=False)
        )
        assert sanitizer.sanitize_sql_parameter("DROP TABLE x;") == "DROP TABLE x;"

    def test_angle_brackets_removed_after_text_pass(self, sanitizer):
        result = sanitizer.sanitize_string("a < b", SanitizationMode.SQL_PARAMETER)
        assert result == "a b"


class TestStructuredData:
    """Test recursive sanitization of nested data."""

    def test_nested_structures(self, sanitizer):
        data = {
            "name": "<b>Jazz</b> Night",
            "capacity": 250,
            "price": 12.5,
            "published": True,
            "notes": None,
            "tags": ["<i>live</i>", "music", 3],
            "slots": ("<script>x</script>early", "late"),
            "venue": {"room": {"label": "<em>Main</em> Hall"}},
        }

        result = sanitizer.sanitize(data)

        assert result == {
            "name": "Jazz Night",
            "capacity": 250,
            "price": 12.5,
            "published": True,
            "notes": None,
            "tags": ["live", "music", 3],
            "slots": ("early", "late"),
            "venue": {"room": {"label": "Main Hall"}},
        }

    def test_container_types_preserved(self, sanitizer):
        result = sanitizer.sanitize({"a": ["x"], "b": ("y",), "c": {"z"}, "d": frozenset({"w"})})
        assert isinstance(result["a"], list)
        assert isinstance(result["b"], tuple)
        assert isinstance(result["c"], set)
        assert isinstance(result["d"], frozenset)

    def test_mapping_becomes_dict(self, sanitizer):
        result = sanitizer.sanitize(OrderedDict([("k", "<b>v</b>")]))
        assert result == {"k": "v"}
        assert type(result) is dict

    def test_keys_left_alone(self, sanitizer):
        result = sanitizer.sanitize({"<b>key</b>": "value"})
        assert list(result) == ["<b>key</b>"]

    def test_bytes_pass_through(self, sanitizer):
        assert sanitizer.sanitize({"blob": b"<script>"}) == {"blob": b"<script>"}

    def test_hundred_levels_of_nesting(self, sanitizer):
        data = {"value": "<script>alert(1)</script>deep"}
        for _ in range(100):
            data = {"nested": data}

        result = sanitizer.sanitize(data)

        for _ in range(100):
            result = result["nested"]
        assert result == {"value": "deep"}

    def test_nesting_beyond_limit_rejected(self, sanitizer, policy):
        data = "leaf"
        for _ in range(policy.max_nesting_depth + 1):
            data = [data]

        with pytest.raises(ValidationError):
            sanitizer.sanitize(data)

    def test_scalar_input(self, sanitizer):
        assert sanitizer.sanitize("<b>x</b>") == "x"
        assert sanitizer.sanitize(7) == 7

    def test_mode_accepts_string_value(self, sanitizer):
        assert sanitizer.sanitize({"q": "<p>x</p>"}, "rich_text") == {"q": "<p>x</p>"}


class TestEmailSanitization:
    """Test email sanitization."""

    def test_valid_email_normalized(self, sanitizer):
        assert sanitizer.sanitize_email("  Booking@TrainStation.Example ") == "booking@trainstation.example"

    @pytest.mark.parametrize("value", ["not-an-email", "a@b", "<script>@x.com", "user@@example.com"])
    def test_invalid_email_rejected(self, sanitizer, value):
        with pytest.raises(ValidationError, match="Invalid email format"):
            sanitizer.sanitize_email(value)


class TestURLSanitization:
    """Test URL sanitization."""

    def test_https_url_kept(self, sanitizer):
        url = "https://tickets.example.com/events?id=5&day=fri"
        assert sanitizer.sanitize_url(url) == url

    def test_http_url_kept(self, sanitizer):
        assert sanitizer.sanitize_url(" http://example.com/path ") == "http://example.com/path"

    @pytest.mark.parametrize("url", ["ftp://example.com/file", "file:///etc/passwd", "mailto:a@b.com"])
    def test_disallowed_protocol(self, sanitizer, url):
        with pytest.raises(ValidationError, match="Invalid URL protocol"):
            sanitizer.sanitize_url(url)

    def test_javascript_url_rejected(self, sanitizer):
        with pytest.raises(ValidationError):
            sanitizer.sanitize_url("javascript:alert(1)")

    @pytest.mark.parametrize("url", ["not a url", "example.com/page", "https://", ""])
    def test_malformed_url(self, sanitizer, url):
        with pytest.raises(ValidationError, match="Invalid URL format"):
            sanitizer.sanitize_url(url)


class TestFilenameSanitization:
    """Test filename sanitization."""

    def test_unsafe_characters_replaced(self, sanitizer):
        assert sanitizer.sanitize_filename("set list (final).pdf") == "set_list__final_.pdf"

    def test_path_traversal_neutralized(self, sanitizer):
        result = sanitizer.sanitize_filename("../../etc/passwd")
        assert "/" not in result
        assert ".." not in result
        assert result == "_._etc_passwd"

    def test_dot_runs_collapsed_and_trimmed(self, sanitizer):
        assert sanitizer.sanitize_filename("...report...v2..pdf..") == "report.v2.pdf"

    def test_length_capped_keeping_extension(self, sanitizer):
        result = sanitizer.sanitize_filename("a" * 300 + ".exe")
        assert len(result) == 255
        assert result.endswith(".exe")

    @pytest.mark.parametrize("value", ["", "...", "."])
    def test_empty_result_rejected(self, sanitizer, value):
        with pytest.raises(ValidationError, match="Invalid filename"):
            sanitizer.sanitize_filename(value)


class TestHeaderValueSanitization:
    """Test header value sanitization."""

    def test_crlf_removed(self):
        assert sanitize_header_value("nosniff\r\nSet-Cookie: evil=1") == "nosniffSet-Cookie: evil=1"

    def test_ordinary_value_unchanged(self):
        assert sanitize_header_value("max-age=31536000; includeSubDomains") == (
            "max-age=31536000; includeSubDomains"
        )


class TestBleachMarkupStripper:
    """Test the bleach-backed markup stripper."""

    def test_strips_everything_with_empty_allow_list(self):
        stripper = BleachMarkupStripper()
        assert stripper.strip_unsafe_markup("<b>bold</b>", ()) == "bold"

    def test_attributes_limited(self):
        stripper = BleachMarkupStripper()
        result = stripper.strip_unsafe_markup('<p id="a" style="color:red">x</p>', ["p"])
        assert result == '<p id="a">x</p>'

    def test_cleaner_reused_per_allow_list(self):
        stripper = BleachMarkupStripper()
        first = stripper._get_cleaner(frozenset({"p"}))
        assert stripper._get_cleaner(frozenset({"p"})) is first
        assert stripper._get_cleaner(frozenset({"em"})) is not first


class TestValidationSchema:
    """Test the length-capped field validators."""

    @pytest.fixture
    def schema(self, sanitizer):
        return sanitizer.create_validation_schema()

    def test_text_sanitized(self, schema):
        assert schema["text"].validate_python("<b>Doors</b> at 7") == "Doors at 7"

    def test_text_length_capped(self, schema):
        assert schema["text"].validate_python("a" * TEXT_MAX_LENGTH) == "a" * TEXT_MAX_LENGTH
        with pytest.raises(SchemaValidationError):
            schema["text"].validate_python("a" * (TEXT_MAX_LENGTH + 1))

    def test_html_keeps_formatting(self, schema):
        assert schema["html"].validate_python("<p>hi</p><script>x</script>") == "<p>hi</p>"
        with pytest.raises(SchemaValidationError):
            schema["html"].validate_python("a" * (HTML_MAX_LENGTH + 1))

    def test_email(self, schema):
        assert schema["email"].validate_python(" Box@Office.COM ") == "box@office.com"
        with pytest.raises(SchemaValidationError, match="Invalid email format"):
            schema["email"].validate_python("not-an-email")

    def test_url(self, schema):
        url = "https://tickets.example.com/show?id=1&seat=2"
        assert schema["url"].validate_python(url) == url
        with pytest.raises(SchemaValidationError, match="Invalid URL protocol"):
            schema["url"].validate_python("ftp://example.com/file")

    def test_filename(self, schema):
        assert schema["filename"].validate_python("set list.pdf") == "set_list.pdf"
        with pytest.raises(SchemaValidationError):
            schema["filename"].validate_python("a" * 256 + ".pdf")

    def test_non_strings_rejected_by_string_fields(self, schema):
        with pytest.raises(SchemaValidationError):
            schema["text"].validate_python(42)

    def test_sql_param_accepts_anything(self, schema):
        assert schema["sql_param"].validate_python(42) == 42
        assert schema["sql_param"].validate_python("x'; DROP TABLE t") == "x TABLE t"
