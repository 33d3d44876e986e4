"""Tests for security module."""

import pytest

from afzoffline.security import (
    escape_multiline,
    is_allowed_origin,
    is_valid_email,
    is_valid_phone,
    normalize_email,
)


class TestEmail:
    """Tests for email validation."""

    @pytest.mark.parametrize("value", ["info@afz.org.zm", " a.b+c@example.co.zm "])
    def test_valid(self, value: str) -> None:
        """Well-formed addresses are accepted."""
        assert is_valid_email(value) is True

    @pytest.mark.parametrize("value", ["", "plain", "a@b", "a b@c.zm", "a@@b.zm", None, 42])
    def test_invalid(self, value: object) -> None:
        """Malformed or non-string addresses are rejected."""
        assert is_valid_email(value) is False

    def test_rejects_overlong_address(self) -> None:
        """Addresses over 254 characters are rejected."""
        assert is_valid_email("a" * 250 + "@b.zm") is False

    def test_normalize(self) -> None:
        """Addresses are trimmed and lowercased."""
        assert normalize_email("  Info@AFZ.org.ZM ") == "info@afz.org.zm"


class TestPhone:
    """Tests for phone validation."""

    @pytest.mark.parametrize("value", ["+260 97 1234567", "0971234567", "021-123-4567"])
    def test_valid(self, value: str) -> None:
        """Common Zambian phone formats are accepted."""
        assert is_valid_phone(value) is True

    @pytest.mark.parametrize("value", ["12345", "call me", "+", None])
    def test_invalid(self, value: object) -> None:
        """Short, textual or missing numbers are rejected."""
        assert is_valid_phone(value) is False


class TestAllowedOrigin:
    """Tests for CORS origin checks."""

    @pytest.mark.parametrize("origin", [None, "", "null", "file://", "http://localhost:8002", "http://127.0.0.1:5500"])
    def test_local_origins_always_allowed(self, origin: str | None) -> None:
        """Local and missing origins are always allowed."""
        assert is_allowed_origin(origin, ()) is True

    def test_listed_origin_allowed(self) -> None:
        """Configured origins are allowed."""
        assert is_allowed_origin("https://afz.org.zm", ("https://afz.org.zm",)) is True

    def test_unlisted_origin_rejected(self) -> None:
        """Other origins are rejected."""
        assert is_allowed_origin("https://evil.example", ("https://afz.org.zm",)) is False


def test_escape_multiline() -> None:
    """HTML is escaped and newlines become line breaks."""
    assert escape_multiline("<b>hi</b>\n& bye") == "&lt;b&gt;hi&lt;/b&gt;<br>&amp; bye"
