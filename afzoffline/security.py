"""Security utilities for the contact backend."""

import html
import logging
import re
from collections.abc import Iterable

logger = logging.getLogger(__name__)

# Pragmatic address check: one @, no spaces, a dot in the domain.
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Phone numbers: optional +, then digits with common separators.
PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9\s().-]{6,19}$")

MAX_EMAIL_LENGTH = 254


def is_valid_email(value: object) -> bool:
    if not isinstance(value, str):
        return False
    value = value.strip()
    return 0 < len(value) <= MAX_EMAIL_LENGTH and EMAIL_PATTERN.match(value) is not None


def normalize_email(value: str) -> str:
    """Trim and lower-case an address so duplicates compare equal."""
    return value.strip().lower()


def is_valid_phone(value: object) -> bool:
    return isinstance(value, str) and PHONE_PATTERN.match(value.strip()) is not None


def is_allowed_origin(origin: str | None, allowed_origins: Iterable[str]) -> bool:
    """Check a CORS Origin header.

    Pages opened from disk send no origin or the literal "null"; those and
    local development hosts are always allowed. Anything else must be listed
    explicitly.
    """
    if not origin or origin == "null" or origin.startswith("file://"):
        return True
    if "localhost" in origin or "127.0.0.1" in origin:
        return True

    allowed = origin in set(allowed_origins)
    if not allowed:
        logger.debug("CORS: rejecting origin %s", origin)
    return allowed


def escape_multiline(text: str) -> str:
    """HTML-escape user text and keep its line breaks."""
    return html.escape(text).replace("\n", "<br>")
