"""Contact form and newsletter backend.

Endpoints:
- POST /api/contact: validate, notify the admin, confirm to the sender
- POST /api/newsletter: validate, confirm the subscription
- GET /api/health: liveness probe

Queued offline submissions are delivered here by the background sync.
"""

import logging
import secrets
import string
import threading
import time
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

from ._http import BackgroundServer, JsonHandler, RequestBodyError
from .config import ContactConfig
from .mailer import EmailMessage, MailError, Mailer
from .security import (
    escape_multiline,
    is_allowed_origin,
    is_valid_email,
    is_valid_phone,
    normalize_email,
)

logger = logging.getLogger(__name__)

CONTACT_SUBJECTS = ("support", "volunteer", "partnership", "media", "other")
LANGUAGES = ("en", "ny", "be")

# General limit for every /api/ request, per IP.
GENERAL_RATE_LIMIT = 100
GENERAL_RATE_WINDOW_SECONDS = 15 * 60

# Contact submissions are more expensive (two emails each).
CONTACT_RATE_LIMIT = 50
CONTACT_RATE_WINDOW_SECONDS = 60 * 60

_BASE36 = string.digits + string.ascii_lowercase


class ValidationError(Exception):
    """Raised when a submission fails validation; carries per-field messages."""

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("Validation error")
        self.errors = errors


class RateLimiter:
    """Simple sliding window rate limiter by IP address.

    Allows up to max_requests requests per IP within the time window.
    Thread-safe for use in multi-threaded HTTP server. IPs whose requests
    have all expired are dropped, at most once per window.
    """

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()
        self._last_cleanup = time.monotonic()

    def is_allowed(self, client_ip: str) -> bool:
        """Check if a request from the given IP is allowed.

        Args:
            client_ip: The client's IP address.

        Returns:
            True if the request is allowed, False if rate limited.
        """
        now = time.monotonic()
        cutoff = now - self._window_seconds

        with self._lock:
            if now - self._last_cleanup >= self._window_seconds:
                self._remove_expired(cutoff)
                self._last_cleanup = now

            timestamps = self._requests[client_ip]
            timestamps[:] = [ts for ts in timestamps if ts > cutoff]

            if len(timestamps) >= self._max_requests:
                return False

            timestamps.append(now)
            return True

    def _remove_expired(self, cutoff: float) -> None:
        empty_ips = []
        for ip, timestamps in self._requests.items():
            timestamps[:] = [ts for ts in timestamps if ts > cutoff]
            if not timestamps:
                empty_ips.append(ip)
        for ip in empty_ips:
            del self._requests[ip]


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_reference_id() -> str:
    """Reference id handed to contact form senders, e.g. AFZ-1700000000000-k3j9x0a1b."""
    return f"AFZ-{int(time.time() * 1000)}-{_random_suffix()}"


def generate_subscription_id() -> str:
    return f"sub_{int(time.time() * 1000)}_{_random_suffix()}"


def _as_bool(value: Any) -> bool | None:
    """Interpret JSON booleans and HTML form checkbox values."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "on", "1", "yes"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "off", "0", "no", ""):
        return False
    return None


def validate_contact(data: Any) -> dict[str, str]:
    """Validate a contact submission. Returns field -> message for each problem."""
    if not isinstance(data, dict):
        return {"body": "Request body must be an object"}

    errors: dict[str, str] = {}

    name = data.get("name")
    if not isinstance(name, str) or len(name.strip()) < 2:
        errors["name"] = "Name must be at least 2 characters"

    if not is_valid_email(data.get("email")):
        errors["email"] = "Invalid email format"

    phone = data.get("phone")
    if phone not in (None, "") and not is_valid_phone(phone):
        errors["phone"] = "Invalid phone number"

    if data.get("subject") not in CONTACT_SUBJECTS:
        errors["subject"] = "Invalid subject"

    message = data.get("message")
    if not isinstance(message, str) or len(message.strip()) < 10:
        errors["message"] = "Message must be at least 10 characters"

    if data.get("newsletter") is not None and _as_bool(data.get("newsletter")) is None:
        errors["newsletter"] = "Newsletter must be boolean"

    if data.get("language") is not None and data.get("language") not in LANGUAGES:
        errors["language"] = "Invalid language"

    return errors


def validate_newsletter(data: Any) -> dict[str, str]:
    """Validate a newsletter signup. Returns field -> message for each problem."""
    if not isinstance(data, dict):
        return {"body": "Request body must be an object"}

    errors: dict[str, str] = {}

    if not is_valid_email(data.get("email")):
        errors["email"] = "Invalid email format"

    if data.get("language") is not None and data.get("language") not in LANGUAGES:
        errors["language"] = "Invalid language"

    if data.get("source") is not None and not isinstance(data.get("source"), str):
        errors["source"] = "Source must be string"

    return errors


class ContactService:
    """Turns validated submissions into outgoing email."""

    def __init__(self, config: ContactConfig, mailer: Mailer) -> None:
        self._config = config
        self._mailer = mailer

    def submit_contact(self, data: Any) -> dict:
        """Handle a contact submission.

        Returns:
            The success payload, including the reference id.

        Raises:
            ValidationError: If the submission is invalid.
            MailError: If either email could not be sent.
        """
        errors = validate_contact(data)
        if errors:
            raise ValidationError(errors)

        name = data["name"].strip()
        email = normalize_email(data["email"])
        phone = (data.get("phone") or "").strip()
        subject = data["subject"]
        message = data["message"].strip()
        newsletter = bool(_as_bool(data.get("newsletter")))
        language = data.get("language") or "en"

        reference_id = generate_reference_id()
        submitted_at = datetime.now(UTC).isoformat()
        safe_name = escape_multiline(name)
        safe_message = escape_multiline(message)

        admin_email = EmailMessage(
            from_addr=self._config.from_email,
            to_addr=self._config.admin_email,
            subject=f"New Contact Form Submission - {subject}",
            html_body=f"""
                <h2>New Contact Form Submission</h2>
                <p><strong>Reference ID:</strong> {reference_id}</p>
                <p><strong>Name:</strong> {safe_name}</p>
                <p><strong>Email:</strong> {escape_multiline(email)}</p>
                <p><strong>Phone:</strong> {escape_multiline(phone) or 'Not provided'}</p>
                <p><strong>Subject:</strong> {subject}</p>
                <p><strong>Newsletter Subscription:</strong> {'Yes' if newsletter else 'No'}</p>
                <p><strong>Language:</strong> {language}</p>
                <p><strong>Message:</strong></p>
                <p>{safe_message}</p>
                <hr>
                <p><small>Submitted at: {submitted_at}</small></p>
            """,
        )

        user_email = EmailMessage(
            from_addr=self._config.from_email,
            to_addr=email,
            subject="Thank you for contacting AFZ",
            html_body=f"""
                <h2>Thank you for contacting the Albinism Foundation of Zambia</h2>
                <p>Dear {safe_name},</p>
                <p>We have received your message and will get back to you within 24 hours.</p>
                <p><strong>Reference ID:</strong> {reference_id}</p>
                <p><strong>Your message:</strong></p>
                <p style="background: #f5f5f5; padding: 15px; border-radius: 5px;">{safe_message}</p>
                <p>Best regards,<br>The AFZ Team</p>
                <hr>
                <p><small>If you didn't submit this form, please ignore this email.</small></p>
            """,
        )

        self._mailer.send(admin_email)
        self._mailer.send(user_email)

        if newsletter:
            logger.info("Newsletter subscription requested for: %s", email)

        logger.info("Contact form submission %s from %s (%s)", reference_id, email, subject)

        return {
            "success": True,
            "message": "Thank you for your message. We'll get back to you within 24 hours.",
            "reference_id": reference_id,
        }

    def subscribe_newsletter(self, data: Any) -> dict:
        """Handle a newsletter signup.

        Raises:
            ValidationError: If the signup is invalid.
            MailError: If the confirmation could not be sent.
        """
        errors = validate_newsletter(data)
        if errors:
            raise ValidationError(errors)

        email = normalize_email(data["email"])
        subscription_id = generate_subscription_id()

        self._mailer.send(
            EmailMessage(
                from_addr=self._config.from_email,
                to_addr=email,
                subject="AFZ Newsletter Subscription Confirmation",
                html_body=f"""
                <h2>Welcome to AFZ Newsletter</h2>
                <p>Thank you for subscribing to the Albinism Foundation of Zambia newsletter!</p>
                <p>You will receive updates about our programs, events, and advocacy work.</p>
                <p><strong>Subscription ID:</strong> {subscription_id}</p>
                <p>If you didn't subscribe, you can safely ignore this email.</p>
                <hr>
                <p><small>To unsubscribe, please contact us at {self._config.admin_email}</small></p>
                """,
            )
        )

        logger.info(
            "Newsletter subscription %s for %s (language=%s, source=%s)",
            subscription_id,
            email,
            data.get("language") or "en",
            data.get("source"),
        )

        return {
            "success": True,
            "message": "Successfully subscribed to newsletter",
            "subscription_id": subscription_id,
        }


class ContactHandler(JsonHandler):
    """HTTP request handler for the contact backend."""

    # Class-level references set by factory
    service: Optional[ContactService] = None
    allowed_origins: tuple[str, ...] = ()
    general_limiter: Optional[RateLimiter] = None
    contact_limiter: Optional[RateLimiter] = None

    def _cors_headers(self) -> dict[str, str] | None:
        """CORS headers for an allowed origin, None if the origin is rejected."""
        origin = self.headers.get("Origin")
        if not is_allowed_origin(origin, self.allowed_origins):
            return None
        if not origin:
            return {}
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Vary": "Origin",
        }

    def _begin(self, limiter: Optional[RateLimiter] = None) -> bool:
        """Apply CORS and rate limits. Sends the error response and returns False when rejected."""
        cors = self._cors_headers()
        self.extra_headers = cors or {}
        if cors is None:
            self._send_json(403, {"success": False, "message": "Origin not allowed"})
            return False

        client_ip = self.client_address[0]
        if self.path.startswith("/api/") and self.general_limiter is not None:
            if not self.general_limiter.is_allowed(client_ip):
                logger.warning("Rate limit exceeded for %s", client_ip)
                self._send_json(429, {"success": False, "message": "Too many requests. Please try again later."})
                return False

        if limiter is not None and not limiter.is_allowed(client_ip):
            logger.warning("Contact rate limit exceeded for %s", client_ip)
            self._send_json(
                429,
                {
                    "success": False,
                    "message": "Too many contact form submissions. Please try again later.",
                },
            )
            return False
        return True

    def _read_submission(self) -> Any:
        content_type = self.headers.get("Content-Type", "")
        if content_type.startswith("application/x-www-form-urlencoded"):
            body = self._read_body().decode("utf-8", errors="replace")
            return {key: values[-1] for key, values in parse_qs(body, keep_blank_values=True).items()}
        return self._read_json()

    def do_OPTIONS(self) -> None:
        """Handle CORS preflight requests."""
        cors = self._cors_headers()
        self.extra_headers = cors or {}
        if cors is None:
            self._send_json(403, {"success": False, "message": "Origin not allowed"})
            return
        self.extra_headers = {
            **cors,
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Accept",
        }
        self._send_body(200, b"", {})

    def do_GET(self) -> None:
        """Handle GET requests."""
        if not self._begin():
            return

        if urlsplit(self.path).path == "/api/health":
            self._send_json(200, {"status": "OK", "timestamp": datetime.now(UTC).isoformat()})
        else:
            self._send_json(404, {"success": False, "message": "Endpoint not found"})

    def do_POST(self) -> None:
        """Handle POST requests."""
        path = urlsplit(self.path).path
        if path == "/api/contact":
            if not self._begin(self.contact_limiter):
                return
            self._handle_submission(self.service.submit_contact, "Contact form")
        elif path == "/api/newsletter":
            if not self._begin():
                return
            self._handle_submission(self.service.subscribe_newsletter, "Newsletter subscription")
        else:
            if not self._begin():
                return
            self._send_json(404, {"success": False, "message": "Endpoint not found"})

    def _handle_submission(self, action, label: str) -> None:
        try:
            data = self._read_submission()
            result = action(data)
        except RequestBodyError as e:
            self._send_json(e.status, {"success": False, "message": str(e)})
            return
        except ValidationError as e:
            self._send_json(400, {"success": False, "message": "Validation error", "errors": e.errors})
            return
        except MailError as e:
            logger.error("%s error: %s", label, e)
            self._send_json(500, {"success": False, "message": "Internal server error. Please try again later."})
            return
        except Exception as e:
            logger.exception("%s error: %s", label, e)
            self._send_json(500, {"success": False, "message": "Something went wrong!"})
            return

        self._send_json(200, result)


def _create_handler_class(
    service: ContactService,
    allowed_origins: tuple[str, ...],
    general_limiter: RateLimiter,
    contact_limiter: RateLimiter,
) -> type:
    """Create a handler class with the service and limits bound."""

    class BoundContactHandler(ContactHandler):
        pass

    BoundContactHandler.service = service
    BoundContactHandler.allowed_origins = allowed_origins
    BoundContactHandler.general_limiter = general_limiter
    BoundContactHandler.contact_limiter = contact_limiter
    return BoundContactHandler


class ContactServer(BackgroundServer):
    """Threaded HTTP server for contact and newsletter submissions."""

    name = "contact-server"

    def __init__(self, config: ContactConfig, service: ContactService) -> None:
        super().__init__(config.port)
        self.config = config
        self.service = service
        self._general_limiter = RateLimiter(GENERAL_RATE_LIMIT, GENERAL_RATE_WINDOW_SECONDS)
        self._contact_limiter = RateLimiter(CONTACT_RATE_LIMIT, CONTACT_RATE_WINDOW_SECONDS)

    def _handler_class(self) -> type:
        return _create_handler_class(
            self.service,
            self.config.allowed_origins,
            self._general_limiter,
            self._contact_limiter,
        )
