"""
Webhook validation utilities.

Write-time validation of webhook registrations: target URL, event
subscriptions, custom headers and retry policy.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from .events import WebhookEventType, WebhookPlatform

MAX_NAME_LENGTH = 100
MAX_URL_LENGTH = 2048
MAX_CUSTOM_HEADERS = 20
MAX_RETRIES_LIMIT = 10
MIN_RETRY_DELAY_MS = 100
MAX_RETRY_DELAY_MS = 60000

# Headers the delivery pipeline owns; tenants may not override them
RESERVED_HEADERS = frozenset({
    "content-type",
    "content-length",
    "host",
    "user-agent",
    "x-webhook-event",
    "x-webhook-signature",
    "x-webhook-timestamp",
    "x-webhook-delivery",
    "x-webhook-id",
    "x-n8n-webhook",
    "x-zapier-webhook",
    "x-make-webhook",
    "x-custom-webhook",
})

_URL_PATTERN = re.compile(r'^https?://.+', re.IGNORECASE)
_HOSTNAME_PATTERN = re.compile(r'^[a-z0-9._-]+$')
_HEADER_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9-_]+$')


class WebhookValidator:
    """Validates webhook configurations."""

    @staticmethod
    def validate_webhook(
        name: Optional[str],
        url: Optional[str],
        events: Optional[Iterable[str]],
        platform: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ) -> Tuple[bool, List[str]]:
        """
        Validate a complete webhook registration.

        Args:
            name: Human readable name
            url: Target URL
            events: Subscribed event names
            platform: Receiver dialect
            headers: Custom headers
            max_retries: Retry budget
            retry_delay_ms: Base backoff delay

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        name_error = WebhookValidator.validate_name(name)
        if name_error:
            errors.append(name_error)

        url_valid, url_error = WebhookValidator.validate_url(url)
        if not url_valid:
            errors.append(f"Invalid URL: {url_error}")

        errors.extend(WebhookValidator.validate_events(events))

        if platform is not None:
            errors.extend(WebhookValidator.validate_platform(platform))

        if headers is not None:
            errors.extend(WebhookValidator.validate_headers(headers))

        errors.extend(WebhookValidator.validate_retry_config(max_retries, retry_delay_ms))

        return len(errors) == 0, errors

    @staticmethod
    def validate_name(name: Optional[str]) -> Optional[str]:
        if not name or len(name.strip()) == 0:
            return "Name is required"
        if len(name) > MAX_NAME_LENGTH:
            return f"Name must be {MAX_NAME_LENGTH} characters or less"
        return None

    @staticmethod
    def validate_url(url: Optional[str]) -> Tuple[bool, Optional[str]]:
        """
        Validate webhook URL.

        Args:
            url: URL to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not url:
            return False, "URL is required"

        if len(url) > MAX_URL_LENGTH:
            return False, f"URL must be {MAX_URL_LENGTH} characters or less"

        if not _URL_PATTERN.match(url):
            return False, "URL must use HTTP or HTTPS protocol"

        try:
            parsed = urlparse(url)

            if parsed.scheme.lower() not in ['http', 'https']:
                return False, "URL must use HTTP or HTTPS protocol"

            if not parsed.hostname:
                return False, "URL must have a valid hostname"

            if not _HOSTNAME_PATTERN.match(parsed.hostname.lower()):
                return False, "Invalid hostname format"

            # Accessing .port raises ValueError when it is out of range
            if parsed.port is not None and parsed.port < 1:
                return False, "Port must be between 1 and 65535"

            return True, None

        except ValueError as e:
            return False, f"Invalid URL format: {str(e)}"

    @staticmethod
    def validate_events(events: Optional[Iterable[str]]) -> List[str]:
        """
        Validate subscribed events against the catalog.

        Args:
            events: Event names

        Returns:
            List of validation errors
        """
        if events is None:
            return ["At least one event is required"]

        events = list(events)
        if not events:
            return ["At least one event is required"]

        known = {event.value for event in WebhookEventType}
        invalid = [event for event in events if event not in known]
        if invalid:
            return [f"Invalid event types: {', '.join(map(str, invalid))}"]

        return []

    @staticmethod
    def validate_platform(platform: str) -> List[str]:
        try:
            WebhookPlatform(platform)
        except ValueError:
            allowed = ", ".join(p.value for p in WebhookPlatform)
            return [f"Invalid platform: {platform} (expected one of {allowed})"]
        return []

    @staticmethod
    def validate_headers(headers: Dict[str, Any]) -> List[str]:
        """
        Validate custom webhook headers.

        Args:
            headers: Headers dictionary

        Returns:
            List of validation errors
        """
        errors = []

        if not isinstance(headers, dict):
            errors.append("Headers must be a dictionary")
            return errors

        if len(headers) > MAX_CUSTOM_HEADERS:
            errors.append(f"Maximum {MAX_CUSTOM_HEADERS} custom headers allowed")

        for key, value in headers.items():
            if not isinstance(key, str) or not _HEADER_NAME_PATTERN.match(key):
                errors.append(f"Invalid header name format: {key}")
                continue

            if len(key) > 100:
                errors.append(f"Header name too long: {key}")
                continue

            if key.lower() in RESERVED_HEADERS:
                errors.append(f"Header is reserved and cannot be overridden: {key}")
                continue

            if not isinstance(value, str):
                errors.append(f"Header value must be string: {key}")
                continue

            if len(value) > 1000:
                errors.append(f"Header value too long: {key}")
                continue

            # Control characters would allow header injection
            if any(ord(c) < 32 and c != '\t' for c in value):
                errors.append(f"Header value contains invalid characters: {key}")

        return errors

    @staticmethod
    def validate_retry_config(
        max_retries: Optional[int],
        retry_delay_ms: Optional[int]
    ) -> List[str]:
        """
        Validate retry policy bounds.

        Args:
            max_retries: Maximum retry attempts
            retry_delay_ms: Initial backoff delay in milliseconds

        Returns:
            List of validation errors
        """
        errors = []

        if max_retries is not None and not 0 <= max_retries <= MAX_RETRIES_LIMIT:
            errors.append(f"Max retries must be between 0 and {MAX_RETRIES_LIMIT}")

        if retry_delay_ms is not None and not MIN_RETRY_DELAY_MS <= retry_delay_ms <= MAX_RETRY_DELAY_MS:
            errors.append(
                f"Retry delay must be between {MIN_RETRY_DELAY_MS} and {MAX_RETRY_DELAY_MS} milliseconds"
            )

        return errors

    @staticmethod
    def validate_webhook_response(status_code: int) -> Tuple[bool, Optional[str]]:
        """
        Classify a completed webhook response.

        Args:
            status_code: HTTP status code

        Returns:
            Tuple of (is_success, error_message)
        """
        if 200 <= status_code < 300:
            return True, None

        if 400 <= status_code < 500:
            return False, f"Client error: {status_code}"

        if 500 <= status_code < 600:
            return False, f"Server error: {status_code}"

        return False, f"Unexpected status code: {status_code}"
