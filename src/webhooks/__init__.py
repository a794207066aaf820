"""
Webhook system for Hookline.

Provides the event catalog, signing, validation, payload formatting and
HTTP transport. The services that touch storage live in
``delivery``, ``event_bus`` and ``scheduler`` and are imported directly.
"""

from .events import (
    WebhookEventType,
    WebhookPlatform,
    DeliveryStatus,
    TEST_EVENT,
    event_catalog,
    parse_event
)

from .security import WebhookSecurity
from .validation import WebhookValidator
from .transport import WebhookTransport, WebhookTransportError, TransportResponse

__all__ = [
    # Catalog
    'WebhookEventType',
    'WebhookPlatform',
    'DeliveryStatus',
    'TEST_EVENT',
    'event_catalog',
    'parse_event',

    # Leaf services
    'WebhookSecurity',
    'WebhookValidator',
    'WebhookTransport',
    'WebhookTransportError',
    'TransportResponse'
]
