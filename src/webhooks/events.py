"""
Webhook event catalog.

Defines the closed set of subscribable business events, the receiver
platform dialects and the delivery lifecycle states.
"""

from enum import Enum
from typing import List, Optional


class WebhookEventType(str, Enum):
    """Business events a webhook can subscribe to."""
    INVOICE_CREATED = "invoice.created"
    INVOICE_UPDATED = "invoice.updated"
    INVOICE_SENT = "invoice.sent"
    INVOICE_PAID = "invoice.paid"
    INVOICE_VOIDED = "invoice.voided"
    INVOICE_DELETED = "invoice.deleted"

    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CUSTOMER_DELETED = "customer.deleted"

    EXPENSE_CREATED = "expense.created"
    EXPENSE_UPDATED = "expense.updated"
    EXPENSE_DELETED = "expense.deleted"

    PRODUCT_CREATED = "product.created"
    PRODUCT_UPDATED = "product.updated"
    PRODUCT_DELETED = "product.deleted"

    PAYMENT_RECEIVED = "payment.received"
    PAYMENT_REFUNDED = "payment.refunded"


# Synthetic event sent by the test endpoint; never subscribable
TEST_EVENT = "webhook.test"


class WebhookPlatform(str, Enum):
    """Receiver dialects that control payload shape and marker headers."""
    GENERIC = "generic"
    N8N = "n8n"
    ZAPIER = "zapier"
    MAKE = "make"
    CUSTOM = "custom"


class DeliveryStatus(str, Enum):
    """Webhook delivery status."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


EVENT_DESCRIPTIONS = {
    WebhookEventType.INVOICE_CREATED: "An invoice was created",
    WebhookEventType.INVOICE_UPDATED: "An invoice was modified",
    WebhookEventType.INVOICE_SENT: "An invoice was sent to the customer",
    WebhookEventType.INVOICE_PAID: "An invoice was fully paid",
    WebhookEventType.INVOICE_VOIDED: "An invoice was voided",
    WebhookEventType.INVOICE_DELETED: "An invoice was deleted",
    WebhookEventType.CUSTOMER_CREATED: "A customer was created",
    WebhookEventType.CUSTOMER_UPDATED: "A customer was modified",
    WebhookEventType.CUSTOMER_DELETED: "A customer was deleted",
    WebhookEventType.EXPENSE_CREATED: "An expense was recorded",
    WebhookEventType.EXPENSE_UPDATED: "An expense was modified",
    WebhookEventType.EXPENSE_DELETED: "An expense was deleted",
    WebhookEventType.PRODUCT_CREATED: "A product was created",
    WebhookEventType.PRODUCT_UPDATED: "A product was modified",
    WebhookEventType.PRODUCT_DELETED: "A product was deleted",
    WebhookEventType.PAYMENT_RECEIVED: "A payment was received",
    WebhookEventType.PAYMENT_REFUNDED: "A payment was refunded",
}


def parse_event(event: str) -> Optional[WebhookEventType]:
    """Return the catalog member for ``event`` or None if it is unknown."""
    try:
        return WebhookEventType(event)
    except ValueError:
        return None


def event_catalog() -> List[dict]:
    """Describe every subscribable event, grouped by resource."""
    return [
        {
            "event": event.value,
            "resource": event.value.split(".", 1)[0],
            "description": EVENT_DESCRIPTIONS[event],
        }
        for event in WebhookEventType
    ]
