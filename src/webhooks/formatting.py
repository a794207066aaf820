"""
Payload formatting for outbound webhooks.

Builds the generic envelope, reshapes it for each receiver platform,
serializes it once to the exact bytes that are signed and sent, and
assembles the outbound header set.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .events import WebhookPlatform

PLATFORM_MARKER_HEADERS = {
    WebhookPlatform.N8N: "X-n8n-Webhook",
    WebhookPlatform.ZAPIER: "X-Zapier-Webhook",
    WebhookPlatform.MAKE: "X-Make-Webhook",
    WebhookPlatform.CUSTOM: "X-Custom-Webhook",
}


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def build_envelope(
    event: str,
    payload: Any,
    webhook_id: str,
    timestamp: Optional[str] = None
) -> Dict[str, Any]:
    """Wrap event data in the generic envelope."""
    return {
        "event": event,
        "timestamp": timestamp or format_timestamp(),
        "data": payload,
        "webhookId": str(webhook_id),
    }


def format_for_platform(
    envelope: Dict[str, Any],
    platform: Union[WebhookPlatform, str, None]
) -> Dict[str, Any]:
    """
    Reshape the generic envelope for a receiver platform.

    generic and custom receive the envelope unchanged; automation platforms
    get the key names their triggers expect.
    """
    platform = WebhookPlatform(platform or WebhookPlatform.GENERIC)

    if platform == WebhookPlatform.N8N:
        return {
            "event": envelope["event"],
            "data": envelope["data"],
            "timestamp": envelope["timestamp"],
        }

    if platform == WebhookPlatform.ZAPIER:
        return {
            "event_type": envelope["event"],
            "payload": envelope["data"],
            "timestamp": envelope["timestamp"],
        }

    if platform == WebhookPlatform.MAKE:
        return {
            "event": envelope["event"],
            "body": envelope["data"],
            "timestamp": envelope["timestamp"],
        }

    return envelope


def serialize_payload(body: Dict[str, Any]) -> bytes:
    """Serialize a body to the UTF-8 JSON bytes that get signed and sent."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def build_headers(
    event: str,
    signature: str,
    timestamp: str,
    delivery_id: str,
    webhook_id: str,
    user_agent: str,
    platform: Union[WebhookPlatform, str, None] = None,
    custom_headers: Optional[Dict[str, str]] = None
) -> Dict[str, str]:
    """
    Assemble the outbound header set.

    Custom headers are applied before the standard ones so they can never
    replace a signature or event header.
    """
    headers: Dict[str, str] = dict(custom_headers or {})

    headers.update({
        "Content-Type": "application/json",
        "X-Webhook-Event": event,
        "X-Webhook-Signature": signature,
        "X-Webhook-Timestamp": timestamp,
        "X-Webhook-Delivery": str(delivery_id),
        "X-Webhook-Id": str(webhook_id),
        "User-Agent": user_agent,
    })

    marker = PLATFORM_MARKER_HEADERS.get(WebhookPlatform(platform or WebhookPlatform.GENERIC))
    if marker:
        headers[marker] = "true"

    return headers
