"""
Fire-and-forget entry point for business code.

Producers call ``emit`` after their own work has succeeded; dispatch runs in
the background and never blocks or fails the producer.
"""

import asyncio
import logging
from typing import Any, Optional, Set

from .delivery import WebhookDeliveryService, get_webhook_delivery_service

logger = logging.getLogger(__name__)


class WebhookEventBus:
    """Event bus for webhook system."""

    def __init__(self, delivery_service: WebhookDeliveryService):
        self.delivery_service = delivery_service
        self._pending: Set[asyncio.Task] = set()
        self.stats = {
            'events_emitted': 0,
            'dispatch_errors': 0,
        }

    def emit(self, event: str, payload: Any, tenant_id: str) -> asyncio.Task:
        """
        Schedule webhook dispatch for an event and return immediately.

        Must be called from a running event loop.

        Args:
            event: Event name
            payload: Event data
            tenant_id: Owning tenant

        Returns:
            The background task, for callers that want to await it
        """
        task = asyncio.create_task(
            self.delivery_service.trigger_webhooks(event, payload, tenant_id),
            name=f"webhooks:{event}:{tenant_id}"
        )
        self._pending.add(task)
        task.add_done_callback(self._on_dispatch_done)
        self.stats['events_emitted'] += 1

        logger.debug(f"Queued webhook dispatch of {event} for tenant {tenant_id}")
        return task

    def _on_dispatch_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.stats['dispatch_errors'] += 1
            logger.error(f"Webhook dispatch {task.get_name()} failed: {error!r}", exc_info=error)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding dispatches, e.g. on shutdown."""
        if not self._pending:
            return

        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} webhook dispatches still running after drain timeout")


# Global instance
_event_bus: Optional[WebhookEventBus] = None


def get_webhook_event_bus() -> WebhookEventBus:
    """Get the global webhook event bus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = WebhookEventBus(get_webhook_delivery_service())
    return _event_bus
