"""
Webhook delivery system.

Fans business events out to subscribed webhooks, runs the per-attempt
delivery state machine, resubmits due retries and sends test deliveries.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .events import DeliveryStatus, TEST_EVENT, parse_event
from .formatting import (
    build_envelope, build_headers, format_for_platform, format_timestamp, serialize_payload
)
from .security import WebhookSecurity
from .transport import WebhookTransport, WebhookTransportError, TransportResponse
from .validation import WebhookValidator
from ..shared.config import WebhookSettings, get_settings
from ..storage.repositories import RepositoryFactory

logger = logging.getLogger(__name__)


def calculate_backoff_ms(attempt_count: int, base_delay_ms: int, max_backoff_ms: int = 60000) -> int:
    """
    Delay before the next attempt after ``attempt_count`` attempts.

    base, 2*base, 4*base, ... capped at ``max_backoff_ms``.
    """
    exponent = max(attempt_count, 1) - 1
    return min(base_delay_ms * (2 ** exponent), max_backoff_ms)


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt."""
    delivery_id: uuid.UUID
    webhook_id: uuid.UUID
    event: str
    status: DeliveryStatus
    attempt_count: int
    max_attempts: int
    response_status: Optional[int] = None
    error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    persisted: bool = True

    @property
    def success(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS


@dataclass
class RetrySweepResult:
    """Summary of one pass over due retries."""
    due: int = 0
    retried: int = 0
    skipped: int = 0
    not_claimed: int = 0
    errors: int = 0


class WebhookDeliveryService:
    """Manages webhook delivery with retry logic and error handling."""

    def __init__(
        self,
        db_manager=None,
        transport: Optional[WebhookTransport] = None,
        settings: Optional[WebhookSettings] = None,
        repository_factory: Callable[[Any], RepositoryFactory] = RepositoryFactory,
        clock: Optional[Callable[[], datetime]] = None
    ):
        if db_manager is None:
            from ..storage.database import db_manager as default_db_manager
            db_manager = default_db_manager

        self.db_manager = db_manager
        self.settings = settings or get_settings().webhooks
        self.transport = transport or WebhookTransport(
            timeout_seconds=self.settings.webhook_request_timeout,
            response_body_limit=self.settings.webhook_response_body_limit
        )
        self.repository_factory = repository_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.delivery_semaphore = asyncio.Semaphore(self.settings.webhook_max_concurrent_deliveries)
        self.stats = {
            'total_attempts': 0,
            'successful_deliveries': 0,
            'failed_deliveries': 0,
            'retries_scheduled': 0,
            'persistence_errors': 0,
        }

    @asynccontextmanager
    async def _repositories(self) -> AsyncIterator[RepositoryFactory]:
        async with self.db_manager.get_session() as session:
            yield self.repository_factory(session)

    async def trigger_webhooks(
        self,
        event: str,
        payload: Any,
        tenant_id: str
    ) -> List[DeliveryResult]:
        """
        Deliver ``event`` to every active webhook of the tenant subscribed to it.

        Deliveries run concurrently and independently; a failure of one
        webhook is logged and never reaches the caller or its siblings.

        Args:
            event: Event name from the catalog
            payload: Event data
            tenant_id: Tenant the event belongs to

        Returns:
            Results of the deliveries that completed without an internal error
        """
        if parse_event(event) is None:
            logger.warning(f"Ignoring unknown webhook event '{event}' for tenant {tenant_id}")
            return []

        try:
            async with self._repositories() as repos:
                webhooks = await repos.webhooks.find_subscribed(tenant_id, event)
        except Exception as e:
            logger.error(f"Error looking up webhooks for {event} (tenant {tenant_id}): {e}")
            return []

        if not webhooks:
            logger.debug(f"No webhooks subscribed to {event} for tenant {tenant_id}")
            return []

        results = await asyncio.gather(
            *(self._deliver_bounded(webhook, event, payload) for webhook in webhooks),
            return_exceptions=True
        )

        delivered = []
        for webhook, result in zip(webhooks, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Webhook {webhook.id} delivery of {event} raised: {result!r}",
                    exc_info=result
                )
            else:
                delivered.append(result)

        logger.info(
            f"Triggered {event} for tenant {tenant_id}: "
            f"{sum(1 for r in delivered if r.success)}/{len(webhooks)} delivered"
        )
        return delivered

    async def _deliver_bounded(self, webhook, event: str, payload: Any) -> DeliveryResult:
        async with self.delivery_semaphore:
            return await self.deliver(webhook, event, payload)

    async def deliver(self, webhook, event: str, payload: Any, delivery=None) -> DeliveryResult:
        """
        Run one delivery attempt.

        Without ``delivery`` a new pending record is created first; with it,
        the existing record is updated in place (retries reuse the delivery
        id but are re-signed with the current secret and a fresh timestamp).

        Args:
            webhook: Target webhook row
            event: Event name
            payload: Event data
            delivery: Existing delivery row being retried

        Returns:
            DeliveryResult describing the persisted transition
        """
        if delivery is None:
            max_attempts = max(1, webhook.max_retries)
            attempt_count = 0
            delivery_id, persisted = await self._create_delivery(webhook, event, payload, max_attempts)
        else:
            max_attempts = delivery.max_attempts
            attempt_count = delivery.attempt_count
            delivery_id, persisted = delivery.id, True

        now = self._clock()
        timestamp = format_timestamp(now)
        body = serialize_payload(
            format_for_platform(build_envelope(event, payload, webhook.id, timestamp), webhook.platform)
        )
        signature = WebhookSecurity.generate_signature(body, webhook.secret)
        headers = build_headers(
            event=event,
            signature=signature,
            timestamp=timestamp,
            delivery_id=str(delivery_id),
            webhook_id=str(webhook.id),
            user_agent=self.settings.webhook_user_agent,
            platform=webhook.platform,
            custom_headers=webhook.headers
        )

        attempt_count += 1
        self.stats['total_attempts'] += 1
        request_values = {
            'attempt_count': attempt_count,
            'request_body': body.decode('utf-8'),
            'signature': signature,
        }

        try:
            response = await self.transport.send(webhook.url, body, headers)
        except WebhookTransportError as e:
            return await self._handle_transport_failure(
                webhook, event, delivery_id, attempt_count, max_attempts, request_values,
                e.message, e.status, e.body, persisted
            )
        except Exception as e:
            logger.error(f"Unexpected error delivering {delivery_id} to webhook {webhook.id}: {e}", exc_info=True)
            return await self._handle_transport_failure(
                webhook, event, delivery_id, attempt_count, max_attempts, request_values,
                f"Unexpected error: {str(e)}", None, None, persisted
            )

        return await self._handle_response(
            webhook, event, delivery_id, attempt_count, max_attempts, request_values, response, persisted
        )

    async def _create_delivery(self, webhook, event: str, payload: Any, max_attempts: int):
        try:
            async with self._repositories() as repos:
                delivery = await repos.deliveries.create({
                    'webhook_id': webhook.id,
                    'tenant_id': webhook.tenant_id,
                    'event': event,
                    'payload': payload,
                    'status': DeliveryStatus.PENDING.value,
                    'attempt_count': 0,
                    'max_attempts': max_attempts,
                })
            return delivery.id, True
        except Exception as e:
            self.stats['persistence_errors'] += 1
            delivery_id = uuid.uuid4()
            logger.error(
                f"Could not record delivery for webhook {webhook.id} ({event}); "
                f"sending untracked as {delivery_id}: {e}"
            )
            return delivery_id, False

    async def _handle_response(
        self,
        webhook,
        event: str,
        delivery_id: uuid.UUID,
        attempt_count: int,
        max_attempts: int,
        request_values: Dict[str, Any],
        response: TransportResponse,
        persisted: bool
    ) -> DeliveryResult:
        """Completed round trip: 2xx is success, anything else is terminal."""
        now = self._clock()
        is_success, error_message = WebhookValidator.validate_webhook_response(response.status)
        status = DeliveryStatus.SUCCESS if is_success else DeliveryStatus.FAILED

        persisted = await self._save_attempt(delivery_id, persisted, {
            **request_values,
            'status': status.value,
            'response_status': response.status,
            'response_body': response.body,
            'error_message': error_message,
            'next_retry_at': None,
            'delivered_at': now,
        })
        await self._record_outcome(webhook.id, is_success, now)

        if is_success:
            self.stats['successful_deliveries'] += 1
            logger.info(f"Webhook delivered successfully: {delivery_id} ({event} -> {webhook.id}, HTTP {response.status})")
        else:
            self.stats['failed_deliveries'] += 1
            logger.warning(f"Webhook delivery rejected by receiver: {delivery_id} ({event} -> {webhook.id}, HTTP {response.status})")

        return DeliveryResult(
            delivery_id=delivery_id,
            webhook_id=webhook.id,
            event=event,
            status=status,
            attempt_count=attempt_count,
            max_attempts=max_attempts,
            response_status=response.status,
            error=error_message,
            persisted=persisted
        )

    async def _handle_transport_failure(
        self,
        webhook,
        event: str,
        delivery_id: uuid.UUID,
        attempt_count: int,
        max_attempts: int,
        request_values: Dict[str, Any],
        error_message: str,
        response_status: Optional[int],
        response_body: Optional[str],
        persisted: bool
    ) -> DeliveryResult:
        """Transient failure: schedule a retry while budget remains."""
        now = self._clock()
        values = {
            **request_values,
            'response_status': response_status,
            'response_body': response_body,
            'error_message': error_message,
        }

        # Without a delivery record no sweep can pick the retry up
        if persisted and attempt_count < max_attempts:
            delay_ms = calculate_backoff_ms(
                attempt_count, webhook.retry_delay_ms, self.settings.webhook_max_backoff_ms
            )
            next_retry_at = now + timedelta(milliseconds=delay_ms)
            status = DeliveryStatus.RETRYING
            values.update(status=status.value, next_retry_at=next_retry_at)
            self.stats['retries_scheduled'] += 1

            logger.info(
                f"Webhook delivery failed, scheduling retry {attempt_count}/{max_attempts} "
                f"in {delay_ms}ms: {delivery_id} ({error_message})"
            )
        else:
            next_retry_at = None
            status = DeliveryStatus.FAILED
            values.update(status=status.value, next_retry_at=None)
            self.stats['failed_deliveries'] += 1

            if persisted:
                logger.error(
                    f"Webhook delivery failed after {attempt_count} attempts: {delivery_id} ({error_message})"
                )
            else:
                logger.error(
                    f"Untracked webhook delivery failed and will not be retried: {delivery_id} ({error_message})"
                )

        persisted = await self._save_attempt(delivery_id, persisted, values)
        await self._record_outcome(
            webhook.id, None if status == DeliveryStatus.RETRYING else False, now
        )

        return DeliveryResult(
            delivery_id=delivery_id,
            webhook_id=webhook.id,
            event=event,
            status=status,
            attempt_count=attempt_count,
            max_attempts=max_attempts,
            response_status=response_status,
            error=error_message,
            next_retry_at=next_retry_at,
            persisted=persisted
        )

    async def _save_attempt(self, delivery_id: uuid.UUID, persisted: bool, values: Dict[str, Any]) -> bool:
        if not persisted:
            return False
        try:
            async with self._repositories() as repos:
                return await repos.deliveries.save_attempt(delivery_id, **values)
        except Exception as e:
            self.stats['persistence_errors'] += 1
            logger.error(f"Could not save attempt for delivery {delivery_id}: {e}")
            return False

    async def _record_outcome(self, webhook_id: uuid.UUID, success: Optional[bool], at: datetime) -> None:
        try:
            async with self._repositories() as repos:
                await repos.webhooks.record_outcome(webhook_id, success, at)
        except Exception as e:
            self.stats['persistence_errors'] += 1
            logger.error(f"Could not update statistics for webhook {webhook_id}: {e}")

    async def retry_failed_deliveries(self, now: Optional[datetime] = None) -> RetrySweepResult:
        """
        Resubmit every retrying delivery whose next_retry_at has passed.

        Items are processed one at a time. Each is leased atomically before
        it is sent, so a delivery picked up by another scanner is skipped.
        The lease outlives one request; if the outcome of the attempt is never
        saved the delivery becomes due again when it expires.
        Deliveries whose webhook was deleted or deactivated stay untouched.
        """
        now = now or self._clock()
        lease_until = now + timedelta(
            seconds=self.settings.webhook_request_timeout + self.settings.webhook_retry_lease_margin
        )
        result = RetrySweepResult()

        try:
            async with self._repositories() as repos:
                due = await repos.deliveries.get_due_for_retry(
                    now, limit=self.settings.webhook_retry_batch_size
                )
        except Exception as e:
            logger.error(f"Error loading deliveries due for retry: {e}")
            result.errors += 1
            return result

        result.due = len(due)

        for delivery, webhook in due:
            if webhook is None or not webhook.is_active:
                result.skipped += 1
                logger.info(
                    f"Skipping retry of delivery {delivery.id}: webhook {delivery.webhook_id} "
                    f"is {'missing' if webhook is None else 'inactive'}"
                )
                continue

            try:
                async with self._repositories() as repos:
                    claimed = await repos.deliveries.claim_for_retry(delivery.id, now, lease_until)
            except Exception as e:
                result.errors += 1
                logger.error(f"Error claiming delivery {delivery.id} for retry: {e}")
                continue

            if not claimed:
                result.not_claimed += 1
                logger.debug(f"Delivery {delivery.id} already claimed, skipping")
                continue

            try:
                await self.deliver(webhook, delivery.event, delivery.payload, delivery=delivery)
                result.retried += 1
            except Exception as e:
                result.errors += 1
                logger.error(f"Error retrying delivery {delivery.id}: {e}", exc_info=True)

        if result.due:
            logger.info(
                f"Retry sweep finished: {result.retried} retried, {result.skipped} skipped, "
                f"{result.not_claimed} claimed elsewhere, {result.errors} errors"
            )
        return result

    async def test_webhook(self, webhook) -> DeliveryResult:
        """
        Send a synthetic ``webhook.test`` event through the normal delivery path.

        Args:
            webhook: Webhook to test

        Returns:
            DeliveryResult of the attempt (an audit record is kept as usual)
        """
        payload = {
            "message": "This is a test webhook from Hookline",
            "webhookId": str(webhook.id),
            "webhookName": webhook.name,
        }
        return await self.deliver(webhook, TEST_EVENT, payload)

    def get_stats(self) -> Dict[str, Any]:
        """Get delivery service statistics."""
        return {
            **self.stats,
            'max_concurrent_deliveries': self.settings.webhook_max_concurrent_deliveries,
        }


# Global instance
_delivery_service: Optional[WebhookDeliveryService] = None


def get_webhook_delivery_service() -> WebhookDeliveryService:
    """Get the global webhook delivery service."""
    global _delivery_service
    if _delivery_service is None:
        _delivery_service = WebhookDeliveryService()
    return _delivery_service
