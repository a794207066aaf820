"""
Periodic retry scheduler.

A single background loop that sweeps due retries on a fixed interval, or
sooner when ``trigger`` is called. Sweeps never overlap.
"""

import asyncio
import logging
from typing import Optional

from .delivery import RetrySweepResult, WebhookDeliveryService

logger = logging.getLogger(__name__)


class RetryScheduler:
    """Drives ``retry_failed_deliveries`` in the background."""

    def __init__(self, delivery_service: WebhookDeliveryService, interval_seconds: float = 300):
        self.delivery_service = delivery_service
        self.interval_seconds = interval_seconds
        self.shutdown_event = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._sweep_lock = asyncio.Lock()
        self._running = False
        self._scheduler_task: Optional[asyncio.Task] = None
        self.last_result: Optional[RetrySweepResult] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Retry scheduler already running")
            return

        self._running = True
        self.shutdown_event.clear()
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())

        logger.info(f"Retry scheduler started (interval {self.interval_seconds}s)")

    async def stop(self, timeout: float = 30) -> None:
        """Stop the scheduler, letting an in-flight sweep finish."""
        if not self._running:
            return

        logger.info("Stopping retry scheduler...")
        self.shutdown_event.set()
        self._wakeup.set()
        self._running = False

        if self._scheduler_task:
            try:
                await asyncio.wait_for(self._scheduler_task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Retry scheduler did not stop in time, cancelling")
                self._scheduler_task.cancel()
                try:
                    await self._scheduler_task
                except asyncio.CancelledError:
                    pass
            self._scheduler_task = None

        logger.info("Retry scheduler stopped")

    def trigger(self) -> None:
        """Request an immediate sweep from an external driver."""
        self._wakeup.set()

    async def run_once(self) -> RetrySweepResult:
        """Run one sweep; waits if another sweep is in progress."""
        async with self._sweep_lock:
            self.last_result = await self.delivery_service.retry_failed_deliveries()
            return self.last_result

    async def _scheduler_loop(self) -> None:
        while not self.shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

            if self.shutdown_event.is_set():
                break

            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in retry scheduler: {e}", exc_info=True)
