"""
Shared fixtures: in-memory repositories, a scripted transport and a
controllable clock for exercising the delivery pipeline without
PostgreSQL or a network.
"""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
import pytest

from src.shared.config import WebhookSettings, get_settings
from src.shared.schemas import WebhookCreate, WebhookUpdate
from src.storage.models import Webhook, WebhookDelivery
from src.webhooks.delivery import WebhookDeliveryService
from src.webhooks.security import WebhookSecurity
from src.webhooks.transport import TransportResponse, WebhookTransportError


class InMemoryStore:
    """Rows shared by the fake repositories."""

    def __init__(self):
        self.webhooks: Dict[uuid.UUID, Webhook] = {}
        self.deliveries: Dict[uuid.UUID, WebhookDelivery] = {}
        self.fail_writes = False
        self.claims: List[uuid.UUID] = []

    def check_writable(self):
        if self.fail_writes:
            raise RuntimeError("database unavailable")


class FakeWebhookRepository:
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create_webhook(self, obj_in: WebhookCreate) -> Webhook:
        self.store.check_writable()
        now = datetime.now(timezone.utc)
        webhook = Webhook(
            id=uuid.uuid4(),
            success_count=0,
            failure_count=0,
            created_at=now,
            updated_at=now,
            **obj_in.model_dump()
        )
        self.store.webhooks[webhook.id] = webhook
        return webhook

    async def get_for_tenant(self, webhook_id, tenant_id) -> Optional[Webhook]:
        webhook = self.store.webhooks.get(webhook_id)
        if webhook is None or webhook.tenant_id != tenant_id:
            return None
        return webhook

    def _filtered(self, tenant_id, is_active=None, platform=None):
        rows = [w for w in self.store.webhooks.values() if w.tenant_id == tenant_id]
        if is_active is not None:
            rows = [w for w in rows if w.is_active == is_active]
        if platform is not None:
            rows = [w for w in rows if w.platform == platform]
        return sorted(rows, key=lambda w: w.created_at, reverse=True)

    async def list_for_tenant(self, tenant_id, skip=0, limit=10, is_active=None, platform=None):
        return self._filtered(tenant_id, is_active, platform)[skip:skip + limit]

    async def count_for_tenant(self, tenant_id, is_active=None, platform=None):
        return len(self._filtered(tenant_id, is_active, platform))

    async def update_for_tenant(self, webhook_id, tenant_id, obj_in: WebhookUpdate):
        self.store.check_writable()
        webhook = await self.get_for_tenant(webhook_id, tenant_id)
        if webhook is None:
            return None
        for field, value in obj_in.model_dump(exclude_unset=True).items():
            setattr(webhook, field, value)
        webhook.updated_at = datetime.now(timezone.utc)
        return webhook

    async def delete_for_tenant(self, webhook_id, tenant_id) -> bool:
        self.store.check_writable()
        webhook = await self.get_for_tenant(webhook_id, tenant_id)
        if webhook is None:
            return False
        del self.store.webhooks[webhook_id]
        return True

    async def find_subscribed(self, tenant_id, event):
        return [
            w for w in self.store.webhooks.values()
            if w.tenant_id == tenant_id and w.is_active and event in (w.events or [])
        ]

    async def rotate_secret(self, webhook_id, tenant_id, secret):
        self.store.check_writable()
        webhook = await self.get_for_tenant(webhook_id, tenant_id)
        if webhook is None:
            return None
        webhook.secret = secret
        return webhook

    async def record_outcome(self, webhook_id, success, at=None):
        self.store.check_writable()
        webhook = self.store.webhooks.get(webhook_id)
        if webhook is None:
            return False
        webhook.last_triggered = at
        if success is True:
            webhook.success_count += 1
            webhook.last_success = at
        elif success is False:
            webhook.failure_count += 1
            webhook.last_failure = at
        return True


class FakeDeliveryRepository:
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, obj_in: Dict[str, Any]) -> WebhookDelivery:
        self.store.check_writable()
        now = datetime.now(timezone.utc)
        delivery = WebhookDelivery(id=uuid.uuid4(), created_at=now, updated_at=now, **obj_in)
        self.store.deliveries[delivery.id] = delivery
        return delivery

    async def save_attempt(self, delivery_id, **values) -> bool:
        self.store.check_writable()
        delivery = self.store.deliveries.get(delivery_id)
        if delivery is None:
            return False
        for field, value in values.items():
            setattr(delivery, field, value)
        return True

    async def get_due_for_retry(self, now=None, limit=100):
        due = [
            d for d in self.store.deliveries.values()
            if d.status == "retrying" and d.next_retry_at is not None and d.next_retry_at <= now
        ]
        due.sort(key=lambda d: d.next_retry_at)
        return [(d, self.store.webhooks.get(d.webhook_id)) for d in due[:limit]]

    async def claim_for_retry(self, delivery_id, now=None, lease_until=None) -> bool:
        self.store.check_writable()
        delivery = self.store.deliveries.get(delivery_id)
        if (
            delivery is None
            or delivery.status != "retrying"
            or delivery.next_retry_at is None
            or delivery.next_retry_at > now
        ):
            return False
        delivery.next_retry_at = lease_until or now + timedelta(seconds=90)
        self.store.claims.append(delivery_id)
        return True

    def _filtered(self, webhook_id, tenant_id, status=None):
        rows = [
            d for d in self.store.deliveries.values()
            if d.webhook_id == webhook_id and d.tenant_id == tenant_id
        ]
        if status is not None:
            rows = [d for d in rows if d.status == status]
        return sorted(rows, key=lambda d: d.created_at, reverse=True)

    async def list_for_webhook(self, webhook_id, tenant_id, status=None, skip=0, limit=20):
        return self._filtered(webhook_id, tenant_id, status)[skip:skip + limit]

    async def count_for_webhook(self, webhook_id, tenant_id, status=None):
        return len(self._filtered(webhook_id, tenant_id, status))


class FakeRepositoryFactory:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.webhooks = FakeWebhookRepository(store)
        self.deliveries = FakeDeliveryRepository(store)
        self.released = False

    async def release(self):
        self.released = True


class FakeDatabaseManager:
    """Hands the store out as the "session"."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    @asynccontextmanager
    async def get_session(self):
        yield self.store


class ScriptedTransport:
    """
    Returns or raises scripted outcomes in order.

    An int below 500 becomes a response, an int of 500 or more a server
    error, and an exception instance is raised as is. The last outcome
    repeats once the script runs out.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [200]
        self.requests: List[Dict[str, Any]] = []

    async def send(self, url, body, headers):
        self.requests.append({"url": url, "body": body, "headers": dict(headers)})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]

        if isinstance(outcome, BaseException):
            raise outcome
        if outcome >= 500:
            raise WebhookTransportError(
                f"Server error: {outcome}",
                WebhookTransportError.SERVER_ERROR,
                status=outcome,
                body="unavailable"
            )
        return TransportResponse(status=outcome, body="ok" if outcome < 300 else "rejected", duration_ms=5)


class Clock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int):
        self.now = self.now + timedelta(milliseconds=milliseconds)


def add_webhook(store: InMemoryStore, **overrides) -> Webhook:
    """Insert a webhook row with sensible defaults."""
    now = datetime.now(timezone.utc)
    values = dict(
        id=uuid.uuid4(),
        tenant_id="tenant-a",
        name="Accounting sync",
        url="https://hooks.example.com/receiver",
        events=["invoice.created"],
        secret=WebhookSecurity.generate_secret(),
        is_active=True,
        platform="generic",
        headers={},
        max_retries=3,
        retry_delay_ms=1000,
        success_count=0,
        failure_count=0,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    webhook = Webhook(**values)
    store.webhooks[webhook.id] = webhook
    return webhook


def make_token(tenant_id: str = "tenant-a", role: str = "owner", user_id: str = "user-1", **claims) -> str:
    payload = {"sub": user_id, "tenant_id": tenant_id, "role": role, **claims}
    security = get_settings().security
    return jwt.encode(payload, security.secret_key, algorithm=security.algorithm)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def fake_db(store):
    return FakeDatabaseManager(store)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def webhook_settings():
    return WebhookSettings(
        webhook_request_timeout=30,
        webhook_max_backoff_ms=60000,
        webhook_max_concurrent_deliveries=10,
        webhook_retry_batch_size=100,
    )


@pytest.fixture
def transport():
    return ScriptedTransport(200)


@pytest.fixture
def delivery_service(fake_db, transport, webhook_settings, clock):
    return WebhookDeliveryService(
        db_manager=fake_db,
        transport=transport,
        settings=webhook_settings,
        repository_factory=FakeRepositoryFactory,
        clock=clock
    )


@pytest.fixture
def make_webhook(store):
    """Factory fixture inserting webhook rows into the store."""
    def _make(**overrides) -> Webhook:
        return add_webhook(store, **overrides)
    return _make


@pytest.fixture
def auth_headers():
    """Factory fixture building bearer headers for a tenant and role."""
    def _headers(tenant_id: str = "tenant-a", role: str = "owner", **claims) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(tenant_id=tenant_id, role=role, **claims)}"}
    return _headers


@pytest.fixture
def repos(store):
    return FakeRepositoryFactory(store)
