"""
API tests for webhook management endpoints.

The app runs against the in-memory repositories; the lifespan (database
and retry scheduler) is not started.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from src.api.dependencies import get_delivery_service, get_repository_factory
from src.api.main import create_app
from src.storage.models import WebhookDelivery
from src.webhooks.security import WebhookSecurity

BASE = "/api/v1/webhooks"


@pytest.fixture
def client(repos, delivery_service):
    app = create_app()
    app.dependency_overrides[get_repository_factory] = lambda: repos
    app.dependency_overrides[get_delivery_service] = lambda: delivery_service
    return TestClient(app)


@pytest.fixture
def owner(auth_headers):
    return auth_headers("tenant-a", "owner")


def _create_body(**overrides):
    body = {
        "name": "CRM sync",
        "url": "https://hooks.example.com/receiver",
        "events": ["invoice.created", "payment.received"],
    }
    body.update(overrides)
    return body


def _add_delivery(store, webhook, status="success", minutes_ago=0, **values):
    delivery = WebhookDelivery(
        id=uuid.uuid4(),
        webhook_id=webhook.id,
        tenant_id=webhook.tenant_id,
        event="invoice.created",
        payload={"id": "inv_1"},
        status=status,
        attempt_count=1,
        max_attempts=3,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
        **values
    )
    store.deliveries[delivery.id] = delivery
    return delivery


class TestAuthentication:

    def test_missing_token(self, client):
        response = client.get(BASE)

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "authentication_error"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token(self, client):
        response = client.get(BASE, headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    def test_wrong_scheme(self, client):
        response = client.get(BASE, headers={"Authorization": "Basic dXNlcjpwYXNz"})

        assert response.status_code == 401

    def test_token_without_tenant(self, client, auth_headers):
        response = client.get(BASE, headers=auth_headers(tenant_id=None))

        assert response.status_code == 401

    def test_viewer_can_read_but_not_write(self, client, auth_headers):
        viewer = auth_headers("tenant-a", "viewer")

        assert client.get(BASE, headers=viewer).status_code == 200

        response = client.post(BASE, json=_create_body(), headers=viewer)
        assert response.status_code == 403
        assert "owner" in response.json()["error"]["message"]

    def test_accountant_can_write(self, client, auth_headers):
        response = client.post(BASE, json=_create_body(), headers=auth_headers("tenant-a", "accountant"))

        assert response.status_code == 201

    def test_health_is_public(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["components"]["database"]["status"] == "unhealthy"
        assert body["components"]["retry_scheduler"]["status"] == "stopped"

    def test_cors_preflight_needs_no_token(self, client):
        response = client.options(BASE, headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
        })

        assert response.status_code == 200
        assert "access-control-allow-origin" in response.headers

    def test_correlation_id_is_echoed(self, client, owner):
        response = client.get(BASE, headers={**owner, "X-Correlation-ID": "corr-123"})

        assert response.headers["X-Correlation-ID"] == "corr-123"


class TestCreateWebhook:

    def test_create_returns_secret_once(self, client, owner, store):
        response = client.post(BASE, json=_create_body(platform="n8n"), headers=owner)

        assert response.status_code == 201
        body = response.json()
        assert len(body["secret"]) == 43
        assert body["name"] == "CRM sync"
        assert body["platform"] == "n8n"
        assert body["events"] == ["invoice.created", "payment.received"]
        assert body["is_active"] is True
        assert body["retry_config"] == {"max_retries": 3, "retry_delay_ms": 1000}
        assert body["stats"]["success_count"] == 0
        assert body["stats"]["failure_count"] == 0

        webhook = store.webhooks[uuid.UUID(body["id"])]
        assert webhook.secret == body["secret"]

    def test_tenant_comes_from_token(self, client, owner, store):
        response = client.post(BASE, json=_create_body(tenant_id="tenant-b"), headers=owner)

        webhook = store.webhooks[uuid.UUID(response.json()["id"])]
        assert webhook.tenant_id == "tenant-a"

    def test_custom_retry_and_headers(self, client, owner):
        response = client.post(
            BASE,
            json=_create_body(
                retry_config={"max_retries": 5, "retry_delay_ms": 2500},
                headers={"X-Api-Key": "k-1"}
            ),
            headers=owner
        )

        assert response.status_code == 201
        assert response.json()["retry_config"] == {"max_retries": 5, "retry_delay_ms": 2500}
        assert response.json()["headers"] == {"X-Api-Key": "k-1"}

    def test_duplicate_events_are_collapsed(self, client, owner):
        response = client.post(
            BASE, json=_create_body(events=["invoice.created", "invoice.created"]), headers=owner
        )

        assert response.json()["events"] == ["invoice.created"]

    @pytest.mark.parametrize("missing", ["name", "url", "events"])
    def test_missing_field(self, client, owner, store, missing):
        body = _create_body()
        del body[missing]

        response = client.post(BASE, json=body, headers=owner)

        assert response.status_code == 400
        assert response.json()["error"]["details"]
        assert store.webhooks == {}

    @pytest.mark.parametrize("overrides", [
        {"url": "ftp://example.com/in"},
        {"events": []},
        {"events": ["invoice.exploded"]},
        {"platform": "ifttt"},
        {"headers": {"X-Webhook-Signature": "forged"}},
        {"retry_config": {"max_retries": 11}},
        {"retry_config": {"retry_delay_ms": 50}},
    ])
    def test_invalid_registration(self, client, owner, store, overrides):
        response = client.post(BASE, json=_create_body(**overrides), headers=owner)

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "http_error"
        assert store.webhooks == {}

    def test_malformed_body(self, client, owner):
        response = client.post(BASE, json=_create_body(events="invoice.created"), headers=owner)

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "validation_error"


class TestReadWebhooks:

    def test_list_excludes_secrets_and_other_tenants(self, client, owner, make_webhook):
        make_webhook(name="Mine")
        make_webhook(name="Theirs", tenant_id="tenant-b")

        response = client.get(BASE, headers=owner)

        assert response.status_code == 200
        body = response.json()
        assert [w["name"] for w in body["data"]] == ["Mine"]
        assert "secret" not in body["data"][0]
        assert body["pagination"] == {"page": 1, "limit": 10, "total": 1, "pages": 1}

    def test_list_pagination(self, client, owner, make_webhook):
        now = datetime.now(timezone.utc)
        for i in range(5):
            make_webhook(name=f"Hook {i}", created_at=now - timedelta(minutes=i))

        response = client.get(BASE, params={"page": 2, "limit": 2}, headers=owner)

        body = response.json()
        assert [w["name"] for w in body["data"]] == ["Hook 2", "Hook 3"]
        assert body["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}

    def test_list_filters(self, client, owner, make_webhook):
        make_webhook(name="Active n8n", platform="n8n")
        make_webhook(name="Inactive n8n", platform="n8n", is_active=False)
        make_webhook(name="Zapier", platform="zapier")

        response = client.get(BASE, params={"is_active": "true", "platform": "n8n"}, headers=owner)

        assert [w["name"] for w in response.json()["data"]] == ["Active n8n"]

    def test_list_limit_is_capped(self, client, owner):
        assert client.get(BASE, params={"limit": 101}, headers=owner).status_code == 400

    def test_get_masks_secret(self, client, owner, make_webhook):
        webhook = make_webhook(secret="abcd0000000000000000wxyz")

        response = client.get(f"{BASE}/{webhook.id}", headers=owner)

        assert response.status_code == 200
        body = response.json()
        assert body["secret_preview"] == "abcd...wxyz"
        assert "secret" not in body

    def test_get_other_tenant_is_not_found(self, client, owner, make_webhook):
        webhook = make_webhook(tenant_id="tenant-b")

        response = client.get(f"{BASE}/{webhook.id}", headers=owner)

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Webhook not found"

    def test_get_unknown_id(self, client, owner):
        assert client.get(f"{BASE}/{uuid.uuid4()}", headers=owner).status_code == 404

    def test_list_event_types(self, client, owner):
        response = client.get(f"{BASE}/events", headers=owner)

        events = [e["event"] for e in response.json()]
        assert response.status_code == 200
        assert len(events) == 17
        assert "invoice.created" in events
        assert "webhook.test" not in events


class TestUpdateWebhook:

    def test_partial_update(self, client, owner, make_webhook):
        webhook = make_webhook()

        response = client.put(
            f"{BASE}/{webhook.id}",
            json={"name": "Renamed", "is_active": False, "retry_config": {"max_retries": 0}},
            headers=owner
        )

        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "Renamed"
        assert body["is_active"] is False
        assert body["url"] == webhook.url
        assert body["retry_config"] == {"max_retries": 0, "retry_delay_ms": 1000}

    @pytest.mark.parametrize("changes", [
        {"url": "not a url"},
        {"events": []},
        {"events": ["nope.nope"]},
        {"headers": {"Content-Type": "text/plain"}},
        {"name": "   "},
    ])
    def test_invalid_update(self, client, owner, make_webhook, changes):
        webhook = make_webhook()

        response = client.put(f"{BASE}/{webhook.id}", json=changes, headers=owner)

        assert response.status_code == 400
        assert webhook.name == "Accounting sync"

    def test_update_other_tenant(self, client, owner, make_webhook):
        webhook = make_webhook(tenant_id="tenant-b")

        response = client.put(f"{BASE}/{webhook.id}", json={"name": "Hijacked"}, headers=owner)

        assert response.status_code == 404
        assert webhook.name == "Accounting sync"


class TestDeleteWebhook:

    def test_delete_keeps_history(self, client, owner, make_webhook, store):
        webhook = make_webhook()
        _add_delivery(store, webhook)

        response = client.delete(f"{BASE}/{webhook.id}", headers=owner)

        assert response.status_code == 204
        assert webhook.id not in store.webhooks
        assert len(store.deliveries) == 1
        assert client.get(f"{BASE}/{webhook.id}", headers=owner).status_code == 404

    def test_delete_other_tenant(self, client, owner, make_webhook, store):
        webhook = make_webhook(tenant_id="tenant-b")

        assert client.delete(f"{BASE}/{webhook.id}", headers=owner).status_code == 404
        assert webhook.id in store.webhooks


class TestWebhookTestEndpoint:

    def test_successful_test(self, client, owner, make_webhook, transport, store):
        webhook = make_webhook()

        response = client.post(f"{BASE}/{webhook.id}/test", headers=owner)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "success"
        assert body["response_status"] == 200
        assert body["message"] == "Test successful (HTTP 200)"
        assert transport.requests[0]["headers"]["X-Webhook-Event"] == "webhook.test"

        delivery = store.deliveries[uuid.UUID(body["delivery_id"])]
        assert delivery.event == "webhook.test"

    def test_failed_test(self, client, owner, make_webhook, transport):
        webhook = make_webhook()
        transport.outcomes = [401]

        body = client.post(f"{BASE}/{webhook.id}/test", headers=owner).json()

        assert body["success"] is False
        assert body["status"] == "failed"
        assert body["message"] == "Test failed: Client error: 401"

    def test_session_released_before_sending(self, client, owner, make_webhook, transport, repos):
        webhook = make_webhook()
        released_at_send = []
        send = transport.send

        async def _recording_send(url, body, headers):
            released_at_send.append(repos.released)
            return await send(url, body, headers)

        transport.send = _recording_send

        response = client.post(f"{BASE}/{webhook.id}/test", headers=owner)

        assert response.status_code == 200
        assert released_at_send == [True]

    def test_requires_admin(self, client, auth_headers, make_webhook):
        webhook = make_webhook()

        response = client.post(f"{BASE}/{webhook.id}/test", headers=auth_headers("tenant-a", "viewer"))

        assert response.status_code == 403


class TestDeliveryHistory:

    def test_newest_first_with_pagination(self, client, owner, make_webhook, store):
        webhook = make_webhook()
        for minutes in range(3):
            _add_delivery(store, webhook, minutes_ago=minutes, response_status=200 + minutes)

        response = client.get(f"{BASE}/{webhook.id}/deliveries", params={"limit": 2}, headers=owner)

        assert response.status_code == 200
        body = response.json()
        assert [d["response_status"] for d in body["data"]] == [200, 201]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert body["data"][0]["payload"] == {"id": "inv_1"}

    def test_status_filter(self, client, owner, make_webhook, store):
        webhook = make_webhook()
        _add_delivery(store, webhook, status="success")
        failed = _add_delivery(store, webhook, status="failed", error_message="Client error: 404")

        response = client.get(
            f"{BASE}/{webhook.id}/deliveries", params={"status": "failed"}, headers=owner
        )

        data = response.json()["data"]
        assert [d["id"] for d in data] == [str(failed.id)]
        assert data[0]["error_message"] == "Client error: 404"

    def test_invalid_status_filter(self, client, owner, make_webhook):
        webhook = make_webhook()

        response = client.get(
            f"{BASE}/{webhook.id}/deliveries", params={"status": "exploded"}, headers=owner
        )

        assert response.status_code == 400

    def test_other_tenant(self, client, owner, make_webhook):
        webhook = make_webhook(tenant_id="tenant-b")

        assert client.get(f"{BASE}/{webhook.id}/deliveries", headers=owner).status_code == 404


class TestRegenerateSecret:

    def test_regenerate(self, client, owner, make_webhook):
        webhook = make_webhook()
        old_secret = webhook.secret

        response = client.post(f"{BASE}/{webhook.id}/regenerate-secret", headers=owner)

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == str(webhook.id)
        assert body["secret"] != old_secret
        assert webhook.secret == body["secret"]

    def test_old_signatures_stop_verifying(self, client, owner, make_webhook, transport):
        webhook = make_webhook()
        old_secret = webhook.secret
        client.post(f"{BASE}/{webhook.id}/test", headers=owner)

        new_secret = client.post(f"{BASE}/{webhook.id}/regenerate-secret", headers=owner).json()["secret"]
        client.post(f"{BASE}/{webhook.id}/test", headers=owner)

        before, after = transport.requests
        old_signature = before["headers"]["X-Webhook-Signature"]
        assert WebhookSecurity.verify_signature(before["body"], old_signature, old_secret) is True
        assert WebhookSecurity.verify_signature(before["body"], old_signature, new_secret) is False
        assert WebhookSecurity.verify_signature(
            after["body"], after["headers"]["X-Webhook-Signature"], new_secret
        ) is True

    def test_regenerate_other_tenant(self, client, owner, make_webhook):
        webhook = make_webhook(tenant_id="tenant-b")
        old_secret = webhook.secret

        response = client.post(f"{BASE}/{webhook.id}/regenerate-secret", headers=owner)

        assert response.status_code == 404
        assert webhook.secret == old_secret
