"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from app.deps import get_dispatcher, get_subscription_store
from app.main import app
from app.services.push import PushDispatcher
from app.settings import Settings, settings
from tests.fakes import FakeStore, FakeTransport, make_record, make_row

client = TestClient(app)


def override(store: FakeStore, transport: FakeTransport | None = None, config: Settings | None = None):
    app.dependency_overrides[get_subscription_store] = lambda: store
    app.dependency_overrides[get_dispatcher] = lambda: PushDispatcher(
        store, transport=transport or FakeTransport(), config=config
    )


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


class TestSendPush:
    def test_broadcast_with_expired_endpoint(self):
        store = FakeStore([make_row(1, "a"), make_row(2, "b"), make_row(3, "c")])
        override(store, FakeTransport(gone={"https://push.example.com/send/3"}))

        response = client.post(
            "/send-push",
            json={"title": "Flood Alert", "body": "Rising water", "urgency": "high"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["delivered_to"] == 2
        assert body["failed"] == 1
        assert body["total_subscriptions"] == 3
        assert body["notification_type"] == "broadcast"
        assert body["errors"][0]["removed"] is True
        assert [row.id for row in store.rows] == [1, 2]

    def test_supabase_style_path(self):
        override(FakeStore([make_row(1, "u1")]))

        response = client.post(
            "/functions/v1/send-push",
            json={"title": "SOS", "body": "On the way", "user_ids": ["u1"]},
        )

        assert response.status_code == 200
        assert response.json()["notification_type"] == "targeted"
        assert response.json()["targeted_users"] == ["u1"]

    def test_empty_user_ids_echoed_as_empty_list(self):
        override(FakeStore([make_row(1, "u1")]))

        response = client.post("/send-push", json={"title": "t", "body": "b", "user_ids": []})

        assert response.status_code == 200
        body = response.json()
        assert body["notification_type"] == "broadcast"
        assert body["targeted_users"] == []
        assert body["delivered_to"] == 1

    def test_no_subscribers_for_user(self):
        override(FakeStore())

        response = client.post("/send-push", json={"title": "t", "body": "b", "user_ids": ["u1"]})

        assert response.status_code == 200
        body = response.json()
        assert body["delivered_to"] == 0
        assert body["total_subscriptions"] == 0
        assert "No subscribers found for specified users" in body["message"]

    def test_missing_body_rejected_without_store_access(self):
        store = FakeStore([make_row(1, "a")])
        override(store)

        response = client.post("/send-push", json={"title": "Flood Alert"})

        assert response.status_code == 400
        assert response.json() == {"error": "title and body are required", "type": "ValidationError"}
        assert store.calls == []

    def test_invalid_json(self):
        override(FakeStore())

        response = client.post(
            "/send-push",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["type"] == "ValidationError"

    def test_missing_vapid_keys(self):
        store = FakeStore([make_row(1, "a")])
        app.dependency_overrides[get_subscription_store] = lambda: store
        app.dependency_overrides[get_dispatcher] = lambda: PushDispatcher(
            store, config=Settings(vapid_public_key=None, vapid_private_key=None)
        )

        response = client.post("/send-push", json={"title": "t", "body": "b"})

        assert response.status_code == 500
        assert response.json() == {"error": "VAPID keys not configured", "type": "ConfigurationError"}

    def test_cors_preflight(self):
        response = client.options(
            "/send-push",
            headers={
                "Origin": "https://spc.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type,apikey",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]


class TestSubscriptionEndpoints:
    def test_vapid_public_key(self):
        response = client.get("/push/vapid-public-key")

        assert response.status_code == 200
        assert response.json() == {"publicKey": settings.vapid_public_key}

    def test_subscribe_rejects_incomplete_subscription(self):
        override(FakeStore())

        response = client.post(
            "/push/subscribe",
            json={"user_id": "u1", "subscription": {"endpoint": "https://e"}},
        )

        assert response.status_code == 400
        assert response.json()["type"] == "ValidationError"

    def test_subscribe_twice_keeps_latest(self):
        store = FakeStore()
        override(store)

        first = client.post(
            "/push/subscribe",
            json={"user_id": "u1", "subscription": make_record(1).to_dict()},
        )
        second = client.post(
            "/push/subscribe",
            json={"user_id": "u1", "subscription": make_record(2).to_dict()},
        )

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json() == {"status": "subscribed", "id": 1}
        assert second.json() == {"status": "subscribed", "id": 1}
        assert len(store.rows) == 1
        assert store.rows[0].endpoint == "https://push.example.com/send/2"

    def test_unsubscribe_then_not_found(self):
        store = FakeStore([make_row(1, "u1")])
        override(store)

        response = client.post("/push/unsubscribe", json={"user_id": "u1"})
        assert response.status_code == 200
        assert response.json() == {"status": "unsubscribed"}
        assert store.rows == []

        response = client.post("/push/unsubscribe", json={"user_id": "u1"})
        assert response.status_code == 200
        assert response.json() == {"status": "not_found"}

    def test_status(self):
        override(FakeStore([make_row(1, "u1")]))

        response = client.get("/push/status", params={"user_id": "u1"})

        assert response.status_code == 200
        body = response.json()
        assert body["vapid_configured"] is True
        assert body["subscription_count"] == 1
        assert body["subscription"]["endpoint_domain"] == "push.example.com"

    def test_health(self):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert "X-Request-ID" in response.headers
