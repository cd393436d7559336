"""Tests for the SQLAlchemy subscription store."""

import pytest
from sqlalchemy.exc import OperationalError

from app.errors import StoreError, ValidationError
from app.services.composer import DeliveryPlan
from app.services.subscription_store import SubscriptionRecord
from tests.fakes import make_record


class TestSubscriptionRecord:
    def test_from_browser_json(self):
        record = SubscriptionRecord.from_dict(
            {
                "endpoint": "https://fcm.googleapis.com/fcm/send/abc",
                "expirationTime": None,
                "keys": {"p256dh": "BNcR", "auth": "tBHI"},
            }
        )

        assert record.endpoint == "https://fcm.googleapis.com/fcm/send/abc"
        assert record.p256dh == "BNcR"
        assert record.auth == "tBHI"
        assert record.expiration_time is None
        assert record.to_dict() == {
            "endpoint": "https://fcm.googleapis.com/fcm/send/abc",
            "expirationTime": None,
            "keys": {"p256dh": "BNcR", "auth": "tBHI"},
        }

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            {"endpoint": "https://e"},
            {"endpoint": "", "keys": {"p256dh": "x", "auth": "y"}},
            {"endpoint": "https://e", "keys": {"p256dh": "x"}},
            {"endpoint": "https://e", "keys": {"p256dh": "x", "auth": "y"}, "expirationTime": "soon"},
        ],
    )
    def test_rejects_incomplete(self, raw):
        with pytest.raises(ValidationError):
            SubscriptionRecord.from_dict(raw)


class TestSubscriptionStore:
    async def test_upsert_keeps_one_row_per_principal(self, store):
        first = await store.upsert("a", make_record(1), user_agent="Firefox")
        second = await store.upsert("a", make_record(2), user_agent="Chrome")

        assert first.id == second.id
        assert await store.count() == 1
        row = await store.get_for_principal("a")
        assert row.endpoint == "https://push.example.com/send/2"
        assert row.p256dh_key == "p256dh-2"
        assert row.auth_key == "auth-2"
        assert row.user_agent == "Chrome"

    async def test_fetch_by_plan(self, store):
        for principal in ("a", "b", "c"):
            await store.upsert(principal, make_record(principal))

        targeted = await store.fetch(DeliveryPlan(principal_ids=frozenset({"a", "b"})))
        everyone = await store.fetch(DeliveryPlan())

        assert sorted(row.user_id for row in targeted) == ["a", "b"]
        assert sorted(row.user_id for row in everyone) == ["a", "b", "c"]

    async def test_fetch_unknown_principal_is_empty(self, store):
        await store.upsert("a", make_record("a"))

        assert await store.fetch(DeliveryPlan(principal_ids=frozenset({"zz"}))) == []

    async def test_delete_many(self, store):
        rows = [await store.upsert(p, make_record(p)) for p in ("a", "b", "c")]

        removed = await store.delete_many([rows[0].id, rows[2].id, 9999])

        assert removed == 2
        remaining = await store.fetch(DeliveryPlan())
        assert [row.user_id for row in remaining] == ["b"]

    async def test_delete_many_with_no_ids(self, store):
        assert await store.delete_many([]) == 0

    async def test_delete_for_principal(self, store):
        await store.upsert("a", make_record("a"))

        assert await store.delete_for_principal("a", endpoint="https://other") is False
        assert await store.delete_for_principal("a", endpoint="https://push.example.com/send/a") is True
        assert await store.delete_for_principal("a") is False
        assert await store.count() == 0

    async def test_database_failure_becomes_store_error(self, store, monkeypatch):
        async def broken_execute(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(store.db, "execute", broken_execute)

        with pytest.raises(StoreError):
            await store.fetch(DeliveryPlan())
        with pytest.raises(StoreError):
            await store.count()
