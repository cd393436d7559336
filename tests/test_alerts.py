"""Tests for the alert producers."""

import json

import pytest

from app.errors import ValidationError
from app.services.alerts import (
    broadcast_admin_alert,
    notify_incident_reported,
    notify_sos_status,
)
from app.services.push import PushDispatcher
from app.settings import settings
from tests.fakes import FakeStore, FakeTransport, make_row


def make_dispatcher(rows=()):
    transport = FakeTransport()
    return PushDispatcher(FakeStore(rows), transport=transport), transport


def sent_payload(transport: FakeTransport) -> dict:
    return json.loads(transport.sent[0]["data"])


class TestSosStatus:
    async def test_targets_requester_with_high_urgency(self):
        dispatcher, transport = make_dispatcher([make_row(1, "req"), make_row(2, "other")])

        report = await notify_sos_status(dispatcher, "req", "dispatched")

        assert report.targeted_users == ["req"]
        assert report.delivered_count == 1
        payload = sent_payload(transport)
        assert payload["title"] == "SOS Status Update"
        assert payload["body"] == "Emergency responders are on the way!"
        assert payload["requireInteraction"] is True
        assert transport.sent[0]["urgency"] == "high"

    async def test_unknown_status(self):
        dispatcher, _ = make_dispatcher()

        with pytest.raises(ValueError):
            await notify_sos_status(dispatcher, "req", "cancelled")


class TestIncidentReported:
    async def test_broadcast_with_coordinates(self):
        dispatcher, transport = make_dispatcher([make_row(1, "a"), make_row(2, "b")])

        report = await notify_incident_reported(
            dispatcher,
            incident_id=42,
            incident_type="Fire",
            description="x" * 100,
            latitude=14.0683,
            longitude=121.32561,
        )

        assert report.notification_type.value == "broadcast"
        payload = sent_payload(transport)
        assert payload["body"] == f"Fire reported in 14.0683, 121.3256. {'x' * 80}..."
        assert payload["url"] == "/public/html/map.html"
        assert payload["data"]["incidentId"] == 42

    async def test_location_falls_back_to_city(self):
        dispatcher, transport = make_dispatcher([make_row(1, "a")])

        await notify_incident_reported(
            dispatcher, incident_id=1, incident_type="Flood", description="Knee deep",
        )

        assert sent_payload(transport)["body"] == "Flood reported in San Pablo City. Knee deep"


class TestAdminBroadcast:
    async def test_urgent_broadcast(self):
        dispatcher, transport = make_dispatcher([make_row(1, "a")])

        await broadcast_admin_alert(dispatcher, title="Typhoon", body="Stay indoors", urgent=True)

        payload = sent_payload(transport)
        assert payload["title"] == "\U0001F6A8 Typhoon"
        assert payload["badge"] == settings.urgent_badge
        assert payload["data"]["alertType"] == "admin_broadcast"
        assert payload["data"]["isUrgent"] is True
        assert transport.sent[0]["urgency"] == "high"

    async def test_empty_title_is_rejected(self):
        dispatcher, _ = make_dispatcher([make_row(1, "a")])

        with pytest.raises(ValidationError):
            await broadcast_admin_alert(dispatcher, title="  ", body="Stay indoors")
