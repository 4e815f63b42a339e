"""
Audit logger: best-effort writes, client address and geolocation lookup.
"""

import pytest
import requests
from sqlalchemy.exc import SQLAlchemyError

from lrsync import audit
from lrsync.audit import client_ip, format_location, log_notification, lookup_location
from lrsync.extensions import db
from lrsync.models import Notification


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


@pytest.fixture()
def geo(app, monkeypatch):
    """Enable the lookup and record requested URLs."""
    app.config["IP_GEOLOCATION_URL"] = "https://geo.test/"
    calls = []

    def respond(payload=None, exc=None, status=200):
        def fake_get(url, timeout):
            calls.append((url, timeout))
            if exc is not None:
                raise exc
            return FakeResponse(payload, status)

        monkeypatch.setattr(audit.requests, "get", fake_get)
        return calls

    return respond


class TestLocation:
    @pytest.mark.parametrize(
        "geo_data,expected",
        [
            ({"city": "Cebu City", "country_name": "Philippines"}, "Cebu City, Philippines"),
            ({"country_name": "Philippines"}, "Philippines"),
            ({}, "Unknown"),
            (None, "Unknown"),
        ],
    )
    def test_format(self, geo_data, expected):
        assert format_location(geo_data) == expected

    def test_lookup_calls_configured_service(self, app, geo):
        calls = geo({"city": "Davao", "country_name": "Philippines"})
        with app.app_context():
            assert lookup_location("203.0.113.7") == "Davao, Philippines"
        assert calls == [("https://geo.test/203.0.113.7/json/", 3.0)]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"exc": requests.ConnectionError("down")},
            {"exc": requests.Timeout("slow")},
            {"payload": {}, "status": 429},
        ],
    )
    def test_lookup_failure_is_unknown(self, app, geo, kwargs):
        geo(**kwargs)
        with app.app_context():
            assert lookup_location("203.0.113.7") == "Unknown"

    def test_disabled_lookup_makes_no_call(self, app, monkeypatch):
        monkeypatch.setattr(audit.requests, "get", pytest.fail)
        with app.app_context():
            assert lookup_location("203.0.113.7") == "Unknown"

    def test_first_forwarded_hop_wins(self, app):
        with app.test_request_context(headers={"X-Forwarded-For": "198.51.100.4, 10.0.0.1"}):
            assert client_ip() == "198.51.100.4"
        with app.test_request_context(environ_base={"REMOTE_ADDR": "192.0.2.9"}):
            assert client_ip() == "192.0.2.9"

    def test_ip_location_endpoint(self, client, geo):
        geo({"city": "Manila", "country_name": "Philippines"})
        resp = client.get("/api/get-ip-location", headers={"X-Forwarded-For": "198.51.100.4"})
        assert resp.get_json() == {"ip_address": "198.51.100.4", "location": "Manila, Philippines"}


class TestLogNotification:
    def test_entry_written_outside_request(self, app):
        with app.app_context():
            entry = log_notification("seed", "Seeded categories", meta={"count": 9})
            assert entry.id is not None
            row = db.session.get(Notification, entry.id)
            assert row.meta == {"count": 9}
            assert row.user_uuid is None
            assert row.location == "Unknown"

    def test_failed_write_is_swallowed(self, app, monkeypatch):
        def broken_commit():
            raise SQLAlchemyError("database is locked")

        with app.app_context():
            monkeypatch.setattr(db.session, "commit", broken_commit)
            assert log_notification("seed", "will not persist") is None
            monkeypatch.undo()
            assert Notification.query.count() == 0

    def test_request_entry_snapshots_actor(self, client, secretary, login, app):
        login(secretary)
        client.post(
            "/api/taxpayers",
            json={"tin": "999", "registered_name": "Snapshot Inc"},
            headers={"X-Forwarded-For": "198.51.100.4", "User-Agent": "pytest-agent"},
        )
        with app.app_context():
            entry = Notification.query.filter_by(action="taxpayer_created").one()
            assert entry.user_uuid == secretary.uuid
            assert entry.user_name == secretary.full_name
            assert entry.user_email == secretary.email
            assert entry.ip_address == "198.51.100.4"
            assert entry.user_agent == "pytest-agent"
            assert entry.meta["after"]["registered_name"] == "Snapshot Inc"


class TestActivityTracker:
    def test_list_and_stats(self, client, super_admin, secretary, login):
        login(secretary)
        client.post("/api/taxpayers", json={"tin": "1", "registered_name": "A"})
        client.post("/api/taxpayers", json={"tin": "2", "registered_name": "B"})

        login(super_admin)
        listed = client.get("/api/notifications?action=taxpayer_created").get_json()
        assert listed["total"] == 2
        assert client.get("/api/notifications?search=Added%20B").get_json()["total"] == 1

        stats = client.get("/api/notifications/stats").get_json()
        assert stats["by_action"]["taxpayer_created"] == 2
        assert stats["by_action"]["login_success"] == 2
        assert stats["unique_users"] == 2
        assert stats["total"] == stats["last_24_hours"] == 4

    def test_bad_date_filter(self, client, super_admin, login):
        login(super_admin)
        assert client.get("/api/notifications?date_from=yesterday").status_code == 400
