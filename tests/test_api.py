"""
Tests for the HTTP API, run through FastAPI's TestClient.
"""

import asyncio
import json
import threading
import time
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from country_directory.api.routes import create_api_app
from country_directory.config import Settings
from country_directory.platforms.base import Member, MemberProfile
from country_directory.services.cache import Snapshot
from tests.fakes import CountingFactory, FakeDirectoryClient, three_member_client

ADMIN = {"X-Admin-Token": "s3cret"}


class GatedClient(FakeDirectoryClient):
    """Profile lookups block until the test opens the gate."""

    def __init__(self, gate: threading.Event):
        base = three_member_client()
        super().__init__(tiers=base.tiers, profiles=base.profiles)
        self.gate = gate

    async def get_profile(self, username: str) -> MemberProfile:
        while not self.gate.is_set():
            await asyncio.sleep(0.01)
        return await super().get_profile(username)


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        discourse_url="https://forum.example",
        discourse_api_key="key-123",
        admin_api_token="s3cret",
        snapshot_path=str(tmp_path / "snapshot.json"),
        credentials_path=str(tmp_path / "credentials.json"),
        request_delay_seconds=0,
        batch_pause_seconds=0,
        scheduler_check_interval_seconds=3600,
        rate_limit_global="10000/minute",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def write_fresh_snapshot(path: str) -> None:
    members = [
        Member("alice", "Alice", "Martin", "alice@example.com", "Paris, France", "France", 2,
               "/user_avatar/forum.example/alice/{size}/1_2.png"),
        Member("bruno", "Bruno", "", None, "Lyon, France", "France", 1, None),
        Member("bob", "Bob", "", None, "Madrid", "Madrid", 1, None),
        Member("carol", "carol", "", None, None, "No country", 0, None),
    ]
    snapshot = Snapshot.build(members, datetime.now(timezone.utc))
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(snapshot.to_dict(), fh)


def wait_until_idle(client: TestClient, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = client.get("/api/v1/status").json()
        if not status["loading"]:
            return status
        time.sleep(0.02)
    raise AssertionError("refresh did not finish")


@pytest.fixture
def settings(tmp_path) -> Settings:
    s = make_settings(tmp_path)
    write_fresh_snapshot(s.snapshot_path)
    return s


@pytest.fixture
def factory() -> CountingFactory:
    return CountingFactory(three_member_client())


@pytest.fixture
def client(settings, factory):
    app = create_api_app(settings, client_factory=factory)
    with TestClient(app) as c:
        yield c


class TestReadEndpoints:

    def test_health(self, client):
        """Test health check."""
        assert client.get("/health").json() == {"status": "ok"}

    def test_countries_from_restored_snapshot(self, client, factory):
        """Test countries served from a restored snapshot without fetching."""
        response = client.get("/api/v1/countries")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["countries"] == ["France", "Madrid"]
        assert body["total_countries"] == 2
        assert body["cache_updated"]
        assert body["timestamp"]
        # the snapshot is fresh: no fetch
        assert factory.calls == 0

    def test_members_of_country(self, client):
        """Test member cards for one country."""
        body = client.get("/api/v1/members", params={"country": "France"}).json()

        assert body["success"] is True
        assert body["country"] == "France"
        assert body["total_users"] == 2
        alice = next(u for u in body["users"] if u["username"] == "alice")
        assert alice["firstname"] == "Alice"
        assert alice["initials"] == "AM"
        assert alice["avatar_url"] == "https://forum.example/user_avatar/forum.example/alice/48/1_2.png"

    def test_members_requires_country(self, client):
        """Test that a missing country is rejected."""
        assert client.get("/api/v1/members").status_code == 400

    def test_unknown_country_is_empty(self, client):
        """Test unknown country returns an empty list."""
        body = client.get("/api/v1/members", params={"country": "Atlantis"}).json()
        assert body["success"] is True
        assert body["users"] == []
        assert body["total_users"] == 0

    def test_no_country_bucket_is_readable(self, client):
        """Test the No country bucket can be listed."""
        body = client.get("/api/v1/members", params={"country": "No country"}).json()
        assert [u["username"] for u in body["users"]] == ["carol"]

    def test_users_grouped_and_searched(self, client):
        """Test grouped users and the search filter."""
        body = client.get("/api/v1/users").json()
        assert sorted(body["users_by_country"]) == ["France", "Madrid", "No country"]
        assert body["total_users"] == 4

        body = client.get("/api/v1/users", params={"search": "LYON"}).json()
        assert list(body["users_by_country"]) == ["France"]
        assert [u["username"] for u in body["users_by_country"]["France"]] == ["bruno"]

        body = client.get("/api/v1/users", params={"search": "nobody-matches"}).json()
        assert body["users_by_country"] == {}

    def test_status(self, client):
        """Test cache status report."""
        body = client.get("/api/v1/status").json()
        assert body["state"] == "fresh"
        assert body["configured"] is True
        assert body["total_users"] == 4
        assert body["total_countries"] == 2


class TestEmptyCache:

    def test_unconfigured_empty_cache(self, tmp_path):
        """Test reads and trigger without credentials."""
        settings = make_settings(tmp_path, discourse_api_key=None)
        app = create_api_app(settings, client_factory=CountingFactory(three_member_client()))

        with TestClient(app) as client:
            body = client.get("/api/v1/countries").json()
            assert body["success"] is False
            assert body["countries"] == []
            assert body["message"]

            response = client.post("/api/v1/update_cache", headers=ADMIN)
            assert response.status_code == 400
            assert response.json()["success"] is False

    def test_empty_cache_is_filled_in_background(self, tmp_path):
        """Test that a read on an empty cache fills it in the background."""
        settings = make_settings(tmp_path)
        factory = CountingFactory(three_member_client())
        app = create_api_app(settings, client_factory=factory)

        with TestClient(app) as client:
            client.get("/api/v1/countries")
            wait_until_idle(client)
            body = client.get("/api/v1/countries").json()

        assert body["success"] is True
        assert body["countries"] == ["France", "Madrid"]
        assert factory.calls == 1


class TestAdminEndpoints:

    def test_update_cache_requires_admin(self, client):
        """Test that update_cache needs the admin token."""
        assert client.post("/api/v1/update_cache").status_code == 401
        assert client.post("/api/v1/update_cache", headers={"X-Admin-Token": "wrong"}).status_code == 401

    def test_update_cache_single_flight(self, tmp_path):
        """Test that a second trigger during a refresh is refused."""
        settings = make_settings(tmp_path)
        write_fresh_snapshot(settings.snapshot_path)
        gate = threading.Event()
        factory = CountingFactory(GatedClient(gate))
        app = create_api_app(settings, client_factory=factory)

        with TestClient(app) as client:
            first = client.post("/api/v1/update_cache", headers=ADMIN).json()
            second = client.post("/api/v1/update_cache", headers=ADMIN).json()

            # stale-but-available while the refresh runs
            assert client.get("/api/v1/countries").json()["countries"] == ["France", "Madrid"]

            gate.set()
            wait_until_idle(client)
            members = client.get("/api/v1/members", params={"country": "France"}).json()

        assert first["success"] is True
        assert first["estimated_completion"]
        assert second["success"] is False
        assert "already in progress" in second["message"]
        assert factory.calls == 1
        assert [u["username"] for u in members["users"]] == ["alice"]

    def test_save_settings(self, client, settings):
        """Test saving Discourse settings."""
        payload = {
            "dmu_discourse_api_key": "new-key",
            "dmu_discourse_api_username": "bot",
            "dmu_discourse_api_url": "https://other.example/",
            "dmu_discourse_api_limit": 200,
        }
        assert client.post("/api/v1/save_settings", json=payload).status_code == 401

        response = client.post("/api/v1/save_settings", json=payload, headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {"success": True}

        with open(settings.credentials_path, encoding="utf-8") as fh:
            saved = json.load(fh)
        assert saved["api_key"] == "new-key"
        assert saved["api_url"] == "https://other.example"
        assert saved["api_limit"] == 200

    def test_save_settings_validates(self, client):
        """Test settings validation."""
        response = client.post("/api/v1/save_settings", json={"api_username": "bot"}, headers=ADMIN)
        assert response.status_code == 422


class TestFailedRefresh:

    @pytest.fixture
    def dead_app(self, tmp_path):
        settings = make_settings(tmp_path)
        dead = FakeDirectoryClient(tiers={}, profiles={}, failing_pages=frozenset({("trust_level_0", 0)}))
        factory = CountingFactory(dead)
        return create_api_app(settings, client_factory=factory), factory

    def test_status_hides_upstream_error_from_public(self, dead_app):
        """Test that upstream error text is shown to admins only."""
        app, _ = dead_app
        with TestClient(app) as client:
            client.get("/api/v1/countries")
            public = wait_until_idle(client)
            admin = client.get("/api/v1/status", headers=ADMIN).json()

        assert public["state"] == "empty"
        assert public["last_error"] == "Last refresh failed"
        assert "trust_level_0" in admin["last_error"]

    def test_reads_do_not_retry_during_cooldown(self, dead_app):
        """Test that reads after a failed refresh do not refetch."""
        app, factory = dead_app
        with TestClient(app) as client:
            client.get("/api/v1/countries")
            wait_until_idle(client)
            for _ in range(5):
                assert client.get("/api/v1/countries").json()["success"] is False
            wait_until_idle(client)

        assert factory.calls == 1
