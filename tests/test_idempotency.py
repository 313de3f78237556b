"""Tests for Idempotency-Key handling on write requests.

Tests cover:
- Duplicate detection and the 409 answer
- Key release after failed requests
- Path and query scoped keys, route template event types
- Method, path and header requirements
"""

from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from tests.factories import auth_header, login, registration_payload
from warden.api import create_app
from warden.api.middleware.idempotency import MAX_KEY_LENGTH
from warden.db.models import InboxEntry


@asynccontextmanager
async def _client_with(settings, mailer, **idempotency):
    """Client for an application built with overridden idempotency settings."""
    configured = settings.model_copy(
        update={"idempotency": settings.idempotency.model_copy(update=idempotency)}
    )
    app = create_app(configured)
    app.state.mailer = mailer
    app.state.storage = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def _key(value: str) -> dict[str, str]:
    return {"Idempotency-Key": value}


class TestDuplicates:
    """Tests for replay detection."""

    @pytest.mark.asyncio
    async def test_replay_rejected(self, api_client, member, password):
        """Test that a repeated key on the same route is answered with 409."""
        body = {"email": member.email, "password": password}
        first = await api_client.post("/api/v1/auth/login", json=body, headers=_key("k-1"))
        second = await api_client.post("/api/v1/auth/login", json=body, headers=_key("k-1"))

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"] == {
            "type": "CONFLICT",
            "message": "Request already processed",
        }

    @pytest.mark.asyncio
    async def test_distinct_keys(self, api_client, member, password):
        """Test that different keys are processed independently."""
        body = {"email": member.email, "password": password}
        first = await api_client.post("/api/v1/auth/login", json=body, headers=_key("k-1"))
        second = await api_client.post("/api/v1/auth/login", json=body, headers=_key("k-2"))
        assert first.status_code == second.status_code == 200

    @pytest.mark.asyncio
    async def test_no_key_no_tracking(self, api_client, session, member, password):
        """Test that requests without a key are not recorded."""
        body = {"email": member.email, "password": password}
        for _ in range(2):
            response = await api_client.post("/api/v1/auth/login", json=body)
            assert response.status_code == 200
        assert await session.scalar(select(func.count()).select_from(InboxEntry)) == 0

    @pytest.mark.asyncio
    async def test_same_key_other_route(self, api_client, member, password):
        """Test that a key only collides on the same route."""
        tokens = await login(api_client, member.email, password)
        refreshed = await api_client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]},
            headers=_key("shared"),
        )
        logged_in = await api_client.post(
            "/api/v1/auth/login",
            json={"email": member.email, "password": password},
            headers=_key("shared"),
        )
        assert refreshed.status_code == 200
        assert logged_in.status_code == 200

    @pytest.mark.asyncio
    async def test_key_scoped_to_concrete_path(self, api_client, admin, member):
        """Test that the same key on two concrete paths is two requests."""
        tokens = await login(api_client, admin.email)
        headers = {**auth_header(tokens["access_token"]), **_key("edit-1")}

        first = await api_client.put(
            f"/api/v1/users/{member.user_id}",
            json={"name": "Renamed", "version": member.version},
            headers=headers,
        )
        second = await api_client.put(
            f"/api/v1/users/{admin.user_id}",
            json={"name": "Renamed", "version": admin.version},
            headers=headers,
        )
        replay = await api_client.put(
            f"/api/v1/users/{member.user_id}",
            json={"name": "Renamed", "version": member.version},
            headers=headers,
        )

        assert first.status_code == second.status_code == 200
        assert replay.status_code == 409

    @pytest.mark.asyncio
    async def test_event_type_uses_route_template(self, api_client, session, admin, member):
        """Test that the recorded event type names the template, not the path."""
        tokens = await login(api_client, admin.email)
        headers = {**auth_header(tokens["access_token"]), **_key("edit-2")}
        await api_client.put(
            f"/api/v1/users/{member.user_id}",
            json={"name": "Renamed", "version": member.version},
            headers=headers,
        )
        await api_client.post("/api/v1/roles/cleanup-expired", headers=headers)

        event_types = set(await session.scalars(select(InboxEntry.event_type)))
        assert event_types == {
            "http.PUT./api/v1/users/{user_id}",
            "http.POST./api/v1/roles/cleanup-expired",
        }

    @pytest.mark.asyncio
    async def test_query_string_matters(self, api_client, admin):
        """Test that the same key with a different query string is a new request."""
        tokens = await login(api_client, admin.email)
        headers = {**auth_header(tokens["access_token"]), **_key("cleanup")}

        first = await api_client.post("/api/v1/roles/cleanup-expired?a=1", headers=headers)
        second = await api_client.post("/api/v1/roles/cleanup-expired?a=2", headers=headers)
        assert first.status_code == second.status_code == 200


class TestRelease:
    """Tests for key release after failures."""

    @pytest.mark.asyncio
    async def test_failed_request_can_be_retried(self, api_client, member, password):
        """Test that a failed request frees its key for a retry."""
        failed = await api_client.post(
            "/api/v1/auth/login",
            json={"email": member.email, "password": "Wr0ng-password"},
            headers=_key("retry-me"),
        )
        retried = await api_client.post(
            "/api/v1/auth/login",
            json={"email": member.email, "password": password},
            headers=_key("retry-me"),
        )
        assert failed.status_code == 401
        assert retried.status_code == 200

    @pytest.mark.asyncio
    async def test_conflict_releases(self, api_client):
        """Test that a domain conflict also frees the key."""
        payload = registration_payload()
        await api_client.post("/api/v1/auth/register", json=payload)

        duplicate = await api_client.post(
            "/api/v1/auth/register", json=payload, headers=_key("reg-1")
        )
        fresh = await api_client.post(
            "/api/v1/auth/register", json=registration_payload(), headers=_key("reg-1")
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["message"] != "Request already processed"
        assert fresh.status_code == 201


class TestApplicability:
    """Tests for which requests the middleware looks at."""

    @pytest.mark.asyncio
    async def test_reads_ignored(self, api_client, member, password):
        """Test that GET requests never consume a key."""
        tokens = await login(api_client, member.email, password)
        headers = {**auth_header(tokens["access_token"]), **_key("read")}
        for _ in range(2):
            response = await api_client.get("/api/v1/auth/profile", headers=headers)
            assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_key_too_long(self, api_client, member, password):
        """Test that oversized keys are rejected."""
        response = await api_client.post(
            "/api/v1/auth/login",
            json={"email": member.email, "password": password},
            headers=_key("k" * (MAX_KEY_LENGTH + 1)),
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == (
            f"Idempotency-Key must be at most {MAX_KEY_LENGTH} characters"
        )

    @pytest.mark.asyncio
    async def test_required_key(self, settings, mailer, member, password):
        """Test that write requests without a key are refused when a key is required."""
        async with _client_with(settings, mailer, require_key=True) as client:
            body = {"email": member.email, "password": password}
            missing = await client.post("/api/v1/auth/login", json=body)
            present = await client.post("/api/v1/auth/login", json=body, headers=_key("k"))
            health = await client.get("/health")

        assert missing.status_code == 400
        assert missing.json()["error"]["message"] == "Idempotency-Key header is required"
        assert present.status_code == 200
        assert health.status_code == 200

    @pytest.mark.asyncio
    async def test_ignored_path(self, settings, mailer, member, password):
        """Test that configured path prefixes bypass the middleware."""
        async with _client_with(
            settings, mailer, ignored_paths=["/health", "/api/v1/auth/login"]
        ) as client:
            body = {"email": member.email, "password": password}
            first = await client.post("/api/v1/auth/login", json=body, headers=_key("k"))
            second = await client.post("/api/v1/auth/login", json=body, headers=_key("k"))
        assert first.status_code == second.status_code == 200

    @pytest.mark.asyncio
    async def test_disabled(self, settings, mailer, member, password):
        """Test that the header is ignored when idempotency is off."""
        async with _client_with(settings, mailer, enabled=False) as client:
            body = {"email": member.email, "password": password}
            first = await client.post("/api/v1/auth/login", json=body, headers=_key("k"))
            second = await client.post("/api/v1/auth/login", json=body, headers=_key("k"))
        assert first.status_code == second.status_code == 200
