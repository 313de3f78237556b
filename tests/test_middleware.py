"""Tests for the HTTP middleware stack and authorization gates.

Tests cover:
- Request ID propagation
- Body size and media type limits
- Request deadlines
- Error envelope shape for domain, validation, HTTP and unexpected errors
- Role, ownership, composite and method-derived permission gates
"""

import asyncio
from typing import Annotated
from uuid import UUID

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from tests.factories import auth_header, login
from warden.api.middleware.auth import (
    AuthenticatedUser,
    conditional_access,
    dynamic_permission_check,
    require_any_role,
    require_ownership_or_role,
    require_permission_by_name,
)
from warden.api.middleware.errors import ErrorHandlerMiddleware, register_exception_handlers
from warden.api.middleware.request_id import MAX_REQUEST_ID_LENGTH, RequestIDMiddleware
from warden.api.middleware.timeout import TimeoutMiddleware
from warden.services.rbac import MODERATOR_ROLE


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def gated_app(test_app):
    """The application with a few extra routes behind each kind of gate."""

    @test_app.get("/api/v1/reports")
    async def list_reports(
        user: Annotated[AuthenticatedUser, Depends(dynamic_permission_check)],
    ) -> dict:
        return {"user": str(user.user_id)}

    @test_app.get("/api/v1/notes/{user_id}")
    async def read_notes(
        user_id: UUID,
        user: Annotated[AuthenticatedUser, Depends(conditional_access("admin", "owner:user_id"))],
    ) -> dict:
        return {"owner": str(user_id)}

    @test_app.get("/api/v1/boards/{user_id}")
    async def read_board(
        user_id: UUID,
        user: Annotated[
            AuthenticatedUser, Depends(require_ownership_or_role("user_id", MODERATOR_ROLE))
        ],
    ) -> dict:
        return {"owner": str(user_id)}

    @test_app.get("/api/v1/staff")
    async def staff_only(
        user: Annotated[AuthenticatedUser, Depends(require_any_role("admin", "moderator"))],
    ) -> dict:
        return {"ok": True}

    @test_app.get("/api/v1/audit")
    async def audit(
        user: Annotated[AuthenticatedUser, Depends(require_permission_by_name("roles:read"))],
    ) -> dict:
        return {"ok": True}

    return test_app


@pytest.fixture
async def gated_client(gated_app):
    transport = ASGITransport(app=gated_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _small_app(*middleware) -> FastAPI:
    """Bare application with the given middleware, outermost last."""
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/slow")
    async def slow() -> dict:
        await asyncio.sleep(1)
        return {"done": True}

    @app.get("/boom")
    async def boom() -> dict:
        raise RuntimeError("unexpected")

    for cls, kwargs in middleware:
        app.add_middleware(cls, **kwargs)
    return app


# ---------------------------------------------------------------------------
# Request ID
# ---------------------------------------------------------------------------
class TestRequestID:
    """Tests for X-Request-ID handling."""

    @pytest.mark.asyncio
    async def test_generated(self, api_client):
        """Test that a request id is generated when the client sends none."""
        response = await api_client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 36

    @pytest.mark.asyncio
    async def test_echoed(self, api_client):
        """Test that a client request id is echoed back and used in error bodies."""
        response = await api_client.get("/api/v1/nowhere", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert response.json()["meta"]["request_id"] == "req-42"

    @pytest.mark.asyncio
    async def test_oversized_replaced(self, api_client):
        """Test that an overlong request id is replaced."""
        sent = "x" * (MAX_REQUEST_ID_LENGTH + 1)
        response = await api_client.get("/health", headers={"X-Request-ID": sent})
        assert response.headers["X-Request-ID"] != sent


# ---------------------------------------------------------------------------
# Request limits
# ---------------------------------------------------------------------------
class TestRequestLimits:
    """Tests for body size and media type checks."""

    @pytest.mark.asyncio
    async def test_body_too_large(self, api_client, settings):
        """Test that bodies over the limit get 413."""
        response = await api_client.post(
            "/api/v1/auth/login",
            content=b"x" * (settings.max_body_bytes + 1),
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 413
        error = response.json()["error"]
        assert error["code"] == "PAYLOAD_TOO_LARGE"
        assert error["message"] == f"Request body exceeds {settings.max_body_bytes} bytes"

    @pytest.mark.asyncio
    async def test_unsupported_media_type(self, api_client):
        """Test that non-JSON bodies get 415."""
        response = await api_client.post(
            "/api/v1/auth/login",
            content=b"email=a&password=b",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        assert response.status_code == 415
        error = response.json()["error"]
        assert error["code"] == "UNSUPPORTED_MEDIA_TYPE"
        assert error["message"] == "Unsupported media type: application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_json_with_charset_accepted(self, api_client):
        """Test that media type parameters are ignored."""
        response = await api_client.post(
            "/api/v1/auth/login",
            content=b'{"email": "nobody@example.com", "password": "whatever1"}',
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_content_length(self, api_client):
        """Test that a non-numeric Content-Length is rejected."""
        response = await api_client.post(
            "/api/v1/auth/logout",
            content=b"{}",
            headers={"Content-Type": "application/json", "Content-Length": "abc"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid Content-Length header"


# ---------------------------------------------------------------------------
# Deadlines and unexpected errors
# ---------------------------------------------------------------------------
class TestTimeoutAndErrors:
    """Tests for the deadline and last-resort error middleware."""

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test that a slow handler is answered with 408."""
        app = _small_app((TimeoutMiddleware, {"timeout_seconds": 0.05}))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://t") as client:
            response = await client.get("/slow")

        assert response.status_code == 408
        body = response.json()
        assert body["success"] is False
        assert body["error"] == {
            "type": "VALIDATION_ERROR",
            "message": "Request timed out",
            "code": "REQUEST_TIMEOUT",
        }

    @pytest.mark.asyncio
    async def test_unexpected_exception(self):
        """Test that an unhandled exception becomes a generic 500 envelope."""
        app = _small_app((ErrorHandlerMiddleware, {}), (RequestIDMiddleware, {}))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://t") as client:
            response = await client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == {"type": "INTERNAL_ERROR", "message": "An internal error occurred"}
        assert "unexpected" not in response.text
        assert body["meta"]["request_id"] == response.headers["X-Request-ID"]


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------
class TestErrorEnvelope:
    """Tests for the shape of error responses."""

    @pytest.mark.asyncio
    async def test_unknown_route(self, api_client):
        """Test that unknown routes return a NOT_FOUND envelope."""
        response = await api_client.get("/api/v1/nowhere")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["type"] == "NOT_FOUND"
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_validation_details(self, api_client):
        """Test that request validation errors list fields without location prefixes."""
        response = await api_client.post("/api/v1/auth/login", json={"email": "a@example.com"})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["type"] == "VALIDATION_ERROR"
        assert error["message"] == "Validation failed"
        assert set(error["details"]["fields"]) == {"password"}

    @pytest.mark.asyncio
    async def test_unauthorized_challenge(self, api_client):
        """Test that 401 responses carry a bearer challenge and a generic message."""
        response = await api_client.get("/api/v1/auth/profile")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"] == {
            "type": "UNAUTHORIZED",
            "message": "Authentication required",
        }

    @pytest.mark.asyncio
    async def test_invalid_token_message(self, api_client):
        """Test that a malformed token is indistinguishable from an expired one."""
        response = await api_client.get(
            "/api/v1/auth/profile", headers=auth_header("not-a-token")
        )
        assert response.status_code == 401
        assert response.json()["error"]["type"] == "UNAUTHORIZED"


# ---------------------------------------------------------------------------
# Authorization gates
# ---------------------------------------------------------------------------
class TestGates:
    """Tests for route-level authorization gates."""

    def test_unknown_condition_rejected(self):
        """Test that a misspelled condition fails when the gate is built."""
        with pytest.raises(ValueError, match="Unknown access condition"):
            conditional_access("admin", "superuser")
        with pytest.raises(ValueError):
            conditional_access("owner:")

    @pytest.mark.asyncio
    async def test_dynamic_permission(self, gated_client, admin, member):
        """Test that the permission is derived from the path and method."""
        member_tokens = await login(gated_client, member.email)
        response = await gated_client.get(
            "/api/v1/reports", headers=auth_header(member_tokens["access_token"])
        )
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Permission required: reports:read"

    @pytest.mark.asyncio
    async def test_conditional_owner_or_admin(self, gated_client, admin, member):
        """Test that owners and admins pass while other users are refused."""
        member_tokens = await login(gated_client, member.email)
        admin_tokens = await login(gated_client, admin.email)

        own = await gated_client.get(
            f"/api/v1/notes/{member.user_id}", headers=auth_header(member_tokens["access_token"])
        )
        other = await gated_client.get(
            f"/api/v1/notes/{admin.user_id}", headers=auth_header(member_tokens["access_token"])
        )
        by_admin = await gated_client.get(
            f"/api/v1/notes/{member.user_id}", headers=auth_header(admin_tokens["access_token"])
        )

        assert own.status_code == 200
        assert other.status_code == 403
        assert other.json()["error"] == {"type": "FORBIDDEN", "message": "Access denied"}
        assert by_admin.status_code == 200

    @pytest.mark.asyncio
    async def test_ownership_or_role(self, gated_client, admin, member):
        """Test that only the owner or the named role passes."""
        member_tokens = await login(gated_client, member.email)
        admin_tokens = await login(gated_client, admin.email)

        other = await gated_client.get(
            f"/api/v1/boards/{admin.user_id}", headers=auth_header(member_tokens["access_token"])
        )
        # Admin is not in the role list and does not own the board
        by_admin = await gated_client.get(
            f"/api/v1/boards/{member.user_id}", headers=auth_header(admin_tokens["access_token"])
        )

        assert other.status_code == 403
        assert other.json()["error"]["message"] == "You can only access your own resources"
        assert by_admin.status_code == 403

    @pytest.mark.asyncio
    async def test_role_and_named_permission(self, gated_client, admin, member):
        """Test role-list and permission-name gates."""
        member_tokens = await login(gated_client, member.email)
        admin_tokens = await login(gated_client, admin.email)

        staff_member = await gated_client.get(
            "/api/v1/staff", headers=auth_header(member_tokens["access_token"])
        )
        staff_admin = await gated_client.get(
            "/api/v1/staff", headers=auth_header(admin_tokens["access_token"])
        )
        audit_member = await gated_client.get(
            "/api/v1/audit", headers=auth_header(member_tokens["access_token"])
        )
        audit_admin = await gated_client.get(
            "/api/v1/audit", headers=auth_header(admin_tokens["access_token"])
        )

        assert staff_member.status_code == 403
        assert staff_member.json()["error"]["message"] == (
            "One of these roles is required: ADMIN, MODERATOR"
        )
        assert staff_admin.status_code == 200
        assert audit_member.status_code == 403
        assert audit_member.json()["error"]["message"] == "Permission required: roles:read"
        assert audit_admin.status_code == 200
