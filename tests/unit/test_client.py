"""
Unit tests for backend error classification and the HTTP client.

Tests cover:
- classify_payload across the payload shapes the backend uses
- is_accepted for 2xx bodies
- Mapping of status codes and payload markers to typed exceptions
- Transparent re-login and replay on 401
"""

import httpx
import pytest

from edu_migration.client.exceptions import (
    AuthenticationError,
    BackendErrorCode,
    InvalidNameError,
    NameConflictError,
    NetworkError,
    NotFoundError,
    RejectedError,
    ServerError,
    ServiceUnavailableError,
    classify_payload,
    describe_error,
    is_accepted,
)
from edu_migration.client.platform_client import LearningPlatformClient
from tests.fakes import BASE_URL


def make_client(handler, token: str | None = None, credentials=None) -> LearningPlatformClient:
    return LearningPlatformClient(
        base_url=BASE_URL,
        token=token,
        credentials=credentials,
        transport=httpx.MockTransport(handler),
    )


# ============================================================================
# Payload classification
# ============================================================================


class TestClassifyPayload:
    """Tests for backend marker detection."""

    @pytest.mark.parametrize(
        "payload",
        [
            {"message": "USER_NAME_EXIST"},
            "USER_NAME_EXIST",
            {"errors": [{"code": "USER_NAME_EXIST"}]},
        ],
    )
    def test_username_conflict_shapes(self, payload):
        """Conflicts are found in objects, bare strings and nested bodies."""
        assert classify_payload(payload) is BackendErrorCode.USER_NAME_EXIST

    def test_display_name_markers(self):
        assert classify_payload({"message": "DISPLAY_NAME_EXISTED"}) is (
            BackendErrorCode.DISPLAY_NAME_EXISTED
        )
        assert classify_payload("INVALID_DISPLAY_NAME") is BackendErrorCode.INVALID_DISPLAY_NAME

    @pytest.mark.parametrize("payload", [None, True, False, {"message": "ok"}, "fine"])
    def test_no_marker(self, payload):
        assert classify_payload(payload) is None


class TestIsAccepted:
    """Tests for 2xx acceptance detection."""

    @pytest.mark.parametrize(
        "payload", [True, "true", " TRUE ", {"isSuccess": True}, {"success": True}]
    )
    def test_accepted(self, payload):
        assert is_accepted(payload)

    @pytest.mark.parametrize("payload", [False, None, "false", {}, {"isSuccess": False}, []])
    def test_not_accepted(self, payload):
        assert not is_accepted(payload)


class TestDescribeError:
    def test_prefers_backend_message(self):
        error = RejectedError("Request rejected", status_code=417, response={"message": "NOPE"})
        assert describe_error(error) == "[417] NOPE"

    def test_plain_exception(self):
        assert describe_error(ValueError()) == "ValueError"


# ============================================================================
# Error mapping
# ============================================================================


class TestErrorMapping:
    """Tests for response to exception mapping."""

    @pytest.mark.parametrize(
        ("status", "body", "expected"),
        [
            (400, {"message": "USER_NAME_EXIST"}, NameConflictError),
            (417, {"message": "DISPLAY_NAME_EXISTED"}, NameConflictError),
            (417, {"message": "INVALID_DISPLAY_NAME"}, InvalidNameError),
            (417, {"message": "something else"}, RejectedError),
            (404, {"message": "missing"}, NotFoundError),
            (503, {"message": "busy"}, ServiceUnavailableError),
            (500, {"message": "boom"}, ServerError),
        ],
    )
    @pytest.mark.asyncio
    async def test_status_and_marker_mapping(self, status, body, expected):
        """Payload markers win over the status code."""
        client = make_client(lambda request: httpx.Response(status, json=body), token="t")

        with pytest.raises(expected):
            await client.get("manage/user/roles")
        await client.close()

    @pytest.mark.asyncio
    async def test_conflict_in_success_body(self):
        """A 200 carrying a conflict marker is still a conflict."""
        client = make_client(
            lambda request: httpx.Response(200, json={"message": "USER_NAME_EXIST"})
        )

        with pytest.raises(NameConflictError):
            await client.register("schan", "pw")
        await client.close()

    @pytest.mark.asyncio
    async def test_unaccepted_registration_is_rejected(self):
        client = make_client(lambda request: httpx.Response(200, json=False))

        with pytest.raises(RejectedError):
            await client.register("schan", "pw")
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_becomes_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)

        with pytest.raises(NetworkError):
            await client.get("manage/user/roles")
        await client.close()


# ============================================================================
# Re-authentication
# ============================================================================


class TestReauthentication:
    """Tests for one transparent re-login on 401."""

    @pytest.mark.asyncio
    async def test_replays_request_with_new_token(self):
        seen_tokens: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("auth/login"):
                return httpx.Response(200, json={"accessToken": "fresh", "userId": "u1"})
            token = request.headers.get("Authorization", "")
            seen_tokens.append(token)
            if token != "Bearer fresh":
                return httpx.Response(401, json={"message": "expired"})
            return httpx.Response(200, json={"roles": []})

        client = make_client(handler, token="stale", credentials=("admin", "secret"))

        assert await client.get_roles() == []
        assert client.token == "fresh"
        assert seen_tokens == ["Bearer stale", "Bearer fresh"]
        await client.close()

    @pytest.mark.asyncio
    async def test_without_credentials_raises(self):
        client = make_client(lambda request: httpx.Response(401, json={}), token="stale")

        with pytest.raises(AuthenticationError):
            await client.get_roles()
        await client.close()

    @pytest.mark.asyncio
    async def test_failed_login_is_not_replayed(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, json={"message": "INVALID_CREDENTIALS"})

        client = make_client(handler, credentials=("admin", "wrong"))

        with pytest.raises(AuthenticationError):
            await client.login("admin", "wrong")
        assert calls == 1
        await client.close()


class TestPlatformClient:
    """Tests for typed wrappers over the fake backend."""

    @pytest.mark.asyncio
    async def test_login_returns_typed_result(self, backend):
        client = make_client(backend.handle)

        result = await client.login("admin", "secret")

        assert result.user_id == "u-admin"
        assert result.access_token in backend.tokens
        await client.close()

    @pytest.mark.asyncio
    async def test_existing_usernames_filters_by_prefix(self, backend):
        backend.add_user("schan")
        backend.add_user("SchAn2")
        backend.add_user("other", display_name="schan fan")
        client = make_client(backend.handle)
        client.token = (await client.login("admin", "secret")).access_token

        assert await client.existing_usernames("schan") == {"schan", "schan2"}
        assert await client.find_user("SCHAN") is not None
        assert await client.find_user("sch") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_session_shares_connection_pool(self, backend):
        client = make_client(backend.handle)
        session = client.session("token", credentials=("u", "p"))

        assert session.client is client.client
        assert session.token == "token"
        await session.close()
        assert not client.client.is_closed
        await client.close()
