"""Learning platform client for account, group, class and role operations.

This client wraps the REST endpoints the migration consumes. Every method
returns typed data or raises a typed exception; callers never inspect raw
payloads.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from edu_migration.client.base_client import BaseAPIClient, raise_for_payload_code
from edu_migration.client.exceptions import RejectedError, classify_payload, is_accepted
from edu_migration.config import BackendConfig, LoggingConfig, PerformanceConfig
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)

USER_PAGE_SIZE = 1000
GROUP_PAGE_SIZE = 1000


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful login."""

    user_id: str
    access_token: str
    display_name: str


@dataclass(frozen=True)
class RemoteUser:
    """A user as listed by the management API."""

    user_id: str
    username: str
    display_name: str


@dataclass(frozen=True)
class RemoteRole:
    """A role and its member user ids."""

    role_id: str
    name: str
    user_ids: tuple[str, ...]
    raw: dict[str, Any]


def _expect_acceptance(payload: Any, status_code: int = 200) -> None:
    """Raise unless a 2xx payload signals acceptance."""
    raise_for_payload_code(classify_payload(payload), status_code, payload)
    if not is_accepted(payload):
        raise RejectedError(message="Request not accepted", status_code=status_code, response=payload)


class LearningPlatformClient(BaseAPIClient):
    """Client for the learning platform backend.

    One instance acts as the privileged admin client; lightweight
    per-user sessions created with :meth:`session` share its connection
    pool but carry the user's own bearer token.
    """

    @classmethod
    def from_config(
        cls,
        backend: BackendConfig,
        performance: PerformanceConfig | None = None,
        logging_config: LoggingConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "LearningPlatformClient":
        """Create an unauthenticated client from configuration."""
        performance = performance or PerformanceConfig()
        logging_config = logging_config or LoggingConfig()
        client = cls(
            base_url=backend.url,
            verify_ssl=backend.verify_ssl,
            timeout=backend.timeout,
            max_connections=performance.http_max_connections,
            max_keepalive_connections=performance.http_max_keepalive_connections,
            log_payloads=logging_config.log_payloads,
            max_payload_size=logging_config.max_payload_size,
            transport=transport,
        )
        logger.info("platform_client_initialized", url=backend.url)
        return client

    def session(
        self, token: str | None, credentials: tuple[str, str] | None = None
    ) -> "LearningPlatformClient":
        """Client view sharing this connection pool with a different identity."""
        return LearningPlatformClient(
            base_url=self.base_url,
            token=token,
            credentials=credentials,
            log_payloads=self.log_payloads,
            max_payload_size=self.max_payload_size,
            http_client=self.client,
        )

    # Authentication
    async def login(self, username: str, password: str) -> LoginResult:
        """Log in and return the user id, access token and display name."""
        data = await self.post("auth/login", json_data={"username": username, "password": password})
        if not isinstance(data, dict) or not data.get("accessToken"):
            raise RejectedError(message="Login response carried no access token", response=data)
        return LoginResult(
            user_id=str(data.get("userId") or ""),
            access_token=data["accessToken"],
            display_name=str(data.get("displayName") or ""),
        )

    async def register(self, username: str, password: str) -> None:
        """Create an account.

        Raises:
            NameConflictError: The username is already taken
            ServiceUnavailableError: The backend is overloaded
            RejectedError: The backend refused the registration
        """
        data = await self.post(
            "auth/register", json_data={"username": username, "password": password}
        )
        _expect_acceptance(data)

    # Account (per-user session)
    async def validate_display_name(self, display_name: str) -> None:
        """Ask the backend whether a display name is acceptable.

        Raises:
            NameConflictError: The display name is already used
            InvalidNameError: The display name violates backend rules
            RejectedError: Any other refusal
        """
        data = await self.post(
            "account/users/validate-display-name", json_data={"displayName": display_name}
        )
        _expect_acceptance(data)

    async def set_equipment(
        self,
        items: list[str],
        display_name: str,
        age: int | None = None,
        phone_number: str | None = None,
    ) -> None:
        """Set equipment, display name, age and phone number in one call."""
        payload: dict[str, Any] = {"listItem": items, "displayName": display_name}
        if age is not None:
            payload["age"] = age
        if phone_number:
            payload["phoneNumber"] = phone_number
        data = await self.post("account/equipment", json_data=payload)
        raise_for_payload_code(classify_payload(data), 200, data)

    # User lookups (admin)
    async def search_users(self, filter_text: str) -> list[RemoteUser]:
        """List users matching a filter (prefix match on username or display name)."""
        data = await self.get(
            "manage/Users",
            params={"pageIndex": 1, "pageSize": USER_PAGE_SIZE, "filter": filter_text},
        )
        users = data.get("users", []) if isinstance(data, dict) else data or []
        return [
            RemoteUser(
                user_id=str(u.get("userId") or u.get("id") or ""),
                username=str(u.get("username") or ""),
                display_name=str(u.get("displayName") or ""),
            )
            for u in users
        ]

    async def existing_usernames(self, prefix: str) -> set[str]:
        """Lowercased usernames that start with ``prefix``."""
        needle = prefix.lower()
        return {
            u.username.lower()
            for u in await self.search_users(prefix)
            if u.username.lower().startswith(needle)
        }

    async def existing_display_names(self, prefix: str) -> set[str]:
        """Lowercased display names that start with ``prefix``."""
        needle = prefix.lower()
        return {
            u.display_name.lower()
            for u in await self.search_users(prefix)
            if u.display_name.lower().startswith(needle)
        }

    async def find_user(self, username: str) -> RemoteUser | None:
        """Find a user by exact (case-insensitive) username."""
        for user in await self.search_users(username):
            if user.username.lower() == username.lower():
                return user
        return None

    # Groups and classes (admin)
    async def search_groups(self, text: str) -> dict[str, str]:
        """Map lowercased group name to group id for groups matching ``text``."""
        data = await self.get(
            "manage/User/Group", params={"pageSize": GROUP_PAGE_SIZE, "Text": text}
        )
        groups = data.get("groups", []) if isinstance(data, dict) else data or []
        return {str(g["name"]).lower(): str(g["id"]) for g in groups if g.get("name")}

    async def create_group(self, name: str, user_ids: list[str]) -> str:
        """Create a student group and return its id."""
        data = await self.post("manage/user/group", json_data={"name": name, "users": user_ids})
        group = data.get("userGroup") if isinstance(data, dict) else None
        if not group or not group.get("id"):
            raise RejectedError(message="Group creation returned no id", response=data)
        return str(group["id"])

    async def add_users_to_group(self, group_id: str, user_ids: list[str]) -> None:
        """Add users to an existing group."""
        await self.put("manage/User/Group/Set", json_data={"groupId": group_id, "userIds": user_ids})

    async def create_class(
        self,
        name: str,
        group_id: str,
        teacher_ids: list[str],
        grade: int | None,
        start_date: str,
        end_date: str,
    ) -> Any:
        """Create a class bound to a student group."""
        return await self.post(
            "manage/classes",
            json_data={
                "name": name,
                "description": name,
                "startDate": start_date,
                "endDate": end_date,
                "targetGroups": [group_id],
                "teachers": teacher_ids,
                "grades": [grade] if grade else [],
            },
        )

    # Roles (admin)
    async def get_roles(self) -> list[RemoteRole]:
        """List roles with their members."""
        data = await self.get("manage/user/roles")
        roles = data.get("roles", []) if isinstance(data, dict) else data or []
        return [
            RemoteRole(
                role_id=str(r.get("id") or ""),
                name=str(r.get("name") or ""),
                user_ids=tuple(str(uid) for uid in r.get("userIds") or []),
                raw=r,
            )
            for r in roles
        ]

    async def save_role(self, role: RemoteRole, user_ids: list[str]) -> None:
        """Write a role back with the given member list."""
        payload = {**role.raw, "id": role.role_id, "name": role.name, "userIds": user_ids}
        await self.post("manage/user/roles", json_data=payload)
