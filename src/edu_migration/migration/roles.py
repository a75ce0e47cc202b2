"""Teacher role assignment.

New teacher ids are merged into the teacher role's member list. Existing
members are always kept.
"""

from edu_migration.client.exceptions import NotFoundError
from edu_migration.client.platform_client import LearningPlatformClient, RemoteRole
from edu_migration.utils.logging import get_logger
from edu_migration.utils.retry import RetryPolicy, SleepFunc, retry_with_backoff

logger = get_logger(__name__)

TEACHER_ROLE_NAMES = ("teacher", "giáo viên")


def find_teacher_role(roles: list[RemoteRole]) -> RemoteRole | None:
    for role in roles:
        if role.name.strip().lower() in TEACHER_ROLE_NAMES:
            return role
    return None


def merge_members(existing: tuple[str, ...] | list[str], new_ids: list[str]) -> list[str]:
    """Union of both lists, existing members first, without duplicates."""
    return list(dict.fromkeys([*existing, *new_ids]))


async def assign_teacher_role(
    admin: LearningPlatformClient,
    teacher_ids: list[str],
    policy: RetryPolicy,
    sleep: SleepFunc,
) -> None:
    """Add ``teacher_ids`` to the teacher role.

    The role is re-read on every attempt so a retry never writes back a
    stale member list.

    Raises:
        NotFoundError: No role is named like a teacher role
        APIError: Reading or saving the role failed after retries
    """
    ids = [tid for tid in dict.fromkeys(teacher_ids) if tid]
    if not ids:
        return

    async def merge_once() -> None:
        role = find_teacher_role(await admin.get_roles())
        if role is None:
            raise NotFoundError(message="Teacher role not found")
        members = merge_members(role.user_ids, ids)
        if len(members) == len(role.user_ids):
            logger.info("teacher_role_unchanged", role_id=role.role_id)
            return
        await admin.save_role(role, members)
        logger.info(
            "teacher_role_assigned",
            role_id=role.role_id,
            added=len(members) - len(role.user_ids),
            total=len(members),
        )

    await retry_with_backoff(merge_once, policy, context="assign teacher role", sleep=sleep)
