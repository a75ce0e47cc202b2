"""Conflict-free grouping and bounded group execution.

Users that share a base username (or display name) would race each other
for the same numeric suffix. They are grouped by the normalized base name;
members of one group run one after another while distinct groups run
concurrently.
"""

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Iterable
from typing import TypeVar

from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


def normalize_name(name: str | None) -> str:
    """Lowercase and strip a base name for grouping."""
    return (name or "").strip().lower()


def group_by(items: Iterable[T], key: Callable[[T], K]) -> dict[K, list[T]]:
    """Partition items by key, preserving first-seen group order and item order."""
    groups: dict[K, list[T]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups


def group_by_username(users: Iterable[T]) -> dict[str, list[T]]:
    """Group records by normalized candidate username."""
    return group_by(users, lambda u: normalize_name(u.username))  # type: ignore[attr-defined]


def group_by_display_name(users: Iterable[T]) -> dict[str, list[T]]:
    """Group records by normalized candidate display name."""
    return group_by(users, lambda u: normalize_name(u.display_name))  # type: ignore[attr-defined]


async def run_groups(
    groups: dict[K, list[T]],
    worker: Callable[[T], Awaitable[bool]],
    max_concurrent: int,
    label: str = "groups",
) -> None:
    """Run ``worker`` over every group member with bounded group concurrency.

    Members of a group are processed sequentially in order. At most
    ``max_concurrent`` groups are active at once and the next queued group
    starts as soon as any active group drains.

    The worker returns False to stop processing (cancellation); remaining
    members of every group are then left untouched.

    Args:
        groups: Mapping of group key to ordered members
        worker: Coroutine processing one member; False means stop
        max_concurrent: Maximum number of groups in flight
        label: Name used in logs
    """
    if not groups:
        return

    semaphore = asyncio.Semaphore(max(1, max_concurrent))
    stopped = False

    async def process_group(key: K, members: list[T]) -> None:
        nonlocal stopped

        async with semaphore:
            if stopped:
                return
            logger.debug("group_started", label=label, group=str(key), size=len(members))
            for member in members:
                if stopped:
                    return
                if not await worker(member):
                    stopped = True
                    return

    await asyncio.gather(*(process_group(key, members) for key, members in groups.items()))
