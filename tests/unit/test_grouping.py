"""
Unit tests for conflict-free grouping and bounded group execution.

Tests cover:
- Grouping by normalized base name in first-seen order
- Sequential processing inside a group
- Bounded number of concurrently active groups
- Stopping all groups when a worker returns False
"""

import asyncio

import pytest

from edu_migration.utils.grouping import (
    group_by,
    group_by_display_name,
    group_by_username,
    normalize_name,
    run_groups,
)
from tests.fakes import make_student


class TestGrouping:
    """Tests for partitioning records."""

    def test_normalize_name(self):
        assert normalize_name("  SchAn ") == "schan"
        assert normalize_name(None) == ""

    def test_group_by_preserves_order(self):
        """Groups appear in first-seen order and keep item order."""
        groups = group_by(["b1", "a1", "b2", "a2"], key=lambda s: s[0])

        assert list(groups) == ["b", "a"]
        assert groups["b"] == ["b1", "b2"]

    def test_group_by_username_is_case_insensitive(self):
        first = make_student("SchAn", "An", "SCH_1A_2025")
        second = make_student("schan ", "An", "SCH_1B_2025")
        other = make_student("schbinh", "Binh", "SCH_1A_2025")

        groups = group_by_username([first, other, second])

        assert list(groups) == ["schan", "schbinh"]
        assert groups["schan"] == [first, second]

    def test_group_by_display_name(self):
        first = make_student("a", "An Nguyen", "SCH_1A_2025")
        second = make_student("b", "an nguyen", "SCH_1A_2025")

        assert group_by_display_name([first, second]) == {"an nguyen": [first, second]}


class TestRunGroups:
    """Tests for bounded group concurrency."""

    @pytest.mark.asyncio
    async def test_members_run_sequentially_in_order(self):
        """Members of one group never overlap and keep their order."""
        events: list[str] = []

        async def worker(item: str) -> bool:
            events.append(f"start {item}")
            await asyncio.sleep(0)
            events.append(f"end {item}")
            return True

        await run_groups({"g": ["a", "b", "c"]}, worker, max_concurrent=3)

        assert events == ["start a", "end a", "start b", "end b", "start c", "end c"]

    @pytest.mark.asyncio
    async def test_active_groups_are_bounded(self):
        """No more than max_concurrent groups are in flight at once."""
        active: set[str] = set()
        peak = 0

        async def worker(item: str) -> bool:
            nonlocal peak
            group = item[0]
            active.add(group)
            peak = max(peak, len(active))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            if item.endswith("2"):
                active.discard(group)
            return True

        groups = {key: [f"{key}1", f"{key}2"] for key in "abcde"}
        await run_groups(groups, worker, max_concurrent=2)

        assert peak == 2
        assert active == set()

    @pytest.mark.asyncio
    async def test_all_members_processed(self):
        seen: list[str] = []

        async def worker(item: str) -> bool:
            seen.append(item)
            return True

        await run_groups({"a": ["a1", "a2"], "b": ["b1"]}, worker, max_concurrent=1)

        assert seen == ["a1", "a2", "b1"]

    @pytest.mark.asyncio
    async def test_false_stops_remaining_members(self):
        """A worker returning False leaves every remaining member untouched."""
        seen: list[str] = []

        async def worker(item: str) -> bool:
            seen.append(item)
            return item != "a1"

        await run_groups({"a": ["a1", "a2"], "b": ["b1"]}, worker, max_concurrent=1)

        assert seen == ["a1"]

    @pytest.mark.asyncio
    async def test_empty_groups(self):
        async def worker(item: str) -> bool:
            raise AssertionError("not called")

        await run_groups({}, worker, max_concurrent=2)
