"""
Unit tests for ThrottledDispatcher.

Tests cover:
- Spacing of request starts at the configured rate
- Requests overlapping in flight while sends stay spaced
- Errors reaching only their own caller
- Independent dispatchers not sharing a clock
"""

import asyncio

import pytest

from edu_migration.utils.throttle import ThrottledDispatcher


class FakeClock:
    """Monotonic clock advanced only by its own sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestThrottledDispatcher:
    """Tests for per-endpoint send spacing."""

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def dispatcher(self, clock: FakeClock) -> ThrottledDispatcher:
        return ThrottledDispatcher(2, name="register", clock=clock, sleep=clock.sleep)

    def test_min_interval_from_rate(self, dispatcher: ThrottledDispatcher):
        """Two requests per second means half a second between sends."""
        assert dispatcher.min_interval == 0.5

    def test_zero_rate_disables_throttling(self):
        """A non-positive rate leaves sends unspaced."""
        assert ThrottledDispatcher(0).min_interval == 0.0

    @pytest.mark.asyncio
    async def test_first_send_is_immediate(self, dispatcher, clock):
        """The first request never waits."""

        async def call() -> str:
            return "ok"

        assert await dispatcher.dispatch(call) == "ok"
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_sends_are_spaced(self, dispatcher, clock):
        """Concurrent callers start at least min_interval apart, in order."""
        started: list[tuple[int, float]] = []

        def make_call(index: int):
            async def call() -> int:
                started.append((index, clock.now))
                return index

            return call

        results = await asyncio.gather(*(dispatcher.dispatch(make_call(i)) for i in range(3)))

        assert results == [0, 1, 2]
        assert started == [(0, 0.0), (1, 0.5), (2, 1.0)]
        assert clock.sleeps == [0.5, 0.5]
        assert dispatcher.dispatched == 3

    @pytest.mark.asyncio
    async def test_elapsed_time_is_credited(self, dispatcher, clock):
        """Time already passed since the last send shortens the wait."""

        async def call() -> None:
            return None

        await dispatcher.dispatch(call)
        clock.now += 0.3
        await dispatcher.dispatch(call)

        assert clock.sleeps == [pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_responses_overlap(self, dispatcher, clock):
        """A slow response does not hold back the next send."""
        release = asyncio.Event()
        order: list[str] = []

        async def slow() -> str:
            order.append("slow-start")
            await release.wait()
            order.append("slow-end")
            return "slow"

        async def fast() -> str:
            order.append("fast")
            release.set()
            return "fast"

        results = await asyncio.gather(dispatcher.dispatch(slow), dispatcher.dispatch(fast))

        assert results == ["slow", "fast"]
        assert order == ["slow-start", "fast", "slow-end"]

    @pytest.mark.asyncio
    async def test_error_reaches_only_its_caller(self, dispatcher):
        """One failing request does not affect the others."""

        async def ok() -> str:
            return "ok"

        async def boom() -> str:
            raise RuntimeError("boom")

        results = await asyncio.gather(
            dispatcher.dispatch(ok),
            dispatcher.dispatch(boom),
            dispatcher.dispatch(ok),
            return_exceptions=True,
        )

        assert results[0] == "ok"
        assert isinstance(results[1], RuntimeError)
        assert results[2] == "ok"

    @pytest.mark.asyncio
    async def test_dispatchers_are_independent(self, clock):
        """Register and login throttles keep separate clocks."""
        register = ThrottledDispatcher(1, name="register", clock=clock, sleep=clock.sleep)
        login = ThrottledDispatcher(1, name="login", clock=clock, sleep=clock.sleep)

        async def call() -> None:
            return None

        await register.dispatch(call)
        await login.dispatch(call)

        assert clock.sleeps == []
