from __future__ import annotations

import asyncio

from tracker_mcp.core.session import SessionRegistry
from tracker_mcp.core.sweeper import SessionSweeper


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class RecordingStream:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


def test_sweeper_removes_idle_sessions_without_traffic() -> None:
    clock = FakeClock()
    registry = SessionRegistry(clock=clock)
    stream = RecordingStream()
    session_id = registry.create(stream)
    clock.now = 10.0

    async def scenario() -> None:
        sweeper = SessionSweeper(registry, interval=0.01, max_age=5.0)
        sweeper.start()
        assert sweeper.running
        for _ in range(200):
            if registry.active_count() == 0:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()
        assert not sweeper.running

    asyncio.run(scenario())

    assert registry.get(session_id) is None
    assert stream.closed


def test_sweeper_keeps_fresh_sessions() -> None:
    clock = FakeClock()
    registry = SessionRegistry(clock=clock)
    registry.create(RecordingStream())

    async def scenario() -> None:
        sweeper = SessionSweeper(registry, interval=0.01, max_age=60.0)
        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

    asyncio.run(scenario())

    assert registry.active_count() == 1


def test_stop_without_start_is_noop() -> None:
    sweeper = SessionSweeper(SessionRegistry(), interval=1.0, max_age=1.0)

    asyncio.run(sweeper.stop())

    assert not sweeper.running
