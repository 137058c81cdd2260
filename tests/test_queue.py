"""Tests for the rate-limited queue."""

import asyncio
import random

import pytest

from prompt_generator.errors import QueueClearedError
from prompt_generator.queue import QueueEntry, RateLimitedQueue


def make_action(clock, dispatches, value, duration=0.0):
    """Action that records its dispatch time and takes `duration` seconds."""
    async def action():
        dispatches.append(clock.now)
        clock.now += duration
        await asyncio.sleep(0)
        return value
    return action


@pytest.mark.asyncio
async def test_enqueue_returns_result(clock):
    """Test that an enqueued action's result reaches the caller."""
    queue = RateLimitedQueue(min_spacing_ms=1000, clock=clock, sleep=clock.sleep)

    future = queue.enqueue(make_action(clock, [], "hello"))

    assert await future == "hello"
    assert queue.size() == 0


@pytest.mark.asyncio
async def test_fifo_order(clock):
    """Test that entries run in the order they were enqueued."""
    queue = RateLimitedQueue(min_spacing_ms=500, clock=clock, sleep=clock.sleep)
    order = []

    def action(i):
        async def run():
            order.append(i)
            return i
        return run

    futures = [queue.enqueue(action(i)) for i in range(5)]
    results = await asyncio.gather(*futures)

    assert order == [0, 1, 2, 3, 4]
    assert results == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_enqueue_does_not_block(clock):
    """Test that enqueue returns a pending future before anything runs."""
    queue = RateLimitedQueue(min_spacing_ms=1000, clock=clock, sleep=clock.sleep)
    dispatches = []

    futures = [queue.enqueue(make_action(clock, dispatches, i)) for i in range(3)]

    assert all(not f.done() for f in futures)
    assert dispatches == []
    assert queue.size() == 3

    await asyncio.gather(*futures)
    assert len(dispatches) == 3


@pytest.mark.parametrize("spacing_ms", [1, 250, 2000, 6000])
@pytest.mark.parametrize("seed", [0, 1, 2])
@pytest.mark.asyncio
async def test_dispatches_respect_min_spacing(clock, spacing_ms, seed):
    """Test that consecutive dispatches are never closer than min spacing."""
    rng = random.Random(seed)
    queue = RateLimitedQueue(min_spacing_ms=spacing_ms, clock=clock, sleep=clock.sleep)
    dispatches = []

    # Mix of actions faster and slower than the spacing
    durations = [rng.choice([0.0, 0.25, 1.0, 3.0, 7.5]) for _ in range(8)]
    futures = [
        queue.enqueue(make_action(clock, dispatches, i, duration))
        for i, duration in enumerate(durations)
    ]
    await asyncio.gather(*futures)

    assert len(dispatches) == len(durations)
    for earlier, later in zip(dispatches, dispatches[1:]):
        assert later - earlier >= spacing_ms / 1000 - 1e-9


@pytest.mark.asyncio
async def test_no_wait_when_spacing_already_elapsed(clock):
    """Test that a slow action leaves no extra wait before the next one."""
    queue = RateLimitedQueue(min_spacing_ms=1000, clock=clock, sleep=clock.sleep)
    dispatches = []

    first = queue.enqueue(make_action(clock, dispatches, 1, duration=5.0))
    second = queue.enqueue(make_action(clock, dispatches, 2))
    await asyncio.gather(first, second)

    assert dispatches == [0.0, 5.0]
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_one_entry_executes_at_a_time(clock):
    """Test that the queue never runs two actions concurrently."""
    queue = RateLimitedQueue(min_spacing_ms=1, clock=clock, sleep=clock.sleep)
    running = 0
    max_running = 0

    async def action():
        nonlocal running, max_running
        running += 1
        max_running = max(max_running, running)
        for _ in range(3):
            await asyncio.sleep(0)
        running -= 1

    await asyncio.gather(*(queue.enqueue(action) for _ in range(5)))

    assert max_running == 1


@pytest.mark.asyncio
async def test_failure_is_delivered_and_drain_continues(clock):
    """Test that a failing action fails only its own future."""
    queue = RateLimitedQueue(min_spacing_ms=100, clock=clock, sleep=clock.sleep)

    async def boom():
        raise ValueError("boom")

    failing = queue.enqueue(boom)
    ok = queue.enqueue(make_action(clock, [], "fine"))

    with pytest.raises(ValueError, match="boom"):
        await failing
    assert await ok == "fine"


@pytest.mark.asyncio
async def test_cancel_all_fails_pending_entries(clock):
    """Test cancel_all with N pending and nothing executing."""
    queue = RateLimitedQueue(min_spacing_ms=1000, clock=clock, sleep=clock.sleep)
    dispatches = []

    futures = [queue.enqueue(make_action(clock, dispatches, i)) for i in range(4)]
    cleared = queue.cancel_all()

    assert cleared == 4
    assert queue.size() == 0
    for future in futures:
        with pytest.raises(QueueClearedError, match="Queue cleared"):
            await future

    # Let the drain task observe the empty queue
    await asyncio.sleep(0)
    assert dispatches == []


@pytest.mark.asyncio
async def test_cancel_all_leaves_running_entry_alone(clock):
    """Test that the executing entry completes after cancel_all."""
    queue = RateLimitedQueue(min_spacing_ms=1, clock=clock, sleep=clock.sleep)
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow():
        started.set()
        await release.wait()
        return "finished"

    running = queue.enqueue(slow)
    pending = [queue.enqueue(make_action(clock, [], i)) for i in range(2)]

    await started.wait()
    assert queue.cancel_all() == 2

    release.set()
    assert await running == "finished"
    for future in pending:
        with pytest.raises(QueueClearedError):
            await future


@pytest.mark.asyncio
async def test_enqueue_during_drain_extends_fifo(clock):
    """Test that work added while draining runs after earlier entries."""
    queue = RateLimitedQueue(min_spacing_ms=10, clock=clock, sleep=clock.sleep)
    order = []

    async def first():
        order.append("first")
        # Enqueue from inside a running entry
        queue.enqueue(late)
        return "first"

    async def second():
        order.append("second")

    async def late():
        order.append("late")

    a = queue.enqueue(first)
    b = queue.enqueue(second)
    await asyncio.gather(a, b)
    while queue.is_draining:
        await asyncio.sleep(0)

    assert order == ["first", "second", "late"]


@pytest.mark.asyncio
async def test_enqueue_when_idle_starts_new_drain(clock):
    """Test that the queue restarts after going idle, keeping spacing."""
    queue = RateLimitedQueue(min_spacing_ms=2000, clock=clock, sleep=clock.sleep)
    dispatches = []

    await queue.enqueue(make_action(clock, dispatches, 1))
    assert not queue.is_draining

    await queue.enqueue(make_action(clock, dispatches, 2))

    assert dispatches == [0.0, 2.0]


@pytest.mark.asyncio
async def test_cancelled_future_is_skipped(clock):
    """Test that an entry whose caller gave up is never run."""
    queue = RateLimitedQueue(min_spacing_ms=1, clock=clock, sleep=clock.sleep)
    dispatches = []

    abandoned = queue.enqueue(make_action(clock, dispatches, "abandoned"))
    kept = queue.enqueue(make_action(clock, dispatches, "kept"))
    abandoned.cancel()

    assert await kept == "kept"
    assert len(dispatches) == 1


@pytest.mark.asyncio
async def test_queue_entry_settles_once():
    """Test that an entry holds only its action and future and settles once."""
    async def action():
        return "first"

    entry = QueueEntry(action, asyncio.get_running_loop().create_future())

    assert vars(entry) == {"action": action, "future": entry.future}

    entry.settle("first")
    entry.settle(error=QueueClearedError())
    assert await entry.future == "first"
