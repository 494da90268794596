import asyncio

import pytest

from hallway.services.meeting_locks import MeetingLockRegistry


@pytest.mark.anyio("asyncio")
async def test_meeting_lock_serializes_holders():
    registry = MeetingLockRegistry()
    order = []

    async def worker(name):
        async with registry.meeting("MTG-1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


@pytest.mark.anyio("asyncio")
async def test_cohort_locks_do_not_block_each_other():
    registry = MeetingLockRegistry()
    first_entered = asyncio.Event()
    release_first = asyncio.Event()

    async def hold_first():
        async with registry.cohort("MTG-1", "C1"):
            first_entered.set()
            await release_first.wait()

    holder = asyncio.create_task(hold_first())
    await first_entered.wait()

    # A different cohort of the same meeting is free while C1 is held.
    async with registry.cohort("MTG-1", "C2"):
        pass
    # So is the meeting lock.
    async with registry.meeting("MTG-1"):
        snapshot = await registry.snapshot()
        assert snapshot["MTG-1"]["rosterLocked"] is True
        assert snapshot["MTG-1"]["cohortLocks"] == ["C1"]

    release_first.set()
    await holder


@pytest.mark.anyio("asyncio")
async def test_idle_locks_are_dropped():
    registry = MeetingLockRegistry()
    async with registry.cohort("MTG-9", "C1"):
        snapshot = await registry.snapshot()
    assert snapshot["MTG-9"]["cohortLocks"] == ["C1"]
    assert snapshot["MTG-9"]["rosterLocked"] is False

    async with registry.meeting("MTG-9"):
        pass
    assert await registry.snapshot() == {}


@pytest.mark.anyio("asyncio")
async def test_waiter_keeps_the_lock_alive_until_it_runs():
    registry = MeetingLockRegistry()
    order = []
    holding = asyncio.Event()
    release = asyncio.Event()

    async def first():
        async with registry.cohort("MTG-2", "C1"):
            holding.set()
            await release.wait()
            order.append("first")

    async def second():
        async with registry.cohort("MTG-2", "C1"):
            order.append("second")

    first_task = asyncio.create_task(first())
    await holding.wait()
    second_task = asyncio.create_task(second())
    await asyncio.sleep(0.01)
    assert (await registry.snapshot())["MTG-2"]["users"] == 2

    release.set()
    await asyncio.gather(first_task, second_task)

    assert order == ["first", "second"]
    assert await registry.snapshot() == {}
