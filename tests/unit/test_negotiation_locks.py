import asyncio
import pytest
from marketplace.negotiation.locks import ServiceLocks

@pytest.mark.asyncio
async def test_same_service_is_serialized():
    locks = ServiceLocks()
    trace = []

    async def worker(name):
        async with locks.hold("svc-1"):
            trace.append(f"{name}-in")
            await asyncio.sleep(0.01)
            trace.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert trace in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

@pytest.mark.asyncio
async def test_different_services_do_not_block_each_other():
    locks = ServiceLocks()
    async with locks.hold("svc-1"):
        await asyncio.wait_for(_enter(locks, "svc-2"), timeout=0.5)
        assert locks.held() == ["svc-1"]

async def _enter(locks, key):
    async with locks.hold(key):
        return True

@pytest.mark.asyncio
async def test_unused_locks_are_released():
    locks = ServiceLocks()
    async with locks.hold("svc-1"):
        assert len(locks) == 1
    assert len(locks) == 0

@pytest.mark.asyncio
async def test_lock_is_released_on_error():
    locks = ServiceLocks()
    with pytest.raises(RuntimeError):
        async with locks.hold("svc-1"):
            raise RuntimeError("boom")
    assert len(locks) == 0
