import asyncio

from mclink.services.sweeper import LinkCodeSweeper


async def test_sweeper_evicts_expired_codes(manager, code_store, mirror, clock):
    await manager.generate("u1", ttl_minutes=1)
    clock.advance(minutes=5)

    sweeper = LinkCodeSweeper(manager, interval_seconds=0.01)
    sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if len(mirror) == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert not sweeper.running
    assert len(mirror) == 0
    assert await code_store.col.count_documents({}) == 0


async def test_sweeper_survives_failing_sweep(manager):
    calls = []

    async def boom():
        calls.append(1)
        raise RuntimeError("sweep exploded")

    manager.sweep = boom
    sweeper = LinkCodeSweeper(manager, interval_seconds=0.01)
    sweeper.start()
    for _ in range(100):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert len(calls) >= 2


async def test_stop_without_start_is_noop(manager):
    await LinkCodeSweeper(manager, interval_seconds=60).stop()
