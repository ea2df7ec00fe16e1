import asyncio
import logging

from apps.drops.ratelimit import MemoryCounterStore
from apps.drops.tasks import PeriodicTask, evict_expired


def test_run_once_logs_and_survives_errors(caplog):
    async def boom():
        raise RuntimeError('nope')

    task = PeriodicTask('boom', 1, boom)
    with caplog.at_level(logging.ERROR):
        assert asyncio.run(task.run_once()) is None
    assert 'boom run failed' in caplog.text


def test_periodic_loop_runs_until_stopped():
    runs = []

    async def job():
        runs.append(1)

    async def scenario():
        task = PeriodicTask('ticker', 0.01, job, run_immediately=True)
        task.start()
        assert task.is_running
        await asyncio.sleep(0.1)
        await task.stop()
        count = len(runs)
        await asyncio.sleep(0.05)
        return task.is_running, count, len(runs)

    running, count, later = asyncio.run(scenario())
    assert running is False
    assert count >= 2
    assert later == count


def test_evict_expired_sums_both_stores():
    class FakeMetadata:
        async def evict_expired(self):
            return 2

    counters = MemoryCounterStore(clock=lambda: 100.0)

    async def scenario():
        await counters.set('k', 1, -1)
        return await evict_expired(FakeMetadata(), counters)

    assert asyncio.run(scenario()) == 3
