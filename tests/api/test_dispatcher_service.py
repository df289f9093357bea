import asyncio

from api.triggers.dispatcher import TickReport
from api.triggers.scheduler import TriggerDispatcherService


class CountingDispatcher:
    def __init__(self, fail_first: bool = False) -> None:
        self.ticks = 0
        self.fail_first = fail_first

    async def tick(self, now=None) -> TickReport:
        self.ticks += 1
        if self.fail_first and self.ticks == 1:
            raise RuntimeError("database went away")
        return TickReport()


async def test_service_ticks_until_stopped():
    dispatcher = CountingDispatcher()
    service = TriggerDispatcherService(dispatcher=dispatcher, interval_seconds=0.01)

    await service.start()
    assert service.is_running
    await asyncio.sleep(0.05)
    await service.stop()

    assert not service.is_running
    ticks = dispatcher.ticks
    assert ticks >= 2
    await asyncio.sleep(0.03)
    assert dispatcher.ticks == ticks


async def test_failed_tick_does_not_stop_the_loop():
    dispatcher = CountingDispatcher(fail_first=True)
    service = TriggerDispatcherService(dispatcher=dispatcher, interval_seconds=0.01)

    await service.start()
    await asyncio.sleep(0.05)
    await service.stop()

    assert dispatcher.ticks >= 2


async def test_start_is_idempotent():
    service = TriggerDispatcherService(dispatcher=CountingDispatcher(), interval_seconds=0.01)
    await service.start()
    task = service._task
    await service.start()
    assert service._task is task
    await service.stop()


def test_ticks_align_to_wall_clock(monkeypatch):
    service = TriggerDispatcherService(dispatcher=CountingDispatcher(), interval_seconds=30)
    monkeypatch.setattr("api.triggers.scheduler.time.time", lambda: 1_700_000_022.5)
    assert service._seconds_until_next_tick() == 17.5

    unaligned = TriggerDispatcherService(dispatcher=CountingDispatcher(), interval_seconds=30, align_to_clock=False)
    assert unaligned._seconds_until_next_tick() == 30
