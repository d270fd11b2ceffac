import asyncio

from scheduler import ManualClock, Scheduler


def test_named_timer_fires_after_delay(scheduler, clock):
    fired = []

    async def scenario():
        scheduler.start("settle", 3.0, lambda: fired.append(clock.now()))
        await clock.advance(2.9)
        assert fired == []
        await clock.advance(0.1)

    asyncio.run(scenario())
    assert fired == [3.0]


def test_restarting_a_timer_replaces_it(scheduler, clock):
    fired = []

    async def scenario():
        scheduler.start("answerDelay", 2.5, lambda: fired.append("first"))
        await clock.advance(1.0)
        scheduler.start("answerDelay", 2.5, lambda: fired.append("second"))
        await clock.advance(2.0)
        assert fired == []
        await clock.advance(0.5)

    asyncio.run(scenario())
    assert fired == ["second"]


def test_cancel_and_pending(scheduler, clock):
    fired = []

    async def scenario():
        scheduler.start("submitDelay", 0.4, lambda: fired.append(1))
        assert scheduler.is_pending("submitDelay")
        assert scheduler.cancel("submitDelay")
        assert not scheduler.is_pending("submitDelay")
        assert not scheduler.cancel("submitDelay")
        await clock.advance(1.0)

    asyncio.run(scenario())
    assert fired == []


def test_coroutine_callbacks_run_as_tasks(scheduler, clock):
    seen = []

    async def callback():
        seen.append("started")
        await scheduler.sleep(1.0)
        seen.append("finished")

    async def scenario():
        scheduler.start("resume", 0.5, callback)
        await clock.advance(0.5)
        assert seen == ["started"]
        await clock.advance(1.0)

    asyncio.run(scenario())
    assert seen == ["started", "finished"]


def test_interval_repeats_until_cancelled(scheduler, clock):
    ticks = []

    async def scenario():
        scheduler.start_interval("urlWatch", 0.5, lambda: ticks.append(clock.now()))
        await clock.advance(2.0)
        scheduler.cancel("urlWatch")
        await clock.advance(2.0)

    asyncio.run(scenario())
    assert ticks == [0.5, 1.0, 1.5, 2.0]


def test_task_errors_reach_the_error_hook(clock):
    errors = []
    scheduler = Scheduler(clock, on_error=errors.append)

    async def boom():
        raise RuntimeError("lost")

    async def scenario():
        scheduler.start("peerPoll", 1.0, boom)
        await clock.advance(1.0)

    asyncio.run(scenario())
    assert len(errors) == 1
    assert str(errors[0]) == "lost"


def test_shutdown_cancels_timers_and_tasks(clock):
    scheduler = Scheduler(clock)
    state = {"fired": False, "cancelled": False}

    async def long_running():
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise

    async def scenario():
        scheduler.start("pollTimeout", 65.0, lambda: state.update(fired=True))
        scheduler.spawn(long_running(), name="chat")
        await ManualClock.drain()
        scheduler.shutdown()
        await clock.advance(100.0)

    asyncio.run(scenario())
    assert state == {"fired": False, "cancelled": True}
