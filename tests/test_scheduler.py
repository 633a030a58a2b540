import asyncio

from switchboard.services.scheduler import KeyedDebouncer, ScheduledTask


class TestScheduledTask:
    def test_runs_callback_after_delay(self):
        fired = []

        async def run():
            task = ScheduledTask(0.01, lambda: fired.append("x"))
            await task.wait()
            return task.done

        assert asyncio.run(run()) is True
        assert fired == ["x"]

    def test_cancelled_task_never_fires(self):
        fired = []

        async def run():
            task = ScheduledTask(0.05, lambda: fired.append("x"))
            task.cancel()
            await task.wait()
            return task.cancelled

        assert asyncio.run(run()) is True
        assert fired == []

    def test_async_callback_is_awaited(self):
        fired = []

        async def callback():
            await asyncio.sleep(0)
            fired.append("async")

        async def run():
            await ScheduledTask(0, callback).wait()

        asyncio.run(run())
        assert fired == ["async"]

    def test_callback_error_is_logged_not_raised(self):
        def boom():
            raise RuntimeError("boom")

        async def run():
            task = ScheduledTask(0, boom)
            await task.wait()
            return task.done

        assert asyncio.run(run()) is True

    def test_cancel_from_own_callback_is_noop(self):
        holder = {}
        fired = []

        async def callback():
            holder["task"].cancel()
            await asyncio.sleep(0)
            fired.append("finished")

        async def run():
            holder["task"] = ScheduledTask(0, callback)
            await holder["task"].wait()
            return holder["task"].cancelled

        assert asyncio.run(run()) is False
        assert fired == ["finished"]


class TestKeyedDebouncer:
    def test_burst_delivers_only_last(self):
        delivered = []

        async def run():
            debouncer = KeyedDebouncer()
            for text in ["a", "b", "c"]:
                debouncer.debounce("sender-1", 0.02, lambda text=text: delivered.append(text))
                await asyncio.sleep(0.005)
            await asyncio.sleep(0.05)
            return debouncer.pending_keys()

        assert asyncio.run(run()) == []
        assert delivered == ["c"]

    def test_keys_are_independent(self):
        delivered = []

        async def run():
            debouncer = KeyedDebouncer()
            debouncer.debounce("a", 0.01, lambda: delivered.append("a"))
            debouncer.debounce("b", 0.01, lambda: delivered.append("b"))
            await asyncio.sleep(0.05)

        asyncio.run(run())
        assert sorted(delivered) == ["a", "b"]

    def test_cancel_all_drops_pending(self):
        delivered = []

        async def run():
            debouncer = KeyedDebouncer()
            debouncer.debounce("a", 0.05, lambda: delivered.append("a"))
            pending = debouncer.pending_keys()
            debouncer.cancel_all()
            await asyncio.sleep(0.08)
            return pending, debouncer.pending_keys()

        assert asyncio.run(run()) == (["a"], [])
        assert delivered == []

    def test_cancel_unknown_key(self):
        async def run():
            return KeyedDebouncer().cancel("missing")

        assert asyncio.run(run()) is False
