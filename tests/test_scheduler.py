"""Tests for the microtask queue, coalescing and re-entrancy policies."""

import asyncio

import pytest

from rxmark import MicrotaskQueue, ReactiveConfig, ReactiveEngine, Reentrancy, Scheduler


class TestMicrotaskQueue:
    def test_queues_without_loop(self):
        q = MicrotaskQueue()
        log = []
        q.post(lambda: log.append(1))
        assert log == []
        assert len(q) == 1
        assert q.run_pending() == 1
        assert log == [1]

    def test_drains_callbacks_posted_while_draining(self):
        q = MicrotaskQueue()
        log = []

        def first():
            log.append("first")
            q.post(lambda: log.append("second"))

        q.post(first)
        assert q.run_pending() == 2
        assert log == ["first", "second"]

    def test_custom_post(self):
        posted = []
        q = MicrotaskQueue(post=posted.append)
        q.post(lambda: None)
        assert len(posted) == 1
        assert len(q) == 0

    def test_uses_running_loop(self):
        log = []

        async def main():
            q = MicrotaskQueue()
            q.post(lambda: log.append("ran"))
            assert log == []
            await asyncio.sleep(0)
            assert log == ["ran"]
            assert len(q) == 0

        asyncio.run(main())


class TestScheduler:
    def test_request_coalesces(self):
        s = Scheduler()
        calls = []
        s.add_watcher("k", lambda: calls.append(1))
        for _ in range(5):
            s.request("k")
        assert s.pending_count() == 1
        assert len(s.queue) == 1
        s.queue.run_pending()
        assert calls == [1]
        assert not s.is_pending("k")

    def test_flush_runs_pending_now(self):
        s = Scheduler()
        calls = []
        s.add_watcher("k", lambda: calls.append(1))
        s.request("k")
        s.flush("k")
        assert calls == [1]
        # The already-posted callback is now a no-op.
        s.queue.run_pending()
        assert calls == [1]

    def test_flush_without_pending_is_noop(self):
        s = Scheduler()
        calls = []
        s.add_watcher("k", lambda: calls.append(1))
        s.flush("k")
        s.flush("unknown")
        assert calls == []

    def test_registration_order(self):
        s = Scheduler()
        order = []
        for name in "abc":
            s.add_watcher("k", lambda name=name: order.append(name))
        s.notify("k")
        assert order == ["a", "b", "c"]

    def test_same_watcher_registered_once(self):
        s = Scheduler()
        calls = []

        def w():
            calls.append(1)

        s.add_watcher("k", w)
        s.add_watcher("k", w)
        assert s.watcher_count("k") == 1

    def test_failing_watcher_does_not_block_siblings(self, caplog):
        s = Scheduler()
        calls = []

        def boom():
            raise RuntimeError("watcher exploded")

        s.add_watcher("k", boom)
        s.add_watcher("k", lambda: calls.append("after"))
        s.notify("k")
        assert calls == ["after"]
        assert "watcher exploded" in caplog.text

    def test_unsubscribe_during_pass_affects_future_passes(self):
        s = Scheduler()
        calls = []
        unsub_b = None

        def a():
            calls.append("a")
            unsub_b()

        def b():
            calls.append("b")

        s.add_watcher("k", a)
        unsub_b = s.add_watcher("k", b)
        s.notify("k")
        assert calls == ["a", "b"]
        s.notify("k")
        assert calls == ["a", "b", "a"]

    def test_unsubscribe_idempotent(self):
        s = Scheduler()
        unsub = s.add_watcher("k", lambda: None)
        unsub()
        unsub()
        assert s.watcher_count("k") == 0

    def test_drop(self):
        s = Scheduler()
        calls = []
        s.add_watcher("k", lambda: calls.append(1))
        s.request("k")
        s.drop("k")
        s.queue.run_pending()
        assert calls == []
        assert s.pending_count() == 0

    def test_policy_from_string(self):
        assert Scheduler("defer").policy is Reentrancy.DEFER


def _engine(policy):
    engine = ReactiveEngine(ReactiveConfig(reentrancy=policy))
    scope = object()
    engine.init_scope(scope, {"count": 0})
    return engine, scope


class TestCoalescing:
    @pytest.mark.parametrize("writes", [1, 2, 10, 500])
    def test_one_pass_per_tick(self, writes):
        engine, scope = _engine("skip")
        state = engine.get_state(scope)
        calls = []
        engine.watch(scope, lambda: calls.append(state["count"]))
        for i in range(writes):
            state["count"] = i + 1
            state[f"k{i % 3}"] = i
        assert calls == []
        engine.tick()
        assert calls == [writes]

    def test_all_synchronous_writes_visible_to_the_pass(self):
        engine, scope = _engine("skip")
        seen = []
        engine.watch(scope, lambda: seen.append(engine.get_state(scope).snapshot()))
        engine.set_state(scope, {"count": 1, "label": "x"})
        engine.evaluate('["set", "open", true]', scope)
        engine.tick()
        assert seen == [{"count": 1, "label": "x", "open": True}]

    def test_async_loop_coalesces(self):
        async def main():
            engine, scope = _engine("skip")
            state = engine.get_state(scope)
            calls = []
            engine.watch(scope, lambda: calls.append(state["count"]))
            for i in range(10):
                state["count"] = i + 1
            assert calls == []
            await asyncio.sleep(0)
            return calls

        assert asyncio.run(main()) == [10]


class TestSkipPolicy:
    def test_nested_write_applies_but_is_not_renotified(self):
        engine, scope = _engine(Reentrancy.SKIP)
        calls = []

        def watcher():
            count = engine.get_state(scope)["count"]
            calls.append(count)
            if count < 2:
                engine.set_state(scope, {"count": count + 1})

        engine.watch(scope, watcher)
        engine.set_state(scope, {"count": 1})
        engine.tick()
        assert calls == [1]
        assert engine.get_state(scope)["count"] == 2

    def test_bounded_by_external_writes(self):
        engine, scope = _engine(Reentrancy.SKIP)
        state = engine.get_state(scope)
        calls = [0]

        def rewriting_watcher():
            calls[0] += 1
            state["echo"] = state["count"] * 2
            state["internal"] = calls[0]

        engine.watch(scope, rewriting_watcher)
        for i in range(10_000):
            state["count"] = i + 1
            engine.flush(scope)
        engine.tick()
        assert calls[0] == 10_000
        assert state["echo"] == 20_000


class TestDeferPolicy:
    def test_single_follow_up_pass(self):
        engine, scope = _engine(Reentrancy.DEFER)
        calls = []

        def watcher():
            count = engine.get_state(scope)["count"]
            calls.append(count)
            if count < 2:
                engine.set_state(scope, {"count": count + 1})
                engine.set_state(scope, {"other": count})

        engine.watch(scope, watcher)
        engine.set_state(scope, {"count": 1})
        engine.tick()
        assert calls == [1, 2]
        assert engine.get_state(scope)["count"] == 2

    def test_follow_up_runs_after_current_pass(self):
        engine, scope = _engine(Reentrancy.DEFER)
        order = []

        def writer():
            order.append(("writer", engine.get_state(scope)["count"]))
            if engine.get_state(scope)["count"] == 1:
                engine.set_state(scope, {"count": 2})

        engine.watch(scope, writer)
        engine.watch(scope, lambda: order.append(("reader", engine.get_state(scope)["count"])))
        engine.set_state(scope, {"count": 1})
        engine.tick()
        assert order == [("writer", 1), ("reader", 2), ("writer", 2), ("reader", 2)]

    @pytest.mark.parametrize("target", [5, 100, 2_000])
    def test_converges_monotonically(self, target):
        engine, scope = _engine(Reentrancy.DEFER)
        seen = []

        def incrementer():
            count = engine.get_state(scope)["count"]
            seen.append(count)
            if count < target:
                engine.set_state(scope, {"count": count + 1})

        engine.watch(scope, incrementer)
        engine.set_state(scope, {"count": 1})
        engine.tick()
        assert engine.get_state(scope)["count"] == target
        assert seen == list(range(1, target + 1))

    def test_other_scopes_schedule_normally(self):
        engine = ReactiveEngine(ReactiveConfig(reentrancy="defer"))
        a, b = object(), object()
        engine.init_scope(a, {"x": 0})
        engine.init_scope(b, {"y": 0})
        seen_b = []
        engine.watch(a, lambda: engine.set_state(b, {"y": engine.get_state(a)["x"]}))
        engine.watch(b, lambda: seen_b.append(engine.get_state(b)["y"]))
        engine.set_state(a, {"x": 3})
        engine.tick()
        assert seen_b == [3]

    def test_converges_under_asyncio(self):
        async def main():
            engine, scope = _engine(Reentrancy.DEFER)
            seen = []

            def incrementer():
                count = engine.get_state(scope)["count"]
                seen.append(count)
                if count < 5:
                    engine.set_state(scope, {"count": count + 1})

            engine.watch(scope, incrementer)
            engine.set_state(scope, {"count": 1})
            for _ in range(10):
                await asyncio.sleep(0)
            return seen

        assert asyncio.run(main()) == [1, 2, 3, 4, 5]
