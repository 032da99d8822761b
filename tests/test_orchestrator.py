"""
Tests for the orchestrator and the events it broadcasts
"""

import asyncio
import os
import time

import pytest

from errors import UnknownRoom, UnsupportedLanguage
from models import SessionState
from orchestrator import Orchestrator


@pytest.fixture
def orchestrator(registry, store, emitter, work_dir):
    return Orchestrator(registry, store, emitter, work_dir=str(work_dir), server_ip="10.0.0.5")


class TestJoin:
    def test_join_creates_room_and_replies_to_requester(self, orchestrator, emitter, store):
        snapshot = asyncio.run(orchestrator.join("r1", "sid1"))

        assert snapshot == {"code": "# Write Python code here\n", "activeLanguage": "python", "ip": "10.0.0.5"}
        assert "r1" in store
        [init] = emitter.named("init")
        assert init.to == "sid1"
        assert init.room is None
        assert init.data == snapshot

    def test_join_reflects_active_language(self, orchestrator, store):
        asyncio.run(orchestrator.join("r1", "sid1"))
        asyncio.run(orchestrator.change_language("r1", "checked", None, "sid1"))
        store.set_buffer("r1", "checked", "print(2)")

        snapshot = asyncio.run(orchestrator.join("r1", "sid2"))

        assert snapshot["activeLanguage"] == "checked"
        assert snapshot["code"] == "print(2)"


class TestEdit:
    def test_edit_broadcasts_to_others_only(self, orchestrator, emitter, store):
        asyncio.run(orchestrator.join("r1", "sid1"))

        asyncio.run(orchestrator.edit("r1", "python", "x = 1", "sid1"))

        [code] = emitter.named("code")
        assert code.data == "x = 1"
        assert code.room == "r1"
        assert code.skip_sid == "sid1"
        assert store.get_buffer("r1", "python") == "x = 1"

    def test_last_edit_wins(self, orchestrator):
        asyncio.run(orchestrator.join("r1", "sid1"))

        async def edits():
            await orchestrator.edit("r1", "python", "a", "sid1")
            await orchestrator.edit("r1", "checked", "other", "sid2")
            await orchestrator.edit("r1", "python", "b", "sid2")

        asyncio.run(edits())

        assert asyncio.run(orchestrator.join("r1", "sid3"))["code"] == "b"

    def test_edit_unknown_room(self, orchestrator, emitter):
        with pytest.raises(UnknownRoom):
            asyncio.run(orchestrator.edit("ghost", "python", "x", "sid1"))
        assert emitter.events == []


class TestChangeLanguage:
    def test_broadcasts_to_everyone(self, orchestrator, emitter):
        asyncio.run(orchestrator.join("r1", "sid1"))

        payload = asyncio.run(orchestrator.change_language("r1", "checked", "seed", "sid1"))

        [changed] = emitter.named("languageChanged")
        assert changed.room == "r1"
        assert changed.skip_sid is None
        assert changed.data == payload == {"language": "checked", "code": "print('checked')\n"}

    def test_first_touch_seed_then_edits_survive(self, orchestrator, store):
        asyncio.run(orchestrator.join("r1", "sid1"))
        del store.get("r1").buffers["checked"]

        first = asyncio.run(orchestrator.change_language("r1", "checked", "seed", "sid1"))
        asyncio.run(orchestrator.edit("r1", "checked", "edited", "sid1"))
        asyncio.run(orchestrator.change_language("r1", "python", None, "sid1"))
        second = asyncio.run(orchestrator.change_language("r1", "checked", "seed", "sid1"))

        assert first["code"] == "seed"
        assert second["code"] == "edited"

    def test_unsupported_language(self, orchestrator, emitter, store):
        asyncio.run(orchestrator.join("r1", "sid1"))

        with pytest.raises(UnsupportedLanguage):
            asyncio.run(orchestrator.change_language("r1", "cobol", "", "sid1"))
        assert emitter.named("languageChanged") == []
        assert store.snapshot("r1")[0] == "python"


class TestRun:
    def test_hello(self, orchestrator, emitter, work_dir):
        """One done after the output, no files left behind"""
        asyncio.run(orchestrator.join("r1", "sid1"))

        state = asyncio.run(orchestrator.run("r1", "python", "print('hello')", "sid1"))

        assert state == SessionState.COMPLETED
        assert emitter.output("r1") == "hello\n"
        assert [e.event for e in emitter.events if e.room == "r1"][-1] == "done"
        assert len(emitter.named("done", "r1")) == 1
        assert os.listdir(work_dir) == []
        assert orchestrator.active_sessions() == []

    def test_unsupported_language_has_no_side_effects(self, orchestrator, emitter, work_dir, spawn_calls):
        asyncio.run(orchestrator.join("r1", "sid1"))

        with pytest.raises(UnsupportedLanguage):
            asyncio.run(orchestrator.run("r1", "cobol", "DISPLAY 'HI'.", "sid1"))

        assert spawn_calls == []
        assert os.listdir(work_dir) == []
        assert emitter.named("done") == []

    def test_unknown_room_has_no_side_effects(self, orchestrator, work_dir, spawn_calls):
        with pytest.raises(UnknownRoom):
            asyncio.run(orchestrator.run("ghost", "python", "print(1)", "sid1"))

        assert spawn_calls == []
        assert os.listdir(work_dir) == []

    def test_compile_failure_still_finishes(self, orchestrator, emitter, work_dir, spawn_calls):
        asyncio.run(orchestrator.join("r1", "sid1"))

        state = asyncio.run(orchestrator.run("r1", "checked", "def broken(:\n", "sid1"))

        assert state == SessionState.FAILED
        assert len(spawn_calls) == 1
        assert "SyntaxError" in emitter.output("r1")
        assert len(emitter.named("done", "r1")) == 1
        assert os.listdir(work_dir) == []

    def test_uses_submitted_snapshot(self, orchestrator, emitter, store):
        asyncio.run(orchestrator.join("r1", "sid1"))
        store.set_buffer("r1", "python", "print('stored')")

        asyncio.run(orchestrator.run("r1", "python", "print('submitted')", "sid1"))

        assert emitter.output("r1") == "submitted\n"

    def test_sink_crash_still_sends_done(self, orchestrator, work_dir):
        class FlakyEmitter:
            def __init__(self):
                self.events = []

            async def emit(self, event, data=None, **kwargs):
                if event == "output" and not data.startswith("Internal error"):
                    raise ConnectionError("client went away")
                self.events.append((event, data, kwargs.get("room")))

        flaky = FlakyEmitter()
        orchestrator.emitter = flaky
        asyncio.run(orchestrator.join("r1"))

        state = asyncio.run(orchestrator.run("r1", "python", "print('x')", "sid1"))

        assert state == SessionState.FAILED
        assert flaky.events[-1] == ("done", None, "r1")
        assert "client went away" in flaky.events[-2][1]
        assert os.listdir(work_dir) == []

    def test_concurrent_rooms_are_isolated(self, orchestrator, emitter):
        """Runs in different rooms overlap and keep their output apart"""
        source = "import time\ntime.sleep(1)\nprint('{}')"

        async def scenario():
            await orchestrator.join("a", "sid-a")
            await orchestrator.join("b", "sid-b")
            started = time.monotonic()
            states = await asyncio.gather(
                orchestrator.run("a", "python", source.format("from a"), "sid-a"),
                orchestrator.run("b", "python", source.format("from b"), "sid-b"),
            )
            return states, time.monotonic() - started

        states, elapsed = asyncio.run(scenario())

        assert states == [SessionState.COMPLETED, SessionState.COMPLETED]
        assert emitter.output("a") == "from a\n"
        assert emitter.output("b") == "from b\n"
        assert len(emitter.named("done", "a")) == 1
        assert len(emitter.named("done", "b")) == 1
        assert elapsed < 1.9

    def test_overlapping_runs_in_one_room(self, orchestrator, emitter):
        """Both runs complete; the room sees both outputs and two done events"""
        async def scenario():
            await orchestrator.join("r1", "sid1")
            return await asyncio.gather(
                orchestrator.run("r1", "python", "print('first')", "sid1"),
                orchestrator.run("r1", "python", "print('second')", "sid2"),
            )

        asyncio.run(scenario())

        output = emitter.output("r1")
        assert "first\n" in output
        assert "second\n" in output
        assert len(emitter.named("done", "r1")) == 2


class TestShutdown:
    def test_shutdown_cancels_running_sessions(self, orchestrator, emitter, work_dir):
        source = "import time\nprint('up', flush=True)\ntime.sleep(30)"

        async def scenario():
            await orchestrator.join("r1", "sid1")
            task = asyncio.ensure_future(orchestrator.run("r1", "python", source, "sid1"))
            while not emitter.named("output", "r1"):
                await asyncio.sleep(0.05)

            assert len(orchestrator.active_sessions("r1")) == 1
            await asyncio.wait_for(orchestrator.shutdown(), timeout=15)
            return await task

        state = asyncio.run(asyncio.wait_for(scenario(), timeout=30))

        assert state == SessionState.FAILED
        assert "[execution cancelled]" in emitter.output("r1")
        assert len(emitter.named("done", "r1")) == 1
        assert orchestrator.active_sessions() == []
        assert os.listdir(work_dir) == []

    def test_shutdown_without_sessions(self, orchestrator):
        asyncio.run(orchestrator.shutdown())

    def test_shutdown_waits_only_for_sessions(self, orchestrator, emitter, work_dir):
        """A caller that keeps working after its run does not hold up shutdown"""
        source = "import time\nprint('up', flush=True)\ntime.sleep(30)"

        async def caller():
            await orchestrator.run("r1", "python", source, "sid1")
            await asyncio.sleep(30)

        async def scenario():
            await orchestrator.join("r1", "sid1")
            outer = asyncio.ensure_future(caller())
            while not emitter.named("output", "r1"):
                await asyncio.sleep(0.05)

            await asyncio.wait_for(orchestrator.shutdown(), timeout=10)
            await asyncio.sleep(0.1)
            still_running = not outer.done()

            outer.cancel()
            with pytest.raises(asyncio.CancelledError):
                await outer
            return still_running

        assert asyncio.run(scenario()) is True
        assert len(emitter.named("done", "r1")) == 1
        assert orchestrator.active_sessions() == []
        assert os.listdir(work_dir) == []
