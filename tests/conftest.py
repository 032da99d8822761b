import asyncio
import sys
from dataclasses import dataclass
from typing import Any, Optional

import pytest

from languages import LanguageRegistry, LanguageSpec
from rooms import RoomStore


# Build step: byte-compile the source (fails on syntax errors), then copy it to the artifact path
CHECK_AND_COPY = (
    "import py_compile, shutil, sys; "
    "py_compile.compile(sys.argv[1], doraise=True); "
    "shutil.copy(sys.argv[1], sys.argv[2])"
)


@dataclass
class Emitted:
    event: str
    data: Any
    to: Optional[str]
    room: Optional[str]
    skip_sid: Optional[str]


class RecordingEmitter:
    """Stands in for socketio.AsyncServer and remembers every emit"""

    def __init__(self):
        self.events = []

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, **kwargs):
        self.events.append(Emitted(event, data, to, room, skip_sid))

    def named(self, event, room=None):
        return [e for e in self.events if e.event == event and (room is None or e.room == room)]

    def output(self, room):
        return "".join(e.data for e in self.named("output", room))


@pytest.fixture
def python_spec():
    return LanguageSpec(
        id="python",
        source_extension=".py",
        default_snippet="# Write Python code here\n",
        run_command=(sys.executable, "-u", "{source}"),
    )


@pytest.fixture
def checked_spec():
    """A compiled language built from the test interpreter"""
    return LanguageSpec(
        id="checked",
        source_extension=".py",
        default_snippet="print('checked')\n",
        build_command=(sys.executable, "-c", CHECK_AND_COPY, "{source}", "{artifact}"),
        run_command=(sys.executable, "-u", "{artifact}"),
        artifact_name="program.py",
    )


@pytest.fixture
def registry(python_spec, checked_spec):
    return LanguageRegistry([python_spec, checked_spec], default_language="python")


@pytest.fixture
def store(registry):
    return RoomStore(registry)


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def spawn_calls(monkeypatch):
    """Record the argv of every process the code under test starts"""
    calls = []
    real = asyncio.create_subprocess_exec

    async def recording(*args, **kwargs):
        calls.append(list(args))
        return await real(*args, **kwargs)

    monkeypatch.setattr(asyncio, "create_subprocess_exec", recording)
    return calls
