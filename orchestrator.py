import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from execution import ExecutionSession
from languages import LanguageRegistry
from models import (
    EVENT_CODE,
    EVENT_DONE,
    EVENT_INIT,
    EVENT_LANGUAGE_CHANGED,
    EVENT_OUTPUT,
    OutputChunk,
    SessionState,
)
from rooms import RoomStore

logger = logging.getLogger(__name__)


class Emitter(Protocol):
    """The slice of socketio.AsyncServer the orchestrator talks to."""

    async def emit(self, event: str, data: Any = None, to: Optional[str] = None,
                   room: Optional[str] = None, skip_sid: Optional[str] = None, **kwargs) -> None:
        ...


class Orchestrator:
    def __init__(self, registry: LanguageRegistry, store: RoomStore, emitter: Emitter,
                 work_dir: Optional[str] = None, server_ip: str = "localhost"):
        self.registry = registry
        self.store = store
        self.emitter = emitter
        self.work_dir = work_dir
        self.server_ip = server_ip
        self._active: Dict[str, ExecutionSession] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def join(self, room_id: str, sid: Optional[str] = None) -> Dict[str, str]:
        """Ensure the room exists and send its snapshot to the requester only."""
        self.store.ensure(room_id)
        language, code = self.store.snapshot(room_id)
        snapshot = {"code": code, "activeLanguage": language, "ip": self.server_ip}

        if sid is not None:
            await self.emitter.emit(EVENT_INIT, snapshot, to=sid)
        return snapshot

    async def edit(self, room_id: str, language: str, text: str, sid: Optional[str] = None):
        self.store.set_buffer(room_id, language, text)
        await self.emitter.emit(EVENT_CODE, text, room=room_id, skip_sid=sid)

    async def change_language(self, room_id: str, language: str, default_text: Optional[str] = None,
                              sid: Optional[str] = None) -> Dict[str, str]:
        spec = self.registry.resolve(language)
        if default_text is None:
            default_text = spec.default_snippet

        language, code = self.store.set_active_language(room_id, language, default_text)
        payload = {"language": language, "code": code}
        logger.info(f"Room {room_id}: language changed to {language}")

        await self.emitter.emit(EVENT_LANGUAGE_CHANGED, payload, room=room_id)
        return payload

    async def run(self, room_id: str, language: str, source_text: str,
                  sid: Optional[str] = None) -> SessionState:
        """Compile (if needed) and run a snapshot, streaming output to the room.

        Unknown rooms and unsupported languages raise before anything touches
        the filesystem. Once a session exists the room always gets its done
        event, whatever the session does.
        """
        self.store.get(room_id)
        spec = self.registry.resolve(language)

        session = ExecutionSession(spec, source_text, room_id=room_id, requester=sid, work_dir=self.work_dir)
        self._active[session.id] = session

        async def forward(chunk: OutputChunk):
            await self.emitter.emit(EVENT_OUTPUT, chunk.text, room=room_id)

        task = asyncio.ensure_future(session.run(forward))
        self._tasks[session.id] = task

        try:
            return await task
        except Exception as e:
            logger.exception(f"Session {session.id} crashed")
            await self.emitter.emit(EVENT_OUTPUT, f"Internal error: {e}\n", room=room_id)
            return SessionState.FAILED
        finally:
            self._active.pop(session.id, None)
            self._tasks.pop(session.id, None)
            await self.emitter.emit(EVENT_DONE, room=room_id)

    def active_sessions(self, room_id: Optional[str] = None) -> List[ExecutionSession]:
        return [s for s in self._active.values() if room_id is None or s.room_id == room_id]

    async def shutdown(self):
        """Cancel in-flight sessions and wait for their cleanup."""
        sessions = list(self._active.values())
        tasks = list(self._tasks.values())
        if not sessions:
            return

        logger.info(f"Cancelling {len(sessions)} running session(s)")
        for session in sessions:
            session.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
