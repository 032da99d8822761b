import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel


# ---------------- ROOM STATE ----------------

@dataclass
class Room:
    room_id: str
    buffers: Dict[str, str]
    active_language: str
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __repr__(self):
        return f"<Room(room_id={self.room_id}, language={self.active_language})>"


class SessionState(str, Enum):
    CREATED = "created"
    COMPILING = "compiling"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self):
        return self in (SessionState.COMPLETED, SessionState.FAILED)


@dataclass(frozen=True)
class OutputChunk:
    stream: str  # "stdout", "stderr" or "system"
    text: str


# ---------------- SOCKET PAYLOADS ----------------

class JoinRequest(BaseModel):
    roomId: str


class EditRequest(BaseModel):
    roomId: str
    language: str
    text: str


class LanguageChangeRequest(BaseModel):
    roomId: str
    language: str
    defaultText: Optional[str] = None


class RunRequest(BaseModel):
    roomId: str
    language: str
    sourceText: str


# ---------------- SHARED FILES ----------------

class FileRecord(BaseModel):
    storedId: str
    originalName: str
    downloadUrl: str


# Outbound event names
EVENT_INIT = "init"
EVENT_CODE = "code"
EVENT_LANGUAGE_CHANGED = "languageChanged"
EVENT_OUTPUT = "output"
EVENT_DONE = "done"
EVENT_FILE_LIST = "file-list"
EVENT_ERROR = "error"
