import logging
import threading
from typing import Dict, List, Tuple

from errors import UnknownLanguage, UnknownRoom, UnsupportedLanguage
from languages import LanguageRegistry
from models import Room

logger = logging.getLogger(__name__)


class RoomStore:
    """In-memory rooms, one buffer per supported language.

    The map itself is guarded by a store-wide lock; every read or write of a
    room's buffers happens under that room's own lock, so a room is never
    observed with its active language pointing at a missing buffer.
    """

    def __init__(self, registry: LanguageRegistry):
        self.registry = registry
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()

    def ensure(self, room_id: str) -> Room:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(
                    room_id=room_id,
                    buffers=self.registry.default_snippets(),
                    active_language=self.registry.default_language,
                )
                self._rooms[room_id] = room
                logger.info(f"Room {room_id} created")
            return room

    def get(self, room_id: str) -> Room:
        with self._lock:
            room = self._rooms.get(room_id)
        if room is None:
            raise UnknownRoom(room_id)
        return room

    def get_buffer(self, room_id: str, language: str) -> str:
        room = self.get(room_id)
        with room.lock:
            if language not in room.buffers:
                raise UnknownLanguage(room_id, language)
            return room.buffers[language]

    def set_buffer(self, room_id: str, language: str, text: str):
        if language not in self.registry:
            raise UnsupportedLanguage(language)
        room = self.get(room_id)
        with room.lock:
            room.buffers[language] = text

    def set_active_language(self, room_id: str, language: str, default_text: str) -> Tuple[str, str]:
        """Switch the room's language, seeding its buffer only on first touch."""
        if language not in self.registry:
            raise UnsupportedLanguage(language)
        room = self.get(room_id)
        with room.lock:
            code = room.buffers.setdefault(language, default_text)
            room.active_language = language
            return language, code

    def snapshot(self, room_id: str) -> Tuple[str, str]:
        room = self.get(room_id)
        with room.lock:
            return room.active_language, room.buffers[room.active_language]

    def room_ids(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def __contains__(self, room_id) -> bool:
        with self._lock:
            return room_id in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)
