class CollabError(Exception):
    """Base class for errors surfaced to room participants as readable text"""


class UnknownRoom(CollabError):
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__(f"Unknown room: {room_id}")


class UnknownLanguage(CollabError):
    def __init__(self, room_id, language):
        self.room_id = room_id
        self.language = language
        super().__init__(f"Room {room_id} has no buffer for language: {language}")


class UnsupportedLanguage(CollabError):
    def __init__(self, language):
        self.language = language
        super().__init__(f"Unsupported language: {language}")


class WriteError(CollabError):
    pass


class CompileFailure(CollabError):
    def __init__(self, returncode, diagnostics=""):
        self.returncode = returncode
        self.diagnostics = diagnostics
        super().__init__(f"Compilation failed with exit code {returncode}")


class SpawnFailure(CollabError):
    pass


class ExecutionCancelled(CollabError):
    pass
