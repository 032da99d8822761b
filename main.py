import logging
import socket

import socketio
import uvicorn
from fastapi import FastAPI, File, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from errors import CollabError
from files import URL_PREFIX, FileStore
from languages import LanguageRegistry, build_default_registry
from models import (
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_FILE_LIST,
    EVENT_OUTPUT,
    EditRequest,
    JoinRequest,
    LanguageChangeRequest,
    RunRequest,
)
from orchestrator import Orchestrator
from rooms import RoomStore
from settings import Settings

logger = logging.getLogger(__name__)


def get_local_ip():
    """LAN address peers can use to reach this server"""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            # No packet is sent; connect() only picks the outbound interface
            s.connect(("10.255.255.255", 1))
            return s.getsockname()[0]
        except OSError:
            return "localhost"


def create_app(settings: Settings = None, registry: LanguageRegistry = None) -> FastAPI:
    settings = settings or Settings()
    registry = registry or build_default_registry(settings)

    # ---- Socket.IO Server ----
    sio = socketio.AsyncServer(
        cors_allowed_origins="*" if "*" in settings.CORS_ORIGINS else settings.CORS_ORIGINS,
        async_mode="asgi"
    )

    app = FastAPI(title="Code Collab", debug=settings.DEBUG)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = RoomStore(registry)
    files = FileStore(settings.UPLOAD_DIR)
    orchestrator = Orchestrator(
        registry,
        store,
        sio,
        work_dir=settings.WORK_DIR,
        server_ip=get_local_ip(),
    )
    sid_to_room = {}

    app.state.settings = settings
    app.state.sio = sio
    app.state.store = store
    app.state.files = files
    app.state.orchestrator = orchestrator

    def file_list():
        return [record.model_dump() for record in files.list()]

    async def reject(sid, error):
        logger.warning(f"Rejected request from {sid}: {error}")
        await sio.emit(EVENT_ERROR, {"message": str(error)}, to=sid)

    # ---------------- SOCKET EVENTS ----------------

    @sio.event
    async def connect(sid, environ):
        logger.info(f"User connected: {sid}")
        await sio.emit(EVENT_FILE_LIST, file_list(), to=sid)

    @sio.event
    async def join(sid, data):
        if isinstance(data, str):
            data = {"roomId": data}
        try:
            request = JoinRequest.model_validate(data)
        except ValidationError as e:
            await reject(sid, e)
            return

        # Leave the previous room
        old = sid_to_room.get(sid)
        if old is not None and old != request.roomId:
            await sio.leave_room(sid, old)

        await sio.enter_room(sid, request.roomId)
        sid_to_room[sid] = request.roomId

        await orchestrator.join(request.roomId, sid)

    @sio.event
    async def edit(sid, data):
        try:
            request = EditRequest.model_validate(data)
            await orchestrator.edit(request.roomId, request.language, request.text, sid)
        except (ValidationError, CollabError) as e:
            await reject(sid, e)

    @sio.on("languageChange")
    async def language_change(sid, data):
        try:
            request = LanguageChangeRequest.model_validate(data)
            await orchestrator.change_language(request.roomId, request.language, request.defaultText, sid)
        except (ValidationError, CollabError) as e:
            await reject(sid, e)

    @sio.event
    async def run(sid, data):
        try:
            request = RunRequest.model_validate(data)
            await orchestrator.run(request.roomId, request.language, request.sourceText, sid)
        except (ValidationError, CollabError) as e:
            # Nothing was spawned; only the requester is waiting on done
            await reject(sid, e)
            await sio.emit(EVENT_OUTPUT, f"{e}\n", to=sid)
            await sio.emit(EVENT_DONE, to=sid)

    @sio.event
    async def disconnect(sid):
        logger.info(f"Disconnected: {sid}")
        sid_to_room.pop(sid, None)

    # ---------------- REST API ENDPOINTS ----------------

    @app.post("/upload")
    async def upload(file: UploadFile = File(...)):
        data = await file.read()
        record = await run_in_threadpool(files.add, data, file.filename or "file")
        await sio.emit(EVENT_FILE_LIST, file_list())
        return {"success": True, "file": record.model_dump()}

    @app.get("/files")
    async def list_files():
        return file_list()

    @app.delete("/clear-files")
    async def clear_files():
        await run_in_threadpool(files.clear)
        await sio.emit(EVENT_FILE_LIST, file_list())
        return {"message": "All files cleared"}

    @app.get("/api/room/{room_id}")
    async def get_room(room_id: str):
        """Get room information"""
        if room_id not in store:
            return JSONResponse(status_code=404, content={"error": "Room not found"})

        language, code = store.snapshot(room_id)
        return {
            "room_id": room_id,
            "code": code,
            "language": language,
            "running": len(orchestrator.active_sessions(room_id)),
        }

    @app.get("/api/rooms")
    async def list_rooms():
        """List all rooms"""
        rooms_list = []
        for room_id in store.room_ids():
            language, _ = store.snapshot(room_id)
            rooms_list.append({"room_id": room_id, "language": language})
        return rooms_list

    @app.get("/api/languages")
    async def list_languages():
        return [
            {
                "id": spec.id,
                "sourceExtension": spec.source_extension,
                "needsCompile": spec.needs_compile,
                "default": spec.id == registry.default_language,
            }
            for spec in registry
        ]

    # ---------------- SHARED FILE DOWNLOADS ----------------

    app.mount(URL_PREFIX, StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

    return app


def create_asgi_app(settings: Settings = None) -> socketio.ASGIApp:
    """Socket.IO wrapped around the FastAPI app, ready for uvicorn

        uvicorn --factory main:create_asgi_app --host 0.0.0.0 --port 3001
    """
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    app = create_app(settings)
    return socketio.ASGIApp(
        app.state.sio,
        other_asgi_app=app,
        on_shutdown=app.state.orchestrator.shutdown,
    )


if __name__ == "__main__":
    settings = Settings()
    uvicorn.run("main:create_asgi_app", factory=True, host=settings.HOST, port=settings.PORT)
