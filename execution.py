import asyncio
import codecs
import itertools
import logging
import os
import re
import shutil
import tempfile
import time
import uuid
from typing import Awaitable, Callable, Optional

from errors import CollabError, CompileFailure, ExecutionCancelled, SpawnFailure, WriteError
from languages import LanguageSpec
from models import OutputChunk, SessionState

logger = logging.getLogger(__name__)

READ_SIZE = 4096

OutputSink = Callable[[OutputChunk], Awaitable[None]]

_sequence = itertools.count(1)


def make_session_id(requester: Optional[str]) -> str:
    """Requester identity plus a process-wide counter and a random suffix."""
    name = re.sub(r"[^A-Za-z0-9_-]", "", str(requester or ""))[:32] or "anon"
    return f"{name}_{next(_sequence)}_{uuid.uuid4().hex[:8]}"


class ExecutionSession:
    """One compile (optional) + run of a source snapshot.

    The session writes the snapshot into a directory it creates for itself,
    drives the build and run commands of its LanguageSpec and hands every
    piece of output to the sink passed to run(). Whatever happens, the
    directory is removed before run() returns.
    """

    def __init__(self, spec: LanguageSpec, source_text: str, room_id: Optional[str] = None,
                 requester: Optional[str] = None, work_dir: Optional[str] = None):
        self.id = make_session_id(requester)
        self.spec = spec
        self.language = spec.id
        self.room_id = room_id
        self.source_text = source_text
        self.work_dir = work_dir or tempfile.gettempdir()

        self.workdir: Optional[str] = None
        self.source_path: Optional[str] = None
        self.artifact_path: Optional[str] = None

        self.state = SessionState.CREATED
        self.returncode: Optional[int] = None

        self._process: Optional[asyncio.subprocess.Process] = None
        self._cancelled = False
        self._cleaned = False

    def __repr__(self):
        return f"<ExecutionSession(id={self.id}, language={self.language}, state={self.state.value})>"

    async def run(self, on_output: OutputSink) -> SessionState:
        start_time = time.time()
        logger.info(f"Session {self.id}: starting {self.language} run for room {self.room_id}")

        try:
            self._write_source()

            if self.spec.needs_compile:
                await self._compile()
            await self._execute(on_output)

        except CompileFailure as e:
            self.state = SessionState.FAILED
            logger.warning(f"Session {self.id}: compilation failed with exit code {e.returncode}")
            if e.diagnostics:
                await on_output(OutputChunk("stderr", e.diagnostics))
            await on_output(OutputChunk("system", f"\n[{e}]\n"))

        except CollabError as e:
            self.state = SessionState.FAILED
            logger.warning(f"Session {self.id}: {e}")
            await on_output(OutputChunk("system", f"{e}\n"))

        except BaseException:
            self.state = SessionState.FAILED
            raise

        finally:
            await self._reap()
            self._cleanup()
            elapsed = int((time.time() - start_time) * 1000)
            logger.info(f"Session {self.id}: {self.state.value} ({elapsed}ms)")

        return self.state

    def cancel(self):
        """Stop the session; run() still cleans up and returns."""
        if self.state.terminal:
            return
        self._cancelled = True
        self._kill()
        logger.info(f"Session {self.id}: cancellation requested")

    # ---------------- STAGES ----------------

    def _write_source(self):
        try:
            self.workdir = tempfile.mkdtemp(prefix=f"run_{self.id}_", dir=self.work_dir)
            self.source_path = os.path.join(self.workdir, self.spec.source_filename)
            with open(self.source_path, "w", encoding="utf-8") as f:
                f.write(self.source_text)
        except OSError as e:
            raise WriteError(f"Could not write source file: {e}") from e

        if self.spec.needs_compile:
            self.artifact_path = os.path.join(self.workdir, self.spec.artifact_name)

    async def _compile(self):
        self._check_cancelled()
        self.state = SessionState.COMPILING
        argv = self.spec.build_argv(self.source_path, self.artifact_path, self.workdir)
        logger.info(f"Session {self.id}: compiling with {argv[0]}")

        process = await self._spawn(argv, stderr=asyncio.subprocess.STDOUT)
        output, _ = await process.communicate()
        self._process = None
        self._check_cancelled()

        if process.returncode != 0:
            raise CompileFailure(process.returncode, output.decode("utf-8", errors="replace"))

        logger.info(f"Session {self.id}: compilation successful")

    async def _execute(self, on_output: OutputSink):
        self._check_cancelled()
        self.state = SessionState.RUNNING
        argv = self.spec.run_argv(self.source_path, self.artifact_path, self.workdir)
        logger.info(f"Session {self.id}: running {argv[0]}")

        process = await self._spawn(argv, stderr=asyncio.subprocess.PIPE)
        forwarders = [
            asyncio.ensure_future(self._forward(process.stdout, "stdout", on_output)),
            asyncio.ensure_future(self._forward(process.stderr, "stderr", on_output)),
        ]
        try:
            await asyncio.gather(*forwarders)
        finally:
            # A failing sink on one stream must not leave the other one reading
            for forwarder in forwarders:
                forwarder.cancel()
            await asyncio.gather(*forwarders, return_exceptions=True)

        self.returncode = await process.wait()
        self._process = None
        self._check_cancelled()

        if self.returncode != 0:
            logger.warning(f"Session {self.id}: process exited with code {self.returncode}")
            await on_output(OutputChunk("system", f"\n[process exited with code {self.returncode}]\n"))

        self.state = SessionState.COMPLETED

    # ---------------- PROCESS HELPERS ----------------

    async def _spawn(self, argv, stderr):
        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr,
                cwd=self.workdir,
            )
        except OSError as e:
            raise SpawnFailure(f"Could not start {argv[0]}: {e}") from e
        return self._process

    @staticmethod
    async def _forward(stream, name, on_output: OutputSink):
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                await on_output(OutputChunk(name, text))

        tail = decoder.decode(b"", final=True)
        if tail:
            await on_output(OutputChunk(name, tail))

    def _check_cancelled(self):
        if self._cancelled:
            raise ExecutionCancelled("[execution cancelled]")

    def _kill(self):
        process = self._process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    async def _reap(self):
        process = self._process
        if process is None:
            return
        self._kill()
        await process.wait()
        self._process = None

    def _cleanup(self):
        if self._cleaned:
            return
        self._cleaned = True
        if self.workdir is None:
            return
        try:
            shutil.rmtree(self.workdir)
            logger.debug(f"Session {self.id}: removed {self.workdir}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Session {self.id}: could not remove {self.workdir}: {e}")
