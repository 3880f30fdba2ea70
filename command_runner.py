# Interactive Feedback MCP Command Runner
# Developed by Fábio Ferreira (https://x.com/fabiomlferreira)
# Inspired by/related to dotcursorrules.com (https://dotcursorrules.com/)
import os
import sys
import signal
import asyncio
import codecs
import logging
import subprocess
from typing import Any, Callable, Optional, TypedDict

import psutil

logger = logging.getLogger(__name__)

# Seconds to wait for a killed command to be reaped before giving up on it
STOP_GRACE_SECONDS = 5.0

READ_CHUNK_SIZE = 4096


class ProcessStatus(TypedDict, total=False):
    running: bool
    exitCode: Optional[int]
    error: str
    stopped: bool


# Listeners receive (event_type, data) where event_type is "log", "logs" or "processStatus"
Listener = Callable[[str, Any], None]


def shell_command(command: str) -> list[str]:
    if sys.platform == "win32":
        return ["cmd.exe", "/c", command]
    return ["/bin/bash", "-c", command]


def kill_tree(pid: int) -> None:
    killed: list[psutil.Process] = []
    try:
        parent = psutil.Process(pid)
    except psutil.Error:
        return
    for proc in parent.children(recursive=True):
        try:
            proc.kill()
            killed.append(proc)
        except psutil.Error:
            pass
    try:
        parent.kill()
    except psutil.Error:
        pass
    killed.append(parent)

    # Terminate any remaining processes
    for proc in killed:
        try:
            if proc.is_running():
                proc.terminate()
        except psutil.Error:
            pass


def kill_process_group(pid: int) -> None:
    """Kill the process group led by ``pid``, falling back to its process tree."""
    if sys.platform != "win32":
        try:
            os.killpg(pid, signal.SIGKILL)
            return
        except OSError as e:
            logger.warning("Group kill of %s failed (%s), killing process tree", pid, e)
    kill_tree(pid)


class CommandRunner:
    """Runs at most one shell command at a time and keeps its output.

    Output of stdout and stderr is folded into one append-only log buffer in
    arrival order. Every chunk is also published to listeners as a ``log``
    event; lifecycle changes are published as ``processStatus`` events.
    """

    def __init__(self):
        self.log_buffer: list[str] = []
        self.process: Optional[asyncio.subprocess.Process] = None
        self.last_status: ProcessStatus = {"running": False}
        self._listeners: list[Listener] = []
        self._watcher: Optional[asyncio.Task] = None
        self._stopping = False
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self.process is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: str, data: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event_type, data)
            except Exception:
                logger.exception("Listener failed for %s event", event_type)

    def _set_status(self, status: ProcessStatus) -> None:
        self.last_status = status
        self._emit("processStatus", status)

    def add_log(self, text: str) -> None:
        self.log_buffer.append(text)
        self._emit("log", text)

    def get_logs(self) -> str:
        return "".join(self.log_buffer)

    def clear_logs(self) -> None:
        self.log_buffer = []
        self._emit("logs", "")
        logger.info("Logs cleared")

    async def run(self, command: str, cwd: Optional[str] = None) -> None:
        # Preempt, spawn and track as one step so overlapping calls queue up
        async with self._run_lock:
            await self._start(command, cwd)

    async def _start(self, command: str, cwd: Optional[str]) -> None:
        if self.is_running:
            self.add_log("Process is already running. Stopping current process first.\n")
            await self.stop()

        self.add_log(f"$ {command}\n")
        try:
            kwargs: dict[str, Any] = {}
            if sys.platform == "win32":
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                # New session so the whole command tree shares one process group
                kwargs["start_new_session"] = True
            process = await asyncio.create_subprocess_exec(
                *shell_command(command),
                cwd=cwd or os.getcwd(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=os.environ.copy(),
                **kwargs,
            )
        except Exception as e:
            self.process = None
            self.add_log(f"Error launching command: {e}\n")
            self._set_status({"running": False, "error": str(e)})
            logger.error("Failed to launch %r: %s", command, e)
            return

        self.process = process
        self._stopping = False
        self._set_status({"running": True})
        self._watcher = asyncio.create_task(self._watch(process))
        logger.info("Command launched: %s (pid %s)", command, process.pid)

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        try:
            assert process.stdout is not None
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    self.add_log(text)
            tail = decoder.decode(b"", final=True)
            if tail:
                self.add_log(tail)
            exit_code = await process.wait()
        except Exception as e:
            if self.process is process:
                self.process = None
                self.add_log(f"\nProcess error: {e}\n")
                self._set_status({"running": False, "error": str(e)})
            return

        if self.process is not process:
            # Already given up on by stop(); the UI has moved on
            logger.info("Abandoned process %s exited with code %s", process.pid, exit_code)
            return

        self.process = None
        self.add_log(f"\nProcess exited with code {exit_code}\n")
        status: ProcessStatus = {"running": False, "exitCode": exit_code}
        if self._stopping:
            status["stopped"] = True
        self._set_status(status)

    async def stop(self) -> None:
        process = self.process
        if process is None:
            logger.info("No process is currently running")
            return

        self._stopping = True
        try:
            kill_process_group(process.pid)
        except Exception as e:
            logger.warning("Error stopping process %s: %s", process.pid, e)
        self.add_log("Process stopped by user\n")

        watcher = self._watcher
        if watcher is not None and not watcher.done():
            try:
                await asyncio.wait_for(asyncio.shield(watcher), STOP_GRACE_SECONDS)
                return
            except asyncio.TimeoutError:
                logger.warning("Process %s did not exit after kill", process.pid)

        if self.process is process:
            # Unblock the UI even though the OS has not reaped the process
            self.process = None
            self._set_status(
                {"running": False, "stopped": True, "error": "process did not exit after kill"}
            )

    async def close(self) -> None:
        if self.is_running:
            await self.stop()
        self.clear_logs()
        self._listeners.clear()
        logger.info("Command runner cleaned up")