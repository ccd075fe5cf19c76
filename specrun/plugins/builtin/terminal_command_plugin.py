"""Terminal command executors -- run shell commands via asyncio subprocesses.

``TERMINAL_COMMAND`` runs a command and waits for it, unless the action is
a background one, in which case it returns as soon as the process has
started.  Background processes are tracked so that a later
``STOP_BACKGROUND`` action (or plugin cleanup) can terminate them.
Their output pipes are drained continuously so a chatty process never
blocks on a full pipe; only the tail of each stream is kept.
"""

from __future__ import annotations

import asyncio
import os
import shlex
from pathlib import Path

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from specrun.engine.context import ContextView
from specrun.models import ExecutorOutput, utcnow
from specrun.plugins.base import BaseExecutor
from specrun.utils.exceptions import ActionExecutionError
from specrun.utils.logging import get_logger

logger = get_logger(__name__)

STOP_TIMEOUT_SECONDS = 5.0
DRAIN_TIMEOUT_SECONDS = 1.0
OUTPUT_TAIL_BYTES = 64 * 1024


class CommandParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    command: str
    working_directory: str | None = None
    environment: dict[str, str] = {}
    expected_exit_codes: list[int] = [0]
    shell: bool | str = True
    background: bool = False
    ready_delay_ms: int = 0


class StopParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    pid: int | None = None


class OutputTail:
    """Reads a pipe until EOF, keeping the last ``OUTPUT_TAIL_BYTES``."""

    def __init__(self, stream: asyncio.StreamReader | None) -> None:
        self.buffer = bytearray()
        self.task = asyncio.create_task(self._drain(stream)) if stream is not None else None

    async def _drain(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(OUTPUT_TAIL_BYTES)
            if not chunk:
                return
            self.buffer += chunk
            del self.buffer[:-OUTPUT_TAIL_BYTES]

    async def close(self) -> str:
        """Wait briefly for EOF, then stop reading and return the tail."""
        if self.task is not None:
            try:
                await asyncio.wait_for(self.task, timeout=DRAIN_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                # A grandchild still holds the pipe open.
                logger.debug("background_drain_abandoned")
        return self.buffer.decode(errors="replace")


class BackgroundProcesses:
    """Processes started in background mode, keyed by pid."""

    def __init__(self) -> None:
        self._processes: dict[int, asyncio.subprocess.Process] = {}
        self._tails: dict[int, tuple[OutputTail, OutputTail]] = {}
        self.output: dict[int, dict[str, str]] = {}

    def add(self, process: asyncio.subprocess.Process) -> None:
        self._processes[process.pid] = process
        self._tails[process.pid] = (OutputTail(process.stdout), OutputTail(process.stderr))

    def pids(self) -> list[int]:
        return list(self._processes)

    async def stop(self, pid: int) -> int | None:
        """Terminate *pid* and return its exit code.

        The last output of the process is kept in :attr:`output`.
        Raises :class:`KeyError` when *pid* is not tracked.
        """
        process = self._processes.pop(pid)
        stdout, stderr = self._tails.pop(pid)
        try:
            if process.returncode is None:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=STOP_TIMEOUT_SECONDS)
                except asyncio.TimeoutError:
                    logger.warning("background_kill", pid=pid)
                    process.kill()
                    await process.wait()
        finally:
            out, err = await asyncio.gather(stdout.close(), stderr.close())
            self.output[pid] = {"stdout": out, "stderr": err}
        logger.info("background_stopped", pid=pid, exit_code=process.returncode)
        return process.returncode

    async def stop_all(self) -> None:
        for pid in self.pids():
            try:
                await self.stop(pid)
            except ProcessLookupError:
                logger.debug("background_already_gone", pid=pid)
            self.output.pop(pid, None)


_SHARED = BackgroundProcesses()


def _working_directory(params: CommandParams, context: ContextView) -> Path:
    if not params.working_directory:
        return context.workspace_root
    path = Path(params.working_directory)
    return path if path.is_absolute() else context.workspace_root / path


async def _spawn(params: CommandParams, cwd: Path, env: dict[str, str]) -> asyncio.subprocess.Process:
    pipes = {"stdout": asyncio.subprocess.PIPE, "stderr": asyncio.subprocess.PIPE}
    if params.shell is True:
        return await asyncio.create_subprocess_shell(params.command, cwd=cwd, env=env, **pipes)
    if params.shell is False:
        return await asyncio.create_subprocess_exec(*shlex.split(params.command), cwd=cwd, env=env, **pipes)
    flag = "-Command" if "powershell" in params.shell.lower() or "pwsh" in params.shell.lower() else "-c"
    return await asyncio.create_subprocess_exec(params.shell, flag, params.command, cwd=cwd, env=env, **pipes)


class TerminalCommandExecutor(BaseExecutor):
    name = "terminal-command"
    description = "Runs shell commands and checks their exit code"
    action_types = ("TERMINAL_COMMAND",)

    def __init__(self, processes: BackgroundProcesses | None = None) -> None:
        self.processes = processes or _SHARED

    async def execute(self, params: dict, context: ContextView) -> ExecutorOutput:
        p = self.parse_params(CommandParams, params)
        cwd = _working_directory(p, context)
        env = {**os.environ, **context.environment, **p.environment}
        data = {
            "command": p.command,
            "workingDirectory": str(cwd),
            "expectedExitCodes": p.expected_exit_codes,
            "timestamp": utcnow().isoformat(),
        }

        try:
            process = await _spawn(p, cwd, env)
        except OSError as exc:
            raise ActionExecutionError(f"Failed to start command: {exc}", data=data) from exc

        if p.background:
            return await self._background(process, p, data)

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Timed out by the dispatcher; do not leave the child running.
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        data.update(
            exitCode=process.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        logger.debug("command_finished", command=p.command, exit_code=process.returncode)

        if process.returncode not in p.expected_exit_codes:
            expected = ", ".join(str(c) for c in p.expected_exit_codes)
            raise ActionExecutionError(
                f"Command exited with code {process.returncode}. Expected: {expected}",
                data=data,
            )
        return ExecutorOutput(data=data)

    async def _background(
        self,
        process: asyncio.subprocess.Process,
        params: CommandParams,
        data: dict,
    ) -> ExecutorOutput:
        self.processes.add(process)
        data.update(pid=process.pid, background=True)
        logger.info("background_started", command=params.command, pid=process.pid)

        if params.ready_delay_ms:
            await asyncio.sleep(params.ready_delay_ms / 1000)
            if process.returncode is not None and process.returncode not in params.expected_exit_codes:
                data["exitCode"] = process.returncode
                raise ActionExecutionError(
                    f"Background command exited early with code {process.returncode}",
                    data=data,
                )
        return ExecutorOutput(data=data)

    async def cleanup(self) -> None:
        await self.processes.stop_all()


class StopBackgroundExecutor(BaseExecutor):
    name = "stop-background"
    description = "Terminates processes started by background TERMINAL_COMMAND actions"
    action_types = ("STOP_BACKGROUND",)

    def __init__(self, processes: BackgroundProcesses | None = None) -> None:
        self.processes = processes or _SHARED

    async def execute(self, params: dict, context: ContextView) -> ExecutorOutput:
        p = self.parse_params(StopParams, params)
        pids = [p.pid] if p.pid is not None else self.processes.pids()

        stopped: dict[str, int | None] = {}
        output: dict[str, dict[str, str]] = {}
        for pid in pids:
            try:
                stopped[str(pid)] = await self.processes.stop(pid)
            except KeyError:
                raise ActionExecutionError(f"No background process with pid {pid}") from None
            except ProcessLookupError:
                stopped[str(pid)] = None
            if pid in self.processes.output:
                output[str(pid)] = self.processes.output.pop(pid)
        return ExecutorOutput(data={"stopped": stopped, "output": output})
