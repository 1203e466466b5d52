from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from shared.errors import AgentLinkError, TransportError, WorkerStartError

logger = logging.getLogger(__name__)

ExitCallback = Callable[..., None]
KILL_WAIT = 1.0


@dataclass(slots=True)
class WorkerProcess:
    pid: int
    stdin: asyncio.StreamWriter
    stdout: asyncio.StreamReader
    returncode: int | None = None

    @property
    def alive(self) -> bool:
        return self.returncode is None


class ProcessSupervisor:
    """Owns one agent child process: spawn, stdio, exit monitoring, teardown.

    stderr is inherited so the agent's diagnostics reach the host's stderr
    untouched. ``on_exit(returncode, expected=...)`` fires once when the
    process ends; ``expected`` is true only for exits requested through
    :meth:`terminate`.
    """

    def __init__(
        self,
        executable: str,
        args: Sequence[str] = (),
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        grace_period: float = 5.0,
        on_exit: ExitCallback | None = None,
    ):
        self.executable = executable
        self.args = list(args)
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.grace_period = grace_period
        self.on_exit = on_exit
        self.proc: asyncio.subprocess.Process | None = None
        self.worker: WorkerProcess | None = None
        self._monitor: asyncio.Task | None = None
        self._terminating = False

    @property
    def alive(self) -> bool:
        return self.proc is not None and self.proc.returncode is None

    @property
    def pid(self) -> int | None:
        return self.proc.pid if self.proc else None

    @property
    def returncode(self) -> int | None:
        return self.proc.returncode if self.proc else None

    async def start(self) -> WorkerProcess:
        if self.worker is not None and self.alive:
            return self.worker
        try:
            self.proc = await asyncio.create_subprocess_exec(
                self.executable,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
                cwd=self.cwd,
                env=self.env,
            )
        except OSError as exc:
            raise WorkerStartError(f"cannot start agent {self.executable!r}: {exc}") from exc
        assert self.proc.stdin and self.proc.stdout
        self._terminating = False
        self.worker = WorkerProcess(pid=self.proc.pid, stdin=self.proc.stdin, stdout=self.proc.stdout)
        self._monitor = asyncio.create_task(self._watch(self.proc, self.worker))
        logger.debug("started agent %s (pid %s)", self.executable, self.proc.pid)
        return self.worker

    async def _watch(self, proc: asyncio.subprocess.Process, worker: WorkerProcess) -> None:
        code = await proc.wait()
        worker.returncode = code
        expected = self._terminating
        if expected:
            logger.debug("agent pid %s exited with code %s", proc.pid, code)
        else:
            logger.warning("agent pid %s exited unexpectedly with code %s", proc.pid, code)
        if self.on_exit is not None:
            self.on_exit(code, expected=expected)

    async def write(self, data: bytes) -> None:
        proc = self.proc
        if proc is None or proc.stdin is None or proc.stdin.is_closing():
            raise TransportError("agent stdin is not open")
        try:
            proc.stdin.write(data)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise TransportError(f"write to agent failed: {exc}") from exc

    async def terminate(self, graceful: Awaitable[object] | None = None) -> int | None:
        """Stop the agent, letting ``graceful`` (the goodbye handshake) run first.

        The whole sequence is bounded by ``grace_period`` before the process
        is signalled and finally killed.
        """
        proc = self.proc
        if proc is None:
            if asyncio.iscoroutine(graceful):
                graceful.close()
            return None
        self._terminating = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.grace_period

        if graceful is not None:
            if proc.returncode is None:
                try:
                    await asyncio.wait_for(graceful, self.grace_period)
                except asyncio.TimeoutError:
                    logger.warning("agent did not finish shutdown handshake within %.1fs", self.grace_period)
                except AgentLinkError as exc:
                    logger.warning("shutdown handshake failed: %s", exc)
            elif asyncio.iscoroutine(graceful):
                graceful.close()

        if proc.returncode is None and proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()

        if proc.returncode is None:
            try:
                await asyncio.wait_for(proc.wait(), max(deadline - loop.time(), 0.05))
            except asyncio.TimeoutError:
                logger.warning("agent pid %s still alive after %.1fs, terminating", proc.pid, self.grace_period)
                with contextlib.suppress(ProcessLookupError):
                    proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), KILL_WAIT)
                except asyncio.TimeoutError:
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    await proc.wait()

        if self._monitor is not None:
            await self._monitor
        return proc.returncode
