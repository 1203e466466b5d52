"""The agent session: one supervised agent process and its JSON-RPC link.

Lifecycle::

    DISCONNECTED -> CONNECTING -> AWAITING_INITIALIZE_RESULT -> READY
                 -> SHUTTING_DOWN -> TERMINATED

Any state collapses straight to TERMINATED when the agent process dies or the
transport fails; every call still pending at that point fails with
:class:`~shared.errors.ConnectionClosedError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from agentlink.client import AgentClient
from agentlink.config import AgentConfig
from agentlink.contracts import AGENT_PROTOCOL, ContractTable, Direction
from agentlink.models import ClientInfo, ServerInfo
from agentlink.proxy import AgentServer, RemoteProxy, bind_handlers
from shared.dispatcher import Dispatcher
from shared.errors import AgentLinkError, ConnectionClosedError, ConnectionNotReadyError, TransportError
from shared.proc_rpc import ProcessSupervisor
from shared.trace import TraceSink

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_INITIALIZE_RESULT = "awaiting-initialize-result"
    READY = "ready"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


_ORDER = {state: rank for rank, state in enumerate(ConnectionState)}
STARTING_STATES = frozenset({ConnectionState.CONNECTING, ConnectionState.AWAITING_INITIALIZE_RESULT})
LIVE_STATES = STARTING_STATES | {ConnectionState.READY}

StateListener = Callable[[ConnectionState, ConnectionState], None]
FailureListener = Callable[[BaseException], None]


class AgentConnection:
    def __init__(
        self,
        config: AgentConfig,
        client: AgentClient | None = None,
        *,
        contracts: ContractTable = AGENT_PROTOCOL,
    ):
        self.config = config
        self.client = client or AgentClient()
        self.contracts = contracts
        self._state = ConnectionState.DISCONNECTED
        self._trace = TraceSink.open(config.trace_path)
        self.supervisor = ProcessSupervisor(
            config.executable,
            config.args,
            cwd=config.cwd,
            env=config.env,
            grace_period=config.grace_period,
            on_exit=self._on_process_exit,
        )
        self.dispatcher = Dispatcher(
            self.supervisor.write,
            handlers=bind_handlers(contracts, self.client),
            default_timeout=config.request_timeout,
            trace=self._trace,
        )
        self._proxy = RemoteProxy(self.dispatcher, contracts)
        self._handshake = AgentServer(self._proxy)
        self.server = AgentServer(self)
        self.server_info: ServerInfo | None = None
        self.failure: BaseException | None = None
        self._reader_task: asyncio.Task | None = None
        self._teardown: asyncio.Task | None = None
        self._deferred: set[asyncio.Task] = set()
        self._settled = asyncio.Event()
        self._terminated = asyncio.Event()
        self._state_listeners: list[StateListener] = []
        self._failure_listeners: list[FailureListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def trace(self) -> TraceSink:
        return self._trace

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def on_failure(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    def _transition(self, new: ConnectionState) -> None:
        old = self._state
        if new is old:
            return
        if old is ConnectionState.TERMINATED or (new is not ConnectionState.TERMINATED and _ORDER[new] < _ORDER[old]):
            raise RuntimeError(f"illegal connection state transition {old.value} -> {new.value}")
        self._state = new
        logger.debug("agent connection %s -> %s", old.value, new.value)
        if new in (ConnectionState.READY, ConnectionState.TERMINATED):
            self._settled.set()
        if new is ConnectionState.TERMINATED:
            self._terminated.set()
        for listener in list(self._state_listeners):
            listener(old, new)

    # lifecycle

    async def start(self) -> ServerInfo:
        if self._state is ConnectionState.READY:
            assert self.server_info is not None
            return self.server_info
        if self._state in STARTING_STATES:
            await self._settled.wait()
            if self._state is not ConnectionState.READY:
                raise self._closed_error()
            assert self.server_info is not None
            return self.server_info
        if self._state is not ConnectionState.DISCONNECTED:
            raise ConnectionNotReadyError(f"connection is {self._state.value}; create a new one")

        self._transition(ConnectionState.CONNECTING)
        try:
            worker = await self.supervisor.start()
            self._reader_task = asyncio.create_task(self._read_loop(worker.stdout))
            self._transition(ConnectionState.AWAITING_INITIALIZE_RESULT)
            info = await self._handshake.initialize(
                ClientInfo(name=self.config.client_name),
                timeout=self.config.initialize_timeout,
            )
        except (AgentLinkError, asyncio.CancelledError) as exc:
            self._collapse(exc if isinstance(exc, AgentLinkError) else ConnectionClosedError("start cancelled"))
            await self._wait_teardown()
            raise

        if self._state is not ConnectionState.AWAITING_INITIALIZE_RESULT:
            raise self._closed_error()
        self.server_info = info
        self._handshake.initialized()
        self._transition(ConnectionState.READY)
        logger.debug("agent %s ready", info.name)
        return info

    async def shutdown(self) -> None:
        """shutdown request, exit notification, then process teardown."""
        if self._state is ConnectionState.SHUTTING_DOWN:
            await self._terminated.wait()
        elif self._state is ConnectionState.READY:
            self._transition(ConnectionState.SHUTTING_DOWN)
            await self.supervisor.terminate(graceful=self._goodbye())
            self._collapse(None)
        elif self._state is not ConnectionState.TERMINATED:
            self._collapse(None)
        await self._wait_teardown()

    async def _goodbye(self) -> None:
        await self._handshake.shutdown()
        self._handshake.exit()
        await self.dispatcher.flush()

    async def wait_terminated(self) -> None:
        await self._terminated.wait()

    async def _wait_teardown(self) -> None:
        if self._teardown is not None:
            await self._teardown

    async def _read_loop(self, stdout: asyncio.StreamReader) -> None:
        error = await self.dispatcher.run(stdout)
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        self._collapse(error)

    def _on_process_exit(self, returncode: int | None, *, expected: bool) -> None:
        if expected or self._state is ConnectionState.TERMINATED:
            return
        self._collapse(TransportError(f"agent exited unexpectedly with code {returncode}"))

    def _collapse(self, error: BaseException | None) -> None:
        if self._state is ConnectionState.TERMINATED:
            return
        if error is not None and self.failure is None:
            self.failure = error
        self.dispatcher.close(error)
        self._transition(ConnectionState.TERMINATED)
        if self._teardown is None:
            self._teardown = asyncio.get_running_loop().create_task(self._release())
        if error is not None:
            for listener in list(self._failure_listeners):
                listener(error)

    async def _release(self) -> None:
        try:
            if self.supervisor.proc is not None:
                await self.supervisor.terminate()
        finally:
            reader = self._reader_task
            if reader is not None and not reader.done() and reader is not asyncio.current_task():
                reader.cancel()
            for task in list(self._deferred):
                task.cancel()
            self._trace.close()

    # application calls

    def _closed_error(self) -> ConnectionClosedError:
        exc = ConnectionClosedError("agent connection terminated")
        exc.__cause__ = self.failure
        return exc

    def _not_ready(self, name: str) -> ConnectionNotReadyError:
        return ConnectionNotReadyError(f"cannot call {name}: connection is {self._state.value}")

    def _queueing(self) -> bool:
        return self.config.queue_until_ready and self._state in STARTING_STATES

    def request(self, name: str, params: Any = None, *, timeout: float | None = None) -> asyncio.Future:
        if self._state is ConnectionState.READY:
            return self._proxy.request(name, params, timeout=timeout)
        if self._queueing():
            self._proxy.contract(name, Direction.OUTBOUND_REQUEST).dump_params(params)
            return asyncio.ensure_future(self._request_when_ready(name, params, timeout))
        future = asyncio.get_running_loop().create_future()
        future.set_exception(self._not_ready(name))
        return future

    async def _request_when_ready(self, name: str, params: Any, timeout: float | None) -> Any:
        await self._settled.wait()
        if self._state is not ConnectionState.READY:
            raise self._not_ready(name)
        return await self._proxy.request(name, params, timeout=timeout)

    def notify(self, name: str, params: Any = None) -> None:
        if self._state is ConnectionState.READY:
            self._proxy.notify(name, params)
            return
        if not self._queueing():
            raise self._not_ready(name)
        self._proxy.contract(name, Direction.OUTBOUND_NOTIFICATION).dump_params(params)
        task = asyncio.get_running_loop().create_task(self._notify_when_ready(name, params))
        self._deferred.add(task)
        task.add_done_callback(self._deferred.discard)

    async def _notify_when_ready(self, name: str, params: Any) -> None:
        await self._settled.wait()
        if self._state is ConnectionState.READY:
            self._proxy.notify(name, params)
        else:
            logger.warning("dropping queued notification %s: connection is %s", name, self._state.value)


class AgentRegistry:
    """Holds the one authoritative agent connection of the host process."""

    def __init__(self, factory: Callable[..., AgentConnection] = AgentConnection):
        self._factory = factory
        self._connection: AgentConnection | None = None
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    def current(self) -> AgentConnection | None:
        return self._connection

    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.state is ConnectionState.READY

    def _guard(self) -> asyncio.Lock:
        # one lock per event loop; the registry outlives any single asyncio.run
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def start(self, config: AgentConfig, client: AgentClient | None = None) -> AgentConnection:
        async with self._guard():
            conn = self._connection
            if conn is not None and conn.state in LIVE_STATES:
                return conn
            if conn is not None and conn.state is ConnectionState.SHUTTING_DOWN:
                await conn.wait_terminated()
            conn = self._factory(config, client)
            self._connection = conn
            await conn.start()
            return conn

    async def stop(self) -> None:
        conn = self._connection
        if conn is not None:
            await conn.shutdown()


_default_registry = AgentRegistry()


def default_registry() -> AgentRegistry:
    return _default_registry


def get_connection() -> AgentConnection | None:
    return _default_registry.current()
