from __future__ import annotations

import asyncio
import functools
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from shared.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    ApplicationError,
    ConnectionClosedError,
    ProtocolError,
    RequestTimeoutError,
    TransportError,
)
from shared.framing import encode_frame, read_messages
from shared.protocol import (
    Message,
    Notification,
    Request,
    Response,
    error_response,
    ok_response,
    to_wire,
)
from shared.trace import RECEIVE, SEND, TraceSink

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]
Writer = Callable[[bytes], Awaitable[None]]


@dataclass(slots=True)
class PendingCall:
    id: int
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None
    abandoned: bool = field(default=False)


class Dispatcher:
    """Correlates outbound requests with responses and serves inbound calls.

    Outbound frames go through a single writer task in the order they were
    submitted. Inbound requests run as their own tasks (coroutine handlers) or
    on a thread pool (plain handlers), so the reader loop never waits on them.
    """

    def __init__(
        self,
        write: Writer,
        *,
        handlers: Mapping[str, Handler] | None = None,
        executor: ThreadPoolExecutor | None = None,
        default_timeout: float | None = None,
        trace: TraceSink | None = None,
    ):
        self._write = write
        self._handlers: dict[str, Handler] = dict(handlers or {})
        self._executor = executor
        self._owns_executor = executor is None
        self.default_timeout = default_timeout
        self._trace = trace or TraceSink()
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingCall] = {}
        self._outbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None
        self._serving: set[asyncio.Task] = set()
        self._closed = False
        self._close_error: BaseException | None = None
        self.protocol_errors = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, call_id: int) -> bool:
        return call_id in self._pending

    def set_handlers(self, handlers: Mapping[str, Handler]) -> None:
        self._handlers = dict(handlers)

    # outbound

    def _closed_error(self) -> ConnectionClosedError:
        exc = ConnectionClosedError("connection to agent is closed")
        exc.__cause__ = self._close_error
        return exc

    def _enqueue(self, message: Message) -> None:
        frame = encode_frame(message)
        self._trace.record(SEND, to_wire(message))
        if self._writer_task is None:
            self._writer_task = asyncio.get_running_loop().create_task(self._drain_outbox())
        self._outbox.put_nowait(frame)

    async def _drain_outbox(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self._write(frame)
            except TransportError as exc:
                self.close(exc)
                return
            except OSError as exc:
                self.close(TransportError(f"write failed: {exc}"))
                return
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        if self._closed:
            return
        await self._outbox.join()

    def send_request(self, method: str, params: Any = None, *, timeout: float | None = None) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        if self._closed:
            future.set_exception(self._closed_error())
            return future

        call_id = next(self._ids)
        self._enqueue(Request(id=call_id, method=method, params=params))
        call = PendingCall(id=call_id, method=method, future=future)
        self._pending[call_id] = call

        deadline = timeout if timeout is not None else self.default_timeout
        if deadline is not None:
            call.timer = loop.call_later(deadline, self._expire, call_id)
        future.add_done_callback(functools.partial(self._on_future_done, call_id))
        return future

    def send_notification(self, method: str, params: Any = None) -> None:
        if self._closed:
            raise self._closed_error()
        self._enqueue(Notification(method=method, params=params))

    def _expire(self, call_id: int) -> None:
        call = self._pending.get(call_id)
        if call is None or call.future.done():
            return
        call.abandoned = True
        call.future.set_exception(RequestTimeoutError(f"request {call_id} ({call.method}) timed out"))

    def _on_future_done(self, call_id: int, future: asyncio.Future) -> None:
        if not future.cancelled():
            return
        call = self._pending.get(call_id)
        if call is not None:
            call.abandoned = True
            if call.timer is not None:
                call.timer.cancel()

    # inbound

    def on_message(self, message: Message) -> None:
        if isinstance(message, Response):
            self._on_response(message)
        elif isinstance(message, Request):
            self._spawn(self._serve_request(message))
        else:
            self._spawn(self._serve_notification(message))

    def _protocol_violation(self, exc: ProtocolError) -> None:
        self.protocol_errors += 1
        logger.error("protocol error, message discarded: %s", exc)

    def _on_response(self, response: Response) -> None:
        call = self._pending.pop(response.id, None) if isinstance(response.id, int) else None
        if call is None:
            self._protocol_violation(ProtocolError(f"response for unknown request id {response.id!r}"))
            return
        if call.timer is not None:
            call.timer.cancel()
        if call.abandoned or call.future.done():
            logger.debug("discarding late response for request %s (%s)", call.id, call.method)
            return
        if response.error is not None:
            err = response.error
            call.future.set_exception(ApplicationError(err.code, err.message, err.data))
        else:
            call.future.set_result(response.result)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._serving.add(task)
        task.add_done_callback(self._serving.discard)

    async def _invoke(self, handler: Handler, params: Any) -> Any:
        args = () if params is None else (params,)
        try:
            inspect.signature(handler).bind(*args)
        except TypeError as exc:
            raise ApplicationError(INVALID_PARAMS, f"invalid params: {exc}") from exc
        except ValueError:
            pass
        if inspect.iscoroutinefunction(handler):
            return await handler(*args)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(thread_name_prefix="agentlink-handler")
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(self._executor, functools.partial(handler, *args))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _serve_request(self, request: Request) -> None:
        handler = self._handlers.get(request.method)
        if handler is None:
            logger.error("no local handler for request %r", request.method)
            response = error_response(request.id, METHOD_NOT_FOUND, f"method not found: {request.method}")
        else:
            try:
                response = ok_response(request.id, await self._invoke(handler, request.params))
            except ApplicationError as exc:
                response = error_response(request.id, exc.code, exc.message, exc.data)
            except Exception as exc:  # noqa: BLE001
                logger.error("handler for %r failed", request.method, exc_info=True)
                response = error_response(request.id, INTERNAL_ERROR, f"{exc.__class__.__name__}: {exc}")
        if self._closed:
            return
        try:
            self._enqueue(response)
        except (TypeError, ValueError) as exc:
            logger.error("result of %r is not JSON serializable: %s", request.method, exc)
            self._enqueue(error_response(request.id, INTERNAL_ERROR, f"unserializable result: {exc}"))

    async def _serve_notification(self, notification: Notification) -> None:
        handler = self._handlers.get(notification.method)
        if handler is None:
            logger.info("ignoring notification %r without local handler", notification.method)
            return
        try:
            await self._invoke(handler, notification.params)
        except Exception:  # noqa: BLE001
            logger.error("notification handler for %r failed", notification.method, exc_info=True)

    async def run(self, reader) -> BaseException:
        """Reader loop: decode frames from ``reader`` until EOF, then close.

        Returns the error the dispatcher was closed with.
        """
        error: BaseException
        try:
            async for item in read_messages(reader):
                if isinstance(item, ProtocolError):
                    self._protocol_violation(item)
                    continue
                self._trace.record(RECEIVE, to_wire(item))
                self.on_message(item)
            error = TransportError("agent closed its output stream")
        except TransportError as exc:
            logger.error("transport failure: %s", exc)
            error = exc
        except asyncio.CancelledError:
            self.close(ConnectionClosedError("reader loop cancelled"))
            raise
        self.close(error)
        return self._close_error or error

    def close(self, error: BaseException | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._close_error = error
        pending, self._pending = self._pending, {}
        for call in pending.values():
            if call.timer is not None:
                call.timer.cancel()
            if not call.future.done():
                call.future.set_exception(self._closed_error())
        for task in list(self._serving):
            task.cancel()
        if self._writer_task is not None and self._writer_task is not asyncio.current_task():
            self._writer_task.cancel()
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        if pending:
            logger.debug("failed %d pending calls: %s", len(pending), error)
