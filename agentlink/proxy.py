from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any, Protocol

from agentlink.contracts import ContractTable, Direction, MethodContract, handler_name
from agentlink.models import ClientInfo, ExecuteRecipeParams, RecipeInfo, ServerInfo
from shared.dispatcher import Dispatcher


class Sender(Protocol):
    def request(self, name: str, params: Any = None, *, timeout: float | None = None) -> asyncio.Future: ...

    def notify(self, name: str, params: Any = None) -> None: ...


def _transform(source: asyncio.Future, fn: Callable[[Any], Any]) -> asyncio.Future:
    target = source.get_loop().create_future()

    def _copy(done: asyncio.Future) -> None:
        if target.done():
            return
        if done.cancelled():
            target.cancel()
            return
        exc = done.exception()
        if exc is not None:
            target.set_exception(exc)
            return
        try:
            target.set_result(fn(done.result()))
        except Exception as err:  # noqa: BLE001
            target.set_exception(err)

    def _propagate_cancel(out: asyncio.Future) -> None:
        if out.cancelled() and not source.done():
            source.cancel()

    source.add_done_callback(_copy)
    target.add_done_callback(_propagate_cancel)
    return target


class RemoteProxy:
    """Turns outbound contract calls into dispatcher traffic. One attempt, no retry."""

    def __init__(self, dispatcher: Dispatcher, contracts: ContractTable):
        self.dispatcher = dispatcher
        self.contracts = contracts

    def contract(self, name: str, direction: Direction) -> MethodContract:
        contract = self.contracts.get(name)
        if contract is None:
            raise KeyError(f"unknown method: {name}")
        if contract.direction is not direction:
            raise TypeError(f"{name} is an {contract.direction.value} method")
        return contract

    def request(self, name: str, params: Any = None, *, timeout: float | None = None) -> asyncio.Future:
        contract = self.contract(name, Direction.OUTBOUND_REQUEST)
        raw = self.dispatcher.send_request(name, contract.dump_params(params), timeout=timeout)
        return _transform(raw, contract.load_result)

    def notify(self, name: str, params: Any = None) -> None:
        contract = self.contract(name, Direction.OUTBOUND_NOTIFICATION)
        self.dispatcher.send_notification(name, contract.dump_params(params))


class AgentServer:
    """Typed facade over the agent's side of the protocol."""

    def __init__(self, sender: Sender):
        self._sender = sender

    def initialize(self, client_info: ClientInfo, *, timeout: float | None = None) -> "asyncio.Future[ServerInfo]":
        return self._sender.request("initialize", client_info, timeout=timeout)

    def shutdown(self, *, timeout: float | None = None) -> "asyncio.Future[None]":
        return self._sender.request("shutdown", timeout=timeout)

    def recipes_list(self, *, timeout: float | None = None) -> "asyncio.Future[list[RecipeInfo]]":
        return self._sender.request("recipes/list", timeout=timeout)

    def recipes_execute(self, params: ExecuteRecipeParams, *, timeout: float | None = None) -> "asyncio.Future[None]":
        return self._sender.request("recipes/execute", params, timeout=timeout)

    def initialized(self) -> None:
        self._sender.notify("initialized")

    def exit(self) -> None:
        self._sender.notify("exit")


def _adapt(contract: MethodContract, fn: Callable[..., Any]) -> Callable[..., Any]:
    if inspect.iscoroutinefunction(fn):

        async def async_handler(*args: Any) -> Any:
            return contract.dump_result(await fn(*contract.load_params(*args)))

        return async_handler

    def handler(*args: Any) -> Any:
        return contract.dump_result(fn(*contract.load_params(*args)))

    return handler


def bind_handlers(contracts: ContractTable, target: object) -> dict[str, Callable[..., Any]]:
    """Map each inbound contract onto ``target``'s snake_case method of the same name."""
    handlers: dict[str, Callable[..., Any]] = {}
    for contract in contracts.inbound():
        fn = getattr(target, handler_name(contract.name), None)
        if callable(fn):
            handlers[contract.name] = _adapt(contract, fn)
    return handlers
