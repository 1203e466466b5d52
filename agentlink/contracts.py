"""Method contracts of the agent protocol.

A contract names one JSON-RPC method, says which side initiates it and whether
a reply is expected, and carries the parameter and result shapes used to
validate payloads at the boundary. ``None`` as a shape means the method takes
no parameters (or returns nothing).

The session mirrors LSP:

    client: initialize request      -> server: initialize response
    client: initialized notification
    ... either side sends requests and notifications ...
    client: shutdown request        -> server: shutdown response
    client: exit notification
"""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from agentlink.models import (
    ActiveTextEditor,
    ActiveTextEditorSelection,
    ActiveTextEditorVisibleContent,
    ClientInfo,
    ExecuteRecipeParams,
    RecipeInfo,
    ReplaceSelectionParams,
    ReplaceSelectionResult,
    ServerInfo,
)
from shared.errors import INVALID_PARAMS, ApplicationError, ProtocolError


class Direction(str, Enum):
    OUTBOUND_REQUEST = "outbound-request"
    OUTBOUND_NOTIFICATION = "outbound-notification"
    INBOUND_REQUEST = "inbound-request"
    INBOUND_NOTIFICATION = "inbound-notification"


@functools.lru_cache(maxsize=None)
def _adapter(shape: Any) -> TypeAdapter:
    return TypeAdapter(shape)


def handler_name(method: str) -> str:
    """``editor/quickPick`` -> ``editor_quick_pick``."""
    return re.sub(r"(?<!^)(?<!_)(?=[A-Z])", "_", method.replace("/", "_")).lower()


@dataclass(frozen=True)
class MethodContract:
    name: str
    direction: Direction
    params: Any = None
    result: Any = None

    @property
    def is_request(self) -> bool:
        return self.direction in (Direction.OUTBOUND_REQUEST, Direction.INBOUND_REQUEST)

    @property
    def is_outbound(self) -> bool:
        return self.direction in (Direction.OUTBOUND_REQUEST, Direction.OUTBOUND_NOTIFICATION)

    def dump_params(self, value: Any) -> Any:
        """Validate caller params; raises ``TypeError`` or ``ValidationError``."""
        if self.params is None:
            if value is not None:
                raise TypeError(f"{self.name} takes no params")
            return None
        adapter = _adapter(self.params)
        return adapter.dump_python(adapter.validate_python(value), mode="json", by_alias=True)

    def load_result(self, value: Any) -> Any:
        if self.result is None:
            return None
        try:
            return _adapter(self.result).validate_python(value)
        except ValidationError as exc:
            raise ProtocolError(f"malformed result for {self.name}: {exc}") from exc

    def load_params(self, *args: Any) -> tuple:
        if self.params is None:
            return ()
        raw = args[0] if args else None
        try:
            return (_adapter(self.params).validate_python(raw),)
        except ValidationError as exc:
            raise ApplicationError(INVALID_PARAMS, f"invalid params for {self.name}: {exc}") from exc

    def dump_result(self, value: Any) -> Any:
        if self.result is None:
            return None
        adapter = _adapter(self.result)
        return adapter.dump_python(adapter.validate_python(value), mode="json", by_alias=True)


class ContractTable(Mapping[str, MethodContract]):
    def __init__(self, contracts: Iterable[MethodContract]):
        table: dict[str, MethodContract] = {}
        for contract in contracts:
            if contract.name in table:
                raise ValueError(f"duplicate method contract: {contract.name}")
            table[contract.name] = contract
        self._table = MappingProxyType(table)

    def __getitem__(self, name: str) -> MethodContract:
        return self._table[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def outbound(self) -> list[MethodContract]:
        return [c for c in self._table.values() if c.is_outbound]

    def inbound(self) -> list[MethodContract]:
        return [c for c in self._table.values() if not c.is_outbound]


_REQ = Direction.OUTBOUND_REQUEST
_NOTE = Direction.OUTBOUND_NOTIFICATION
_IN_REQ = Direction.INBOUND_REQUEST
_IN_NOTE = Direction.INBOUND_NOTIFICATION

AGENT_PROTOCOL = ContractTable(
    [
        # host -> agent
        MethodContract("initialize", _REQ, ClientInfo, ServerInfo),
        MethodContract("shutdown", _REQ),
        MethodContract("recipes/list", _REQ, None, list[RecipeInfo]),
        MethodContract("recipes/execute", _REQ, ExecuteRecipeParams),
        MethodContract("initialized", _NOTE),
        MethodContract("exit", _NOTE),
        # agent -> host
        MethodContract("editor/quickPick", _IN_REQ, list[str], Optional[str]),
        MethodContract("editor/prompt", _IN_REQ, str, Optional[str]),
        MethodContract("editor/active", _IN_REQ, None, Optional[ActiveTextEditor]),
        MethodContract("editor/selection", _IN_REQ, None, Optional[ActiveTextEditorSelection]),
        MethodContract("editor/selectionOrEntireFile", _IN_REQ, None, Optional[ActiveTextEditorSelection]),
        MethodContract("editor/visibleContent", _IN_REQ, None, Optional[ActiveTextEditorVisibleContent]),
        MethodContract("intent/isCodebaseContextRequired", _IN_REQ, str, bool),
        MethodContract("intent/isEditorContextRequired", _IN_REQ, str, bool),
        MethodContract("editor/replaceSelection", _IN_REQ, ReplaceSelectionParams, ReplaceSelectionResult),
        MethodContract("editor/warning", _IN_NOTE, str),
        MethodContract("chat/updateMessageInProgress", _IN_NOTE, Optional[Any]),
        MethodContract("chat/updateTranscript", _IN_NOTE, Any),
    ]
)
