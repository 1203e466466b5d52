from __future__ import annotations

import builtins
from typing import Any

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class AgentLinkError(RuntimeError):
    """Base class for every failure raised by the agent link."""


class TransportError(AgentLinkError):
    """Raised when the byte stream to the agent is closed, broken or corrupted."""


class ConnectionClosedError(TransportError):
    """Raised into pending and new calls once the connection has gone away."""


class WorkerStartError(TransportError):
    """Raised when the agent executable cannot be spawned."""


class ProtocolError(AgentLinkError):
    """Raised when a single message violates the JSON-RPC contract."""


class ConnectionNotReadyError(AgentLinkError):
    """Raised for outbound calls issued while the connection is not ready."""


class ApplicationError(AgentLinkError):
    """Error object carried by a JSON-RPC response."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class RequestTimeoutError(AgentLinkError, builtins.TimeoutError):
    """Raised when a request deadline elapses before its response arrives."""
