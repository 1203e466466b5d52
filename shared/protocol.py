from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from shared.errors import ProtocolError

VERSION = "2.0"

RequestId = Union[int, str]


@dataclass(slots=True)
class Request:
    id: RequestId
    method: str
    params: Any = None


@dataclass(slots=True)
class Notification:
    method: str
    params: Any = None


@dataclass(slots=True)
class ResponseError:
    code: int
    message: str
    data: Any = None


@dataclass(slots=True)
class Response:
    id: RequestId | None
    result: Any = None
    error: ResponseError | None = None


Message = Union[Request, Response, Notification]


def ok_response(req_id: RequestId, result: Any) -> Response:
    return Response(id=req_id, result=result)


def error_response(req_id: RequestId | None, code: int, message: str, data: Any = None) -> Response:
    return Response(id=req_id, error=ResponseError(code=code, message=message, data=data))


def to_wire(message: Message) -> dict[str, Any]:
    out: dict[str, Any] = {"jsonrpc": VERSION}
    if isinstance(message, Response):
        out["id"] = message.id
        if message.error is not None:
            err: dict[str, Any] = {"code": message.error.code, "message": message.error.message}
            if message.error.data is not None:
                err["data"] = message.error.data
            out["error"] = err
        else:
            out["result"] = message.result
        return out
    if isinstance(message, Request):
        out["id"] = message.id
    out["method"] = message.method
    if message.params is not None:
        out["params"] = message.params
    return out


def _is_id(value: Any) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def parse_message(obj: Any) -> Message:
    if not isinstance(obj, dict):
        raise ProtocolError(f"message must be a JSON object, got {type(obj).__name__}")

    method = obj.get("method")
    if method is not None:
        if not isinstance(method, str):
            raise ProtocolError("method must be a string")
        if "id" in obj:
            if not _is_id(obj["id"]):
                raise ProtocolError(f"invalid request id: {obj['id']!r}")
            return Request(id=obj["id"], method=method, params=obj.get("params"))
        return Notification(method=method, params=obj.get("params"))

    if "id" not in obj:
        raise ProtocolError("message has neither method nor id")
    req_id = obj["id"]
    if req_id is not None and not _is_id(req_id):
        raise ProtocolError(f"invalid response id: {req_id!r}")

    if "error" in obj and obj["error"] is not None:
        raw = obj["error"]
        if not isinstance(raw, dict) or not isinstance(raw.get("code"), int) or not isinstance(raw.get("message"), str):
            raise ProtocolError(f"malformed error object in response {req_id!r}")
        return error_response(req_id, raw["code"], raw["message"], raw.get("data"))
    if "result" in obj:
        return ok_response(req_id, obj["result"])
    raise ProtocolError(f"response {req_id!r} carries neither result nor error")
