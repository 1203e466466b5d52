"""Content-Length framing of JSON-RPC messages.

Every message on the wire is a header block followed by a UTF-8 JSON body::

    Content-Length: <byte-count>\\r\\n
    \\r\\n
    <JSON body>

This is the base protocol shared with LSP and DAP.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Union

from shared.errors import ProtocolError, TransportError
from shared.protocol import Message, parse_message, to_wire

HEADER_TERMINATOR = b"\r\n\r\n"
MAX_HEADER_BYTES = 8192
DEFAULT_CHUNK_SIZE = 65536

Decoded = Union[Message, ProtocolError]


def encode_body(message: Message) -> bytes:
    return json.dumps(to_wire(message), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def encode_frame(message: Message) -> bytes:
    body = encode_body(message)
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


def _parse_header(block: bytes) -> int | ProtocolError:
    """Content-Length of a terminated header block, or the reason it has none.

    Lines without a colon and unknown headers are skipped.
    """
    try:
        text = block.decode("ascii")
    except UnicodeDecodeError as exc:
        raise TransportError("non-ascii bytes in message header") from exc

    raw = None
    for line in text.split("\r\n"):
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "content-length":
            raw = value.strip()

    if raw is None:
        return ProtocolError("missing Content-Length header")
    try:
        content_length = int(raw)
    except ValueError:
        return ProtocolError(f"invalid Content-Length: {raw!r}")
    if content_length < 0:
        return ProtocolError(f"negative Content-Length: {content_length}")
    return content_length


def decode_body(body: bytes) -> Decoded:
    try:
        obj = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        return ProtocolError(f"malformed message body: {exc}")
    try:
        return parse_message(obj)
    except ProtocolError as exc:
        return exc


class FrameDecoder:
    """Incremental decoder; feed it raw chunks in the order they were read."""

    def __init__(self, *, max_header_bytes: int = MAX_HEADER_BYTES):
        self.max_header_bytes = max_header_bytes
        self._buffer = bytearray()
        self._content_length: int | None = None

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def at_boundary(self) -> bool:
        return self._content_length is None and not self._buffer

    def feed(self, data: bytes) -> list[Decoded]:
        self._buffer.extend(data)
        out: list[Decoded] = []
        while True:
            if self._content_length is None:
                end = self._buffer.find(HEADER_TERMINATOR)
                if end < 0:
                    if len(self._buffer) > self.max_header_bytes:
                        raise TransportError(f"no header terminator within {self.max_header_bytes} bytes")
                    return out
                block = bytes(self._buffer[:end])
                del self._buffer[: end + len(HEADER_TERMINATOR)]
                length = _parse_header(block)
                if isinstance(length, ProtocolError):
                    out.append(length)
                    continue
                self._content_length = length

            if len(self._buffer) < self._content_length:
                return out
            body = bytes(self._buffer[: self._content_length])
            del self._buffer[: self._content_length]
            self._content_length = None
            out.append(decode_body(body))


async def read_messages(reader, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[Decoded]:
    decoder = FrameDecoder()
    while True:
        try:
            chunk = await reader.read(chunk_size)
        except (ConnectionResetError, BrokenPipeError) as exc:
            raise TransportError(f"read failed: {exc}") from exc
        if not chunk:
            if not decoder.at_boundary():
                raise TransportError(f"stream closed with {decoder.pending_bytes} bytes of a partial message")
            return
        for item in decoder.feed(chunk):
            yield item
