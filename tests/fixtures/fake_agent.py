"""Stand-in agent process for end-to-end tests.

Speaks Content-Length framed JSON-RPC on stdin/stdout and implements the
lifecycle methods plus a handful of ``test/*`` methods that let tests steer
its behaviour.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shared.framing import FrameDecoder, encode_frame  # noqa: E402
from shared.protocol import Notification, Request, Response, error_response, ok_response  # noqa: E402


class FakeAgent:
    def __init__(self, opts):
        self.opts = opts
        self.history: list[str] = []
        self.deferred: list[int | str] = []
        self.callbacks: dict[str, tuple] = {}
        self.next_id = 0

    def send(self, message) -> None:
        sys.stdout.buffer.write(encode_frame(message))
        sys.stdout.buffer.flush()

    def send_raw(self, body: bytes) -> None:
        sys.stdout.buffer.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body)
        sys.stdout.buffer.flush()

    def call_host(self, method: str, params, origin) -> None:
        self.next_id += 1
        call_id = f"agent-{self.next_id}"
        self.callbacks[call_id] = origin
        self.send(Request(id=call_id, method=method, params=params))

    def on_request(self, req: Request) -> None:
        method, params = req.method, req.params
        if method == "initialize":
            if self.opts.hang_initialize:
                return
            if self.opts.fail_initialize:
                self.send(error_response(req.id, -32000, "initialize refused"))
                return
            sys.stderr.write(f"Beginning handshake with client {params.get('name')}\n")
            self.send(ok_response(req.id, {"name": self.opts.name}))
        elif method == "shutdown":
            self.send(ok_response(req.id, None))
        elif method == "recipes/list":
            self.send(ok_response(req.id, [{"id": "chat-question", "title": "Chat Question"}]))
        elif method == "recipes/execute":
            self.call_host("intent/isEditorContextRequired", params["humanChatInput"], ("execute", req.id, params))
        elif method == "test/history":
            self.send(ok_response(req.id, list(self.history)))
        elif method == "test/echo":
            self.send(ok_response(req.id, params))
        elif method == "test/fail":
            self.send(error_response(req.id, 42, "requested failure", {"why": "test"}))
        elif method == "test/defer":
            self.deferred.append(req.id)
        elif method == "test/release":
            for call_id in reversed(self.deferred):
                self.send(ok_response(call_id, {"id": call_id}))
            self.deferred.clear()
            self.send(ok_response(req.id, None))
        elif method == "test/crash":
            os._exit(3)
        elif method == "test/bogusResponse":
            self.send(ok_response(987654, "nobody asked"))
            self.send(ok_response(req.id, "after-bogus"))
        elif method == "test/garbage":
            self.send_raw(b"{not json")
            self.send(ok_response(req.id, "after-garbage"))
        elif method == "test/notify":
            self.send(Notification(method=params["method"], params=params.get("params")))
            self.send(ok_response(req.id, None))
        elif method == "test/callback":
            self.call_host(params["method"], params.get("params"), ("callback", req.id, None))
        else:
            self.send(error_response(req.id, -32601, f"method not found: {method}"))

    def on_response(self, resp: Response) -> None:
        origin = self.callbacks.pop(resp.id, None)
        if origin is None:
            return
        kind, req_id, params = origin
        wire = {"result": resp.result} if resp.error is None else {"error": {"code": resp.error.code, "message": resp.error.message}}
        if kind == "callback":
            self.send(ok_response(req_id, wire))
            return
        transcript = {"messages": [{"speaker": "human", "text": params["humanChatInput"]}], "editorContext": wire.get("result")}
        self.send(Notification(method="chat/updateTranscript", params=transcript))
        self.send(ok_response(req_id, None))

    def run(self) -> bool:
        """Serve until stdin closes (False) or an exit notification arrives (True)."""
        decoder = FrameDecoder()
        fd = sys.stdin.fileno()
        while True:
            chunk = os.read(fd, 65536)
            if not chunk:
                return False
            for msg in decoder.feed(chunk):
                if isinstance(msg, Response):
                    self.on_response(msg)
                    continue
                if not isinstance(msg, (Request, Notification)):
                    continue
                self.history.append(msg.method)
                if isinstance(msg, Request):
                    self.on_request(msg)
                elif msg.method == "exit" and not self.opts.ignore_exit:
                    return True


def main() -> int:
    p = argparse.ArgumentParser()
    p.add_argument("--name", default="fake-agent")
    p.add_argument("--ignore-exit", action="store_true", help="keep serving after the exit notification")
    p.add_argument("--ignore-eof", action="store_true", help="linger after stdin closes instead of exiting")
    p.add_argument("--fail-initialize", action="store_true")
    p.add_argument("--hang-initialize", action="store_true")
    opts = p.parse_args()
    exited = FakeAgent(opts).run()
    while not exited and opts.ignore_eof:
        time.sleep(1)
    return 0


if __name__ == "__main__":
    sys.exit(main())
