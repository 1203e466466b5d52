from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

logger = logging.getLogger(__name__)

SEND = "send"
RECEIVE = "receive"


class TraceSink:
    """Best-effort JSONL record of every message crossing the pipe.

    A sink that failed to open, or failed to write once, turns into a no-op.
    """

    def __init__(self, fh: IO[str] | None = None, path: Path | None = None):
        self._fh = fh
        self.path = path

    @classmethod
    def open(cls, path: str | Path | None) -> "TraceSink":
        if path is None:
            return cls()
        p = Path(path).expanduser()
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            fh = p.open("w", encoding="utf-8")
        except OSError as exc:
            logger.warning("trace disabled, cannot open %s: %s", p, exc)
            return cls()
        return cls(fh, p)

    @property
    def enabled(self) -> bool:
        return self._fh is not None

    def record(self, direction: str, message: dict[str, Any]) -> None:
        if self._fh is None:
            return
        row = {"ts": datetime.now(timezone.utc).isoformat(), "direction": direction, "message": message}
        try:
            self._fh.write(json.dumps(row, ensure_ascii=False, default=str) + "\n")
            self._fh.flush()
        except (OSError, ValueError) as exc:
            logger.warning("trace disabled after write failure on %s: %s", self.path, exc)
            self._close_quietly()

    def _close_quietly(self) -> None:
        fh, self._fh = self._fh, None
        if fh is None:
            return
        try:
            fh.close()
        except OSError:
            pass

    def close(self) -> None:
        self._close_quietly()
