from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from shared.paths import default_trace_path


def _float_env(environ: Mapping[str, str], name: str, default: float | None) -> float | None:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    return value if value > 0 else None


@dataclass
class AgentConfig:
    executable: str
    args: list[str] = field(default_factory=list)
    cwd: str | Path | None = None
    env: dict[str, str] | None = None
    client_name: str = "agentlink"
    trace_path: Path | None = None
    request_timeout: float | None = None
    initialize_timeout: float | None = 30.0
    grace_period: float = 5.0
    queue_until_ready: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AgentConfig":
        environ = os.environ if environ is None else environ
        executable = environ.get("AGENTLINK_AGENT", "").strip()
        if not executable:
            raise ValueError("AGENTLINK_AGENT is not set")
        grace = _float_env(environ, "AGENTLINK_GRACE_PERIOD", 5.0)
        return cls(
            executable=executable,
            args=shlex.split(environ.get("AGENTLINK_AGENT_ARGS", "")),
            client_name=environ.get("AGENTLINK_CLIENT_NAME", "").strip() or "agentlink",
            trace_path=default_trace_path(environ),
            request_timeout=_float_env(environ, "AGENTLINK_REQUEST_TIMEOUT", None),
            grace_period=grace if grace is not None else 5.0,
        )
