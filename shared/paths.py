from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path


def home_root(environ: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if environ is None else environ
    home = environ.get("HOME")
    return Path(home).expanduser() if home else Path.home()


def default_trace_path(environ: Mapping[str, str] | None = None) -> Path | None:
    environ = os.environ if environ is None else environ
    override = environ.get("AGENTLINK_TRACE")
    if override is not None:
        return Path(override).expanduser() if override.strip() else None
    return home_root(environ) / ".sourcegraph" / "agent-jsonrpc.json"
