import sys
from pathlib import Path

import pytest

# Add the repository root to sys.path so we can import 'agentlink', 'services' and 'shared'
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

FAKE_AGENT = Path(__file__).resolve().parent / "fixtures" / "fake_agent.py"


@pytest.fixture
def agent_config(tmp_path):
    from agentlink.config import AgentConfig

    def _make(*extra, **overrides):
        cfg = AgentConfig(
            executable=sys.executable,
            args=[str(FAKE_AGENT), *extra],
            trace_path=tmp_path / "trace.jsonl",
            initialize_timeout=10.0,
            grace_period=2.0,
        )
        for key, value in overrides.items():
            setattr(cfg, key, value)
        return cfg

    return _make
