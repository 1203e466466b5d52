import json

from shared.paths import default_trace_path
from shared.trace import RECEIVE, SEND, TraceSink


def test_trace_writes_one_json_row_per_message(tmp_path):
    path = tmp_path / "nested" / "trace.jsonl"
    sink = TraceSink.open(path)
    assert sink.enabled
    sink.record(SEND, {"jsonrpc": "2.0", "id": 1, "method": "initialize"})
    sink.record(RECEIVE, {"jsonrpc": "2.0", "id": 1, "result": {"name": "agent"}})
    sink.close()

    rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [r["direction"] for r in rows] == ["send", "receive"]
    assert rows[1]["message"]["result"] == {"name": "agent"}
    assert all("ts" in r for r in rows)


def test_trace_truncates_previous_session(tmp_path):
    path = tmp_path / "trace.jsonl"
    path.write_text("stale\n", encoding="utf-8")
    sink = TraceSink.open(path)
    sink.record(SEND, {"method": "exit"})
    sink.close()
    assert "stale" not in path.read_text(encoding="utf-8")


def test_unopenable_trace_is_disabled(tmp_path):
    sink = TraceSink.open(tmp_path)
    assert not sink.enabled
    sink.record(SEND, {"method": "exit"})
    sink.close()


def test_write_failure_disables_trace(tmp_path):
    sink = TraceSink.open(tmp_path / "trace.jsonl")
    sink._fh.close()
    sink.record(SEND, {"method": "exit"})
    assert not sink.enabled


def test_no_path_means_no_trace():
    assert not TraceSink.open(None).enabled


def test_default_trace_path_under_home(tmp_path):
    assert default_trace_path({"HOME": str(tmp_path)}) == tmp_path / ".sourcegraph" / "agent-jsonrpc.json"


def test_trace_env_override(tmp_path):
    env = {"HOME": str(tmp_path), "AGENTLINK_TRACE": str(tmp_path / "custom.jsonl")}
    assert default_trace_path(env) == tmp_path / "custom.jsonl"
    assert default_trace_path({"HOME": str(tmp_path), "AGENTLINK_TRACE": ""}) is None
