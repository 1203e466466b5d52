import json
import sys
from pathlib import Path

from services.agent_ctl.ctl import _config, build_parser, main

FAKE_AGENT = Path(__file__).resolve().parent / "fixtures" / "fake_agent.py"


def _agent_flags(tmp_path):
    return ["--agent", sys.executable, "--arg", str(FAKE_AGENT), "--trace", str(tmp_path / "trace.jsonl")]


def test_execute_command_parses():
    parser = build_parser()
    args = parser.parse_args(["execute", "chat-question", "Hello!", "--workspace-root", "/work"])
    assert args.cmd == "execute"
    assert args.recipe == "chat-question"
    assert args.text == "Hello!"
    assert args.workspace_root == "/work"


def test_unknown_command_rejected():
    parser = build_parser()
    try:
        parser.parse_args(["reinstall"])
        assert False, "expected SystemExit"
    except SystemExit:
        pass


def test_global_flags_build_config(tmp_path):
    parser = build_parser()
    args = parser.parse_args([*_agent_flags(tmp_path), "--arg=--name", "--arg", "x", "--timeout", "2.5", "--client-name", "vim", "info"])
    cfg = _config(args)
    assert cfg.executable == sys.executable
    assert cfg.args == [str(FAKE_AGENT), "--name", "x"]
    assert cfg.request_timeout == 2.5
    assert cfg.client_name == "vim"
    assert cfg.trace_path == tmp_path / "trace.jsonl"


def test_empty_trace_flag_disables_tracing(tmp_path):
    args = build_parser().parse_args(["--agent", "agent", "--trace", "", "--timeout", "0", "info"])
    cfg = _config(args)
    assert cfg.trace_path is None
    assert cfg.request_timeout is None


def test_missing_agent_reports_error(monkeypatch, capsys):
    monkeypatch.delenv("AGENTLINK_AGENT", raising=False)
    assert main(["info"]) == 1
    assert "AGENTLINK_AGENT" in capsys.readouterr().err


def test_info_prints_agent_name(tmp_path, capsys):
    assert main([*_agent_flags(tmp_path), "info"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["name"] == "fake-agent"
    assert isinstance(out["pid"], int)


def test_recipes_lists_agent_recipes(tmp_path, capsys):
    assert main([*_agent_flags(tmp_path), "recipes"]) == 0
    assert capsys.readouterr().out.splitlines() == ["chat-question\tChat Question"]


def test_unspawnable_agent_exits_nonzero(tmp_path, capsys):
    assert main(["--agent", str(tmp_path / "nope"), "--trace", "", "info"]) == 1
    assert "agent-ctl:" in capsys.readouterr().err
