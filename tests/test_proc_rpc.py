import asyncio
import sys
from pathlib import Path

import pytest

from shared.errors import TransportError, WorkerStartError
from shared.framing import FrameDecoder, encode_frame
from shared.proc_rpc import ProcessSupervisor
from shared.protocol import Notification, Request, Response

FAKE_AGENT = Path(__file__).resolve().parent / "fixtures" / "fake_agent.py"


async def _read_one(stdout: asyncio.StreamReader):
    decoder = FrameDecoder()
    while True:
        chunk = await asyncio.wait_for(stdout.read(4096), 10)
        assert chunk, "agent closed stdout"
        items = decoder.feed(chunk)
        if items:
            return items[0]


@pytest.mark.asyncio
async def test_start_wires_stdio_to_the_agent():
    sup = ProcessSupervisor(sys.executable, [str(FAKE_AGENT)], grace_period=2.0)
    worker = await sup.start()
    assert worker.alive and sup.alive
    assert await sup.start() is worker

    await sup.write(encode_frame(Request(id=1, method="initialize", params={"name": "ExampleClient"})))
    assert await _read_one(worker.stdout) == Response(id=1, result={"name": "fake-agent"})

    await sup.write(encode_frame(Notification(method="exit")))
    assert await sup.terminate() == 0
    assert not worker.alive


@pytest.mark.asyncio
async def test_unexpected_exit_is_reported():
    exits = []
    sup = ProcessSupervisor(
        sys.executable,
        [str(FAKE_AGENT)],
        on_exit=lambda code, expected: exits.append((code, expected)),
    )
    await sup.start()
    await sup.write(encode_frame(Request(id=1, method="test/crash")))
    for _ in range(500):
        if exits:
            break
        await asyncio.sleep(0.01)
    assert exits == [(3, False)]


@pytest.mark.asyncio
async def test_requested_exit_is_expected():
    exits = []
    sup = ProcessSupervisor(sys.executable, [str(FAKE_AGENT)], on_exit=lambda code, expected: exits.append((code, expected)))
    await sup.start()
    await sup.terminate()
    assert exits == [(0, True)]


@pytest.mark.asyncio
async def test_terminate_force_kills_after_grace_period():
    sup = ProcessSupervisor(sys.executable, [str(FAKE_AGENT), "--ignore-exit", "--ignore-eof"], grace_period=0.3)
    await sup.start()
    code = await asyncio.wait_for(sup.terminate(), 10)
    assert code is not None and code != 0
    assert not sup.alive


@pytest.mark.asyncio
async def test_graceful_handshake_runs_before_teardown():
    sup = ProcessSupervisor(sys.executable, [str(FAKE_AGENT)], grace_period=2.0)
    await sup.start()
    steps = []

    async def goodbye():
        steps.append("goodbye")
        await sup.write(encode_frame(Notification(method="exit")))

    assert await sup.terminate(graceful=goodbye()) == 0
    assert steps == ["goodbye"]


@pytest.mark.asyncio
async def test_missing_executable_is_a_start_error(tmp_path):
    sup = ProcessSupervisor(str(tmp_path / "no-such-agent"))
    with pytest.raises(WorkerStartError):
        await sup.start()
    assert await sup.terminate() is None


@pytest.mark.asyncio
async def test_write_before_start_is_transport_error():
    with pytest.raises(TransportError):
        await ProcessSupervisor(sys.executable).write(b"x")
