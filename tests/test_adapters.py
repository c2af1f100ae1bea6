"""Tests for the event bus, console sink, file checks and entry points."""
from __future__ import annotations

import io
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from agent_bridge import app
from agent_bridge.adapters.event_bus import EventBus
from agent_bridge.adapters.file_delivery import check_deliverable, resolve_path
from agent_bridge.adapters.sink import ConsoleSink, DeliverySink
from agent_bridge.engine import cli
from agent_bridge.engine.errors import FileTooLargeError

FAKE_AGENT = str(Path(__file__).parent / "fake_agent.py")


@pytest.mark.asyncio
async def test_event_bus_fans_out_to_every_subscriber():
    bus = EventBus()
    a, b = bus.subscribe(), bus.subscribe()
    bus.emit("card_created", "chan", card_id="c1")
    for queue in (a, b):
        event = queue.get_nowait()
        assert event.event_type == "card_created"
        assert event.to_dict()["card_id"] == "c1"

    bus.unsubscribe(b)
    bus.emit("card_updated", "chan")
    assert a.qsize() == 1
    assert b.qsize() == 0


@pytest.mark.asyncio
async def test_event_bus_drops_oldest_when_full():
    bus = EventBus(maxsize=2)
    queue = bus.subscribe()
    for i in range(3):
        bus.emit("card_updated", "chan", seq=i)
    assert [queue.get_nowait().data["seq"] for _ in range(2)] == [1, 2]


@pytest.mark.asyncio
async def test_event_bus_close_stops_publishing():
    bus = EventBus()
    queue = bus.subscribe()
    bus.close()
    bus.emit("card_created")
    assert queue.empty()


@pytest.mark.asyncio
async def test_console_sink_prints_appended_text():
    out = io.StringIO()
    sink = ConsoleSink(out)
    assert isinstance(sink, DeliverySink)
    handle = await sink.create("...", "Working")
    await sink.update(handle, "Hel", "Working")
    await sink.update(handle, "Hello", "Working")
    assert out.getvalue() == "[Working] ...\n\n[Working]\nHello"


def test_resolve_path(tmp_path):
    assert resolve_path("a/b.txt", str(tmp_path)) == str(tmp_path / "a" / "b.txt")
    assert resolve_path("/abs/x", str(tmp_path)) == "/abs/x"


def test_check_deliverable(tmp_path):
    small = tmp_path / "small.txt"
    small.write_text("abc")
    info = check_deliverable(str(small), max_bytes=10)
    assert (info.name, info.size) == ("small.txt", 3)

    with pytest.raises(FileTooLargeError) as exc:
        check_deliverable(str(small), max_bytes=2)
    assert exc.value.size == 3

    with pytest.raises(FileNotFoundError):
        check_deliverable(str(tmp_path / "missing"))
    with pytest.raises(FileNotFoundError):
        check_deliverable(str(tmp_path))


def test_cli_runs_one_task(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("BRIDGE_AGENT_COMMAND", sys.executable)
    monkeypatch.setenv("BRIDGE_AGENT_ARGS", f"{FAKE_AGENT} write")
    monkeypatch.delenv("BRIDGE_CONFIG_FILE", raising=False)
    code = cli.main(["make it", "--cwd", str(tmp_path), "--timeout", "15"])
    assert code == 0
    out = capsys.readouterr().out
    assert "wrote report.txt" in out
    assert str(tmp_path / "report.txt") in out


def test_cli_reports_failure(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("BRIDGE_AGENT_COMMAND", sys.executable)
    monkeypatch.setenv("BRIDGE_AGENT_ARGS", f"{FAKE_AGENT} fail")
    monkeypatch.delenv("BRIDGE_CONFIG_FILE", raising=False)
    assert cli.main(["x", "--cwd", str(tmp_path)]) == 1
    assert "exited with code 3" in capsys.readouterr().err


def test_app_build_config_applies_flags(tmp_path, monkeypatch):
    monkeypatch.delenv("BRIDGE_CONFIG_FILE", raising=False)
    args = app._parse_args([
        "--host", "0.0.0.0", "--port", "4567", "--cwd", str(tmp_path), "-v",
    ])
    config = app.build_config(args)
    assert config.api_host == "0.0.0.0"
    assert config.api_port == 4567
    assert config.work_dir == str(tmp_path)
    assert config.log_level == "DEBUG"


def test_app_configure_logging(tmp_path):
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        path = app.configure_logging("WARNING", tmp_path / "logs" / "bridge.log")
        assert path.parent.is_dir()
        assert root.level == logging.WARNING
        rotating = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        assert len(rotating) == 1
        assert rotating[0].maxBytes == 2_000_000
        assert rotating[0].backupCount == 5
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
