from __future__ import annotations

import asyncio
import sys
import tempfile
import warnings
from pathlib import Path

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from agent_bridge.engine.config import BridgeConfig
from agent_bridge.server.api import BridgeServer

FAKE_AGENT = str(Path(__file__).parent / "fake_agent.py")


class _BridgeServerCase(AioHTTPTestCase):
    scenario = "complete"
    kill_grace_seconds = 0.3

    async def get_application(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.config = BridgeConfig(
            agent_command=sys.executable,
            agent_args=[FAKE_AGENT, self.scenario],
            work_dir=str(self.tmpdir),
            timeout_seconds=15,
            kill_grace_seconds=self.kill_grace_seconds,
            throttle_interval_seconds=0.05,
            max_file_bytes=1024,
        )
        self.bridge = BridgeServer(self.config)
        self.events = self.bridge.bus.subscribe()
        return self.bridge.app

    async def next_event(self, event_type: str, timeout: float = 10.0):
        async def _find():
            while True:
                event = await self.events.get()
                if event.event_type == event_type:
                    return event
        return await asyncio.wait_for(_find(), timeout=timeout)

    async def start_task(self, key: str = "chan", **body):
        body.setdefault("prompt", "hello")
        return await self.client.post(f"/channels/{key}/tasks", json=body)


class TestBridgeServerCompletion(_BridgeServerCase):
    async def test_health(self):
        resp = await self.client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
        assert data["work_dir"] == str(self.tmpdir)
        assert data["active_tasks"] == 0

    async def test_request_id_is_logged_without_key_warning(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", web.NotAppKeyWarning)
            with self.assertLogs("agent_bridge.server.api", "INFO") as logs:
                resp = await self.client.get(
                    "/health", headers={"x-bridge-request-id": "req-42"},
                )
        assert resp.status == 200
        assert any("req=req-42" in line for line in logs.output)

    async def test_task_streams_cards_and_completes(self):
        resp = await self.start_task(prompt="hello")
        assert resp.status == 202
        assert (await resp.json())["label"] == "hello"

        created = await self.next_event("card_created")
        assert created.channel_key == "chan"
        assert created.data["title"] == "Working"

        done = await self.next_event("task_completed")
        assert done.data["text"] == "DONE prompt=hello resume=None mode=agent"
        assert done.data["session_id"] == "sess-1"

        resp = await self.client.delete("/channels/chan/session")
        assert (await resp.json()) == {"cleared": True}

    async def test_replayed_event_is_ignored(self):
        first = await self.start_task(event_id="evt-1")
        assert first.status == 202
        await self.next_event("task_completed")

        again = await self.start_task(event_id="evt-1")
        assert again.status == 200
        assert (await again.json()) == {"ignored": "duplicate"}

    async def test_event_from_before_startup_is_ignored(self):
        resp = await self.start_task(created_at_ms=1)
        assert resp.status == 200
        assert (await resp.json()) == {"ignored": "stale"}

    async def test_bad_requests(self):
        resp = await self.client.post("/channels/chan/tasks", data=b"{nope")
        assert resp.status == 400
        resp = await self.start_task(prompt="   ")
        assert resp.status == 400
        resp = await self.start_task(mode="yolo")
        assert resp.status == 400

    async def test_cancel_idle_channel(self):
        resp = await self.client.post("/channels/idle/cancel")
        assert (await resp.json()) == {"cancelled": False, "label": "", "elapsed_seconds": 0}

    async def test_send_file(self):
        (self.tmpdir / "small.txt").write_text("hi")
        resp = await self.client.post(
            "/send-file",
            json={"file_path": "small.txt", "message": "here", "channel_key": "chan"},
        )
        assert resp.status == 200
        assert (await resp.json()) == {"success": True, "file_name": "small.txt", "file_size": 2}
        event = await self.next_event("file_ready")
        assert event.data["message"] == "here"
        assert event.data["file_path"] == str(self.tmpdir / "small.txt")

    async def test_send_file_errors(self):
        resp = await self.client.post("/send-file", json={"file_path": "missing.txt"})
        assert resp.status == 404

        (self.tmpdir / "big.bin").write_bytes(b"x" * 2048)
        resp = await self.client.post(
            "/send-file", json={"file_path": "big.bin", "channel_key": "chan"},
        )
        assert resp.status == 413
        assert "above the 1024 byte limit" in (await resp.json())["error"]

        (self.tmpdir / "ok.txt").write_text("ok")
        resp = await self.client.post("/send-file", json={"file_path": "ok.txt"})
        assert resp.status == 409


class TestBridgeServerFiles(_BridgeServerCase):
    scenario = "write"

    async def test_added_files_are_offered(self):
        resp = await self.start_task(prompt="write a report")
        assert resp.status == 202
        event = await self.next_event("file_ready")
        assert event.data["file_name"] == "report.txt"
        assert event.data["file_size"] == len("report")


class TestBridgeServerLongTask(_BridgeServerCase):
    scenario = "sleep"

    async def test_busy_then_cancel(self):
        resp = await self.start_task(prompt="long job")
        assert resp.status == 202

        busy = await self.start_task(prompt="another")
        assert busy.status == 409

        await self.next_event("card_created")
        resp = await self.client.get("/tasks")
        tasks = (await resp.json())["tasks"]
        assert [t["channel_key"] for t in tasks] == ["chan"]
        assert tasks[0]["label"] == "long job"

        resp = await self.client.post("/channels/chan/cancel")
        data = await resp.json()
        assert data["cancelled"] is True
        assert data["label"] == "long job"

        await self.next_event("task_cancelled")
        resp = await self.client.get("/tasks")
        assert (await resp.json())["tasks"] == []

    async def test_simultaneous_starts_admit_one(self):
        first, second = await asyncio.gather(
            self.start_task("race", prompt="one"),
            self.start_task("race", prompt="two"),
        )
        assert sorted([first.status, second.status]) == [202, 409]
        loser = first if first.status == 409 else second
        assert (await loser.json())["label"] in ("one", "two")

        await self.client.post("/channels/race/cancel")
        await self.next_event("task_cancelled")


class TestBridgeServerFailure(_BridgeServerCase):
    scenario = "fail"

    async def test_failure_is_published(self):
        await self.start_task()
        event = await self.next_event("task_failed")
        assert event.data["kind"] == "ProcessExitError"
        assert "code 3" in event.data["error"]


class TestBridgeServerRestartAfterCancel(_BridgeServerCase):
    scenario = "stubborn"
    kill_grace_seconds = 2.0

    async def test_new_task_accepted_while_old_process_dies(self):
        resp = await self.start_task(prompt="first")
        assert resp.status == 202
        await self.next_event("card_updated")

        resp = await self.client.post("/channels/chan/cancel")
        assert (await resp.json())["cancelled"] is True

        resp = await self.start_task(prompt="second")
        assert resp.status == 202
        assert (await resp.json())["label"] == "second"

        resp = await self.client.get("/tasks")
        tasks = (await resp.json())["tasks"]
        assert [t["label"] for t in tasks] == ["second"]

        await self.client.post("/channels/chan/cancel")
        await self.next_event("task_cancelled")
        await self.next_event("task_cancelled")
