"""HTTP API that the chat layer talks to.

The chat transport (bot, webhook, whatever renders cards) posts user
prompts here and listens on /events for card and file events.

Routes:
    GET    /health
    GET    /events                       SSE stream of BridgeEvents
    GET    /tasks                        active tasks
    POST   /channels/{key}/tasks         start a task (202), busy (409)
    POST   /channels/{key}/cancel        stop the channel's task
    DELETE /channels/{key}/session       forget the channel's session
    POST   /send-file                    offer a file to a channel
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
import uuid
from typing import Any

from aiohttp import web

from agent_bridge.adapters.event_bus import EventBus
from agent_bridge.adapters.file_delivery import check_deliverable, resolve_path
from agent_bridge.engine.config import BridgeConfig
from agent_bridge.engine.dedupe import DedupeCache
from agent_bridge.engine.errors import BridgeError, ChannelBusyError, FileTooLargeError
from agent_bridge.engine.launcher import DEFAULT_MODE
from agent_bridge.engine.orchestrator import MODE_TITLES, Orchestrator
from agent_bridge.engine.models import TaskResult
from agent_bridge.engine.task_manager import AgentTask

logger = logging.getLogger(__name__)

REQ_ID_KEY = web.RequestKey("req_id", str)


class EventSink:
    """Delivery sink that turns card operations into bus events."""

    def __init__(self, bus: EventBus, channel_key: str) -> None:
        self._bus = bus
        self.channel_key = channel_key

    async def create(self, text: str, title: str) -> str:
        card_id = uuid.uuid4().hex[:12]
        self._bus.emit(
            "card_created", self.channel_key,
            card_id=card_id, title=title, text=text,
        )
        return card_id

    async def update(self, handle: str, text: str, title: str) -> None:
        self._bus.emit(
            "card_updated", self.channel_key,
            card_id=handle, title=title, text=text,
        )


class BridgeServer:
    """aiohttp application wrapping one Orchestrator."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        orchestrator: Orchestrator | None = None,
        bus: EventBus | None = None,
        dedupe: DedupeCache | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.orchestrator = orchestrator or Orchestrator(self.config)
        self.bus = bus or EventBus()
        self.dedupe = dedupe or DedupeCache(self.config.dedupe_ttl_seconds)
        self._host = self.config.api_host
        self._port = self.config.api_port
        self._started_at = time.time()
        self._started_at_ms = int(self._started_at * 1000)
        self._runs: set[asyncio.Task] = set()
        self._sweepers: list[asyncio.Task] = []
        self._last_channel: str | None = None

        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._app.on_startup.append(self._on_startup)
        self._app.on_cleanup.append(self._on_cleanup)
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-bridge-request-id", str(uuid.uuid4())[:8])
        request[REQ_ID_KEY] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/events", self._handle_sse)
        r.add_get("/tasks", self._handle_list_tasks)
        r.add_post("/channels/{key}/tasks", self._handle_start_task)
        r.add_post("/channels/{key}/cancel", self._handle_cancel)
        r.add_delete("/channels/{key}/session", self._handle_new_session)
        r.add_post("/send-file", self._handle_send_file)

    # ── Lifecycle ──

    async def _on_startup(self, app: web.Application) -> None:
        cfg = self.config
        self._sweepers = [
            asyncio.create_task(
                self.orchestrator.sessions.run_sweeper(cfg.session_sweep_interval_seconds),
                name="session-sweeper",
            ),
            asyncio.create_task(
                self.dedupe.run_sweeper(cfg.dedupe_ttl_seconds),
                name="dedupe-sweeper",
            ),
        ]

    async def _on_cleanup(self, app: web.Application) -> None:
        for task in self._sweepers:
            task.cancel()
        await asyncio.gather(*self._sweepers, return_exceptions=True)
        self._sweepers = []
        await self.orchestrator.tasks.shutdown()
        runs = list(self._runs)
        for task in runs:
            task.cancel()
        await asyncio.gather(*runs, return_exceptions=True)
        self.bus.close()

    async def start(self) -> None:
        """Serve until cancelled."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        sys.stdout.write(json.dumps({"port": self._port}) + "\n")
        sys.stdout.flush()
        logger.info(
            "Bridge API listening on %s:%d (work_dir=%s)",
            self._host, self._port, self.config.work_dir,
        )
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
            logger.info("Bridge API stopped")

    # ── Task runs ──

    async def _run_task(
        self,
        channel_key: str,
        prompt: str,
        mode: str,
        title: str | None,
        reserved: AgentTask,
    ) -> None:
        sink = EventSink(self.bus, channel_key)
        try:
            result = await self.orchestrator.run(
                prompt, channel_key, sink,
                mode=mode, title=title, reserved=reserved,
            )
        except BridgeError as exc:
            logger.warning("Task for %s failed: %s", channel_key, exc)
            self.bus.emit(
                "task_failed", channel_key,
                error=str(exc), kind=type(exc).__name__,
            )
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error in task for %s", channel_key)
            self.bus.emit(
                "task_failed", channel_key,
                error=str(exc), kind=type(exc).__name__,
            )
            return

        if result.cancelled:
            self.bus.emit(
                "task_cancelled", channel_key,
                elapsed_seconds=round(result.elapsed_seconds, 1),
            )
            return
        self.bus.emit("task_completed", channel_key, **_result_payload(result))
        self._offer_files(channel_key, result.added_files)

    def _offer_files(self, channel_key: str, paths: list[str]) -> None:
        for path in paths:
            try:
                info = check_deliverable(path, self.config.max_file_bytes)
            except FileTooLargeError as exc:
                self.bus.emit(
                    "file_rejected", channel_key,
                    file_path=path, file_size=exc.size, reason=str(exc),
                )
                continue
            except FileNotFoundError:
                logger.debug("Added file %s vanished before delivery", path)
                continue
            self.bus.emit("file_ready", channel_key, message="", **info.to_dict())

    # ── HTTP handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "work_dir": self.config.work_dir,
            "active_tasks": len(self.orchestrator.tasks),
            "sessions": len(self.orchestrator.sessions),
        })

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        await response.prepare(request)

        queue = self.bus.subscribe()
        logger.info("SSE client connected req=%s active_clients=%d", request.get(REQ_ID_KEY, "unknown"), self.bus.subscriber_count)
        try:
            await response.write(b"event: connected\ndata: {}\n\n")
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    data = json.dumps(event.to_dict())
                    await response.write(f"event: {event.event_type}\ndata: {data}\n\n".encode())
                except asyncio.TimeoutError:
                    await response.write(b": keepalive\n\n")
                except ConnectionResetError:
                    break
        except asyncio.CancelledError:
            pass
        finally:
            self.bus.unsubscribe(queue)
            logger.info("SSE client disconnected req=%s active_clients=%d", request.get(REQ_ID_KEY, "unknown"), self.bus.subscriber_count)
        return response

    async def _handle_list_tasks(self, request: web.Request) -> web.Response:
        tasks = [
            {
                "channel_key": t.channel_key,
                "label": t.label,
                "elapsed_seconds": int(t.elapsed_seconds),
                "state": self.orchestrator.state_of(t.channel_key).value,
            }
            for t in self.orchestrator.tasks.active_tasks()
        ]
        return web.json_response({"tasks": tasks})

    async def _handle_start_task(self, request: web.Request) -> web.Response:
        key = request.match_info["key"]
        body, error = await _read_json(request)
        if error is not None:
            return error

        prompt = str(body.get("prompt") or "").strip()
        if not prompt:
            return web.json_response({"error": "prompt is required"}, status=400)
        mode = str(body.get("mode") or DEFAULT_MODE)
        if mode not in MODE_TITLES:
            return web.json_response({"error": f"Unknown mode: {mode}"}, status=400)

        event_id = body.get("event_id")
        if event_id and self.dedupe.seen(str(event_id)):
            logger.info("Ignoring replayed event %s for %s", event_id, key)
            return web.json_response({"ignored": "duplicate"})
        created_at_ms = body.get("created_at_ms")
        if created_at_ms is not None:
            try:
                stale = int(created_at_ms) < self._started_at_ms
            except (TypeError, ValueError):
                return web.json_response({"error": "created_at_ms must be an integer"}, status=400)
            if stale:
                logger.info("Ignoring event for %s created before startup", key)
                return web.json_response({"ignored": "stale"})

        try:
            reserved = self.orchestrator.reserve(prompt, key)
        except ChannelBusyError as exc:
            return web.json_response(
                {
                    "error": "A task is already running for this channel",
                    "label": exc.label,
                },
                status=409,
            )

        title = body.get("title") or None
        self._last_channel = key
        run = asyncio.create_task(
            self._run_task(key, prompt, mode, title, reserved), name=f"task-{key}",
        )
        self._runs.add(run)
        run.add_done_callback(self._runs.discard)
        return web.json_response(
            {"status": "accepted", "channel_key": key, "label": reserved.label},
            status=202,
        )

    async def _handle_cancel(self, request: web.Request) -> web.Response:
        key = request.match_info["key"]
        result = self.orchestrator.cancel(key)
        return web.json_response(result.to_dict())

    async def _handle_new_session(self, request: web.Request) -> web.Response:
        key = request.match_info["key"]
        return web.json_response({"cleared": self.orchestrator.new_session(key)})

    async def _handle_send_file(self, request: web.Request) -> web.Response:
        body, error = await _read_json(request)
        if error is not None:
            return error
        file_path = body.get("file_path")
        if not file_path:
            return web.json_response(
                {"success": False, "error": "file_path is required"}, status=400,
            )
        path = resolve_path(str(file_path), self.config.work_dir)
        try:
            info = check_deliverable(path, self.config.max_file_bytes)
        except FileNotFoundError as exc:
            return web.json_response({"success": False, "error": str(exc)}, status=404)
        except FileTooLargeError as exc:
            return web.json_response({"success": False, "error": str(exc)}, status=413)

        channel_key = body.get("channel_key") or self._last_channel
        if not channel_key:
            return web.json_response(
                {"success": False, "error": "No channel to send the file to"},
                status=409,
            )
        self.bus.emit(
            "file_ready", channel_key,
            message=str(body.get("message") or ""), **info.to_dict(),
        )
        logger.info("File %s (%d bytes) offered to %s", info.name, info.size, channel_key)
        return web.json_response({
            "success": True,
            "file_name": info.name,
            "file_size": info.size,
        })


async def _read_json(request: web.Request) -> tuple[dict[str, Any], web.Response | None]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError):
        return {}, web.json_response({"error": "Invalid JSON"}, status=400)
    if not isinstance(body, dict):
        return {}, web.json_response({"error": "Expected a JSON object"}, status=400)
    return body, None


def _result_payload(result: TaskResult) -> dict[str, Any]:
    return {
        "text": result.text,
        "session_id": result.session_id,
        "exit_code": result.exit_code,
        "elapsed_seconds": round(result.elapsed_seconds, 1),
        "added_files": result.added_files,
        "changed_files": result.changed_files,
    }
