"""Editor bridge: a loopback HTTP/1.1 server exposing editor state as JSON.

Each accepted connection gets its own buffer and is serviced exactly once:
bytes are accumulated until the request is complete, the request is routed on
an exact ``(method, path)`` match, one JSON response is written with
``Connection: close``, and the connection is dropped from the active set.
Connections that disconnect or stall before completing their headers are
dropped without being dispatched.

Handlers never take the server down. Internal failures become
``{"ok": false, "error": ...}`` responses; filesystem-heavy handlers run in
a worker thread so the accept loop keeps turning.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from godot_ai_builder import scanner, scene_editor
from godot_ai_builder.config import Settings
from godot_ai_builder.editor_bridge import framing
from godot_ai_builder.editor_bridge.bodies import (
    AddNodeRequest,
    DeleteNodeRequest,
    LogRequest,
    PhaseUpdateRequest,
    RunRequest,
    UpdateNodeRequest,
)
from godot_ai_builder.editor_bridge.errors import ErrorCollector
from godot_ai_builder.editor_bridge.events import EventLog
from godot_ai_builder.editor_bridge.host import EditorHost, HeadlessEditorHost
from godot_ai_builder.editor_bridge.log_classifier import PhaseLineClassifier
from godot_ai_builder.editor_bridge.phase import (
    FilePhaseStateRepository,
    PhaseState,
    PhaseStateStore,
)
from godot_ai_builder.exceptions import (
    EditorIntegrationUnavailable,
    MalformedRequestError,
    ProjectPathError,
    SceneEditError,
)
from godot_ai_builder.scene_parser import build_scene_tree, count_nodes, parse_tscn

logger = logging.getLogger(__name__)

IDLE_TIMEOUT = 30.0
READ_CHUNK = 64 * 1024

Response = tuple[int, dict[str, Any]]
Handler = Callable[[framing.HttpRequest], Awaitable[Response]]


@dataclass(eq=False)
class Connection:
    """One accepted client socket and the bytes received from it so far."""

    writer: asyncio.StreamWriter
    peer: str
    buffer: bytearray = field(default_factory=bytearray)


def _int_param(query: dict[str, str], key: str, default: int) -> int:
    try:
        return int(query.get(key, default))
    except (TypeError, ValueError):
        return default


class BridgeServer:
    def __init__(
        self,
        host: EditorHost,
        collector: ErrorCollector,
        phases: PhaseStateStore,
        events: EventLog | None = None,
        phase_classifier: PhaseLineClassifier | None = None,
        bind_host: str = "127.0.0.1",
        port: int = 6100,
        idle_timeout: float = IDLE_TIMEOUT,
    ) -> None:
        self.host = host
        self.collector = collector
        self.phases = phases
        self.events = events or EventLog()
        self.phase_classifier = phase_classifier or PhaseLineClassifier()
        self.bind_host = bind_host
        self.port = port
        self.idle_timeout = idle_timeout
        self._server: asyncio.AbstractServer | None = None
        self._connections: set[Connection] = set()
        self._scene_lock = asyncio.Lock()
        self._routes: dict[tuple[str, str], Handler] = {
            ("GET", "/status"): self._handle_status,
            ("GET", "/errors"): self._handle_errors,
            ("GET", "/detailed_errors"): self._handle_detailed_errors,
            ("POST", "/run"): self._handle_run,
            ("POST", "/stop"): self._handle_stop,
            ("POST", "/reload"): self._handle_reload,
            ("POST", "/log"): self._handle_log,
            ("GET", "/log"): self._handle_get_log,
            ("POST", "/phase"): self._handle_update_phase,
            ("GET", "/phase"): self._handle_get_phase,
            ("GET", "/scene_tree"): self._handle_scene_tree,
            ("POST", "/add_node"): self._handle_add_node,
            ("POST", "/update_node"): self._handle_update_node,
            ("POST", "/delete_node"): self._handle_delete_node,
        }

    @property
    def routes(self) -> frozenset[tuple[str, str]]:
        return frozenset(self._routes)

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    @property
    def project_root(self) -> Path:
        return self.collector.project_root

    # --- lifecycle ---

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle_connection, self.bind_host, self.port
        )
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info("Editor bridge listening on http://%s:%d", self.bind_host, self.port)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        for conn in list(self._connections):
            conn.writer.close()
        self._connections.clear()
        await asyncio.to_thread(self.host.stop_scene)
        logger.info("Editor bridge stopped")

    # --- connection handling ---

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        conn = Connection(writer=writer, peer=str(peer))
        self._connections.add(conn)
        try:
            request = await self._read_request(reader, conn)
            if request is None:
                logger.debug("Dropping incomplete request from %s", conn.peer)
                return
            status, payload = await self.dispatch(request)
            logger.debug("%s %s -> %d", request.method, request.path, status)
            await self._respond(conn, status, payload)
        except MalformedRequestError as exc:
            logger.debug("Malformed request from %s: %s", conn.peer, exc)
            await self._respond(conn, 400, {"error": str(exc)})
        except ConnectionError as exc:
            logger.debug("Client %s went away: %s", conn.peer, exc)
        finally:
            self._connections.discard(conn)
            writer.close()
            with suppress(ConnectionError):
                await writer.wait_closed()

    async def _read_request(
        self, reader: asyncio.StreamReader, conn: Connection
    ) -> framing.HttpRequest | None:
        while not framing.request_complete(bytes(conn.buffer)):
            try:
                chunk = await asyncio.wait_for(reader.read(READ_CHUNK), self.idle_timeout)
            except asyncio.TimeoutError:
                return None
            if not chunk:
                return None
            conn.buffer.extend(chunk)
        return framing.parse_request(bytes(conn.buffer))

    async def _respond(self, conn: Connection, status: int, payload: dict[str, Any]) -> None:
        with suppress(ConnectionError):
            conn.writer.write(framing.encode_response(status, payload))
            await conn.writer.drain()

    async def dispatch(self, request: framing.HttpRequest) -> Response:
        handler = self._routes.get((request.method, request.path))
        if handler is None:
            return 404, {"error": "Not found", "method": request.method, "path": request.path}
        try:
            return await handler(request)
        except ValidationError as exc:
            return 400, {
                "ok": False,
                "error": "Invalid request body",
                "details": exc.errors(include_url=False, include_context=False),
            }
        except EditorIntegrationUnavailable as exc:
            return 200, {"ok": False, "error": str(exc)}
        except Exception as exc:
            logger.warning("Handler for %s %s failed", request.method, request.path, exc_info=True)
            return 500, {"ok": False, "error": f"{type(exc).__name__}: {exc}"}

    # --- handlers ---

    def _main_scene(self) -> str:
        return self.host.project_settings().get("application/run/main_scene", "")

    async def _handle_status(self, request: framing.HttpRequest) -> Response:
        def collect() -> dict[str, Any]:
            settings = self.host.project_settings()
            return {
                "connected": True,
                "project_name": settings.get("application/config/name", "Unknown"),
                "project_path": str(self.project_root),
                "main_scene": self._main_scene(),
                "scripts": self.host.list_files(scanner.SCRIPT_EXTENSIONS),
                "scenes": self.host.list_files(scanner.SCENE_EXTENSIONS),
                "is_playing": self.host.is_playing(),
                "phase": self.phases.current.model_dump(),
            }

        return 200, await asyncio.to_thread(collect)

    async def _handle_errors(self, request: framing.HttpRequest) -> Response:
        report = await asyncio.to_thread(self.collector.collect)
        return 200, report.to_dict()

    async def _handle_detailed_errors(self, request: framing.HttpRequest) -> Response:
        return 200, await asyncio.to_thread(self.collector.collect_detailed)

    async def _handle_run(self, request: framing.HttpRequest) -> Response:
        body = RunRequest.model_validate(request.json())
        scene = body.scene_path or self._main_scene()
        if not scene:
            return 200, {"ok": False, "error": "No scene_path given and no main scene configured"}

        def play() -> bool:
            restarted = self.host.is_playing()
            self.host.play_scene(scene)
            return restarted

        restarted = await asyncio.to_thread(play)
        self.events.emit("log", f"Running {scene}")
        return 200, {"ok": True, "scene_path": scene, "restarted": restarted}

    async def _handle_stop(self, request: framing.HttpRequest) -> Response:
        was_playing = await asyncio.to_thread(self.host.stop_scene)
        if was_playing:
            self.events.emit("log", "Scene stopped")
        return 200, {"ok": True, "was_playing": was_playing}

    async def _handle_reload(self, request: framing.HttpRequest) -> Response:
        self.host.rescan()
        self.events.emit("log", "Filesystem rescanned")
        return 200, {"ok": True}

    async def _handle_log(self, request: framing.HttpRequest) -> Response:
        body = LogRequest.model_validate(request.json())
        if not body.message:
            return 200, {"ok": False, "error": "Missing 'message'"}
        self.events.emit("log", body.message)
        self._detect_phase(body.message)
        return 200, {"ok": True}

    def _detect_phase(self, message: str) -> None:
        """Best-effort phase update from a free-text log line. Never raises."""
        try:
            hint = self.phase_classifier.classify(message)
            if hint is None:
                return
            current = self.phases.current
            same_phase = current.phase_number == hint.phase_number
            state = PhaseState(
                phase_number=hint.phase_number,
                phase_name=hint.phase_name or (current.phase_name if same_phase else ""),
                status=hint.status,
                quality_gates=dict(current.quality_gates) if same_phase else {},
            )
            if state == current:
                return
            self.phases.replace(state)
            self.events.emit("phase", f"Phase {state.phase_number}: {state.status}", state.model_dump())
        except Exception:
            logger.debug("Phase detection failed for %r", message, exc_info=True)

    async def _handle_get_log(self, request: framing.HttpRequest) -> Response:
        limit = _int_param(request.query, "limit", 50)
        events = [event.to_dict() for event in self.events.recent(limit)]
        return 200, {"ok": True, "count": len(events), "total": len(self.events), "events": events}

    async def _handle_update_phase(self, request: framing.HttpRequest) -> Response:
        body = PhaseUpdateRequest.model_validate(request.json())
        state = body.to_state()
        persisted = True
        try:
            self.phases.replace(state)
        except OSError as exc:
            # The in-memory state is already replaced; only the mirror failed.
            logger.warning("Could not persist phase state: %s", exc)
            persisted = False
        self.host.rescan()
        self.events.emit("phase", f"Phase {state.phase_number}: {state.status}", state.model_dump())
        return 200, {"ok": True, "persisted": persisted, **state.model_dump()}

    async def _handle_get_phase(self, request: framing.HttpRequest) -> Response:
        return 200, self.phases.current.model_dump()

    async def _handle_scene_tree(self, request: framing.HttpRequest) -> Response:
        scene = request.query.get("scene_path") or self._main_scene()
        max_depth = _int_param(request.query, "max_depth", 10)
        if not scene:
            return 200, {"ok": False, "error": "No scene_path given and no main scene configured"}
        try:
            parsed = await asyncio.to_thread(lambda: parse_tscn(self.host.read_text(scene)))
        except (OSError, UnicodeDecodeError, ProjectPathError) as exc:
            return 200, {"ok": False, "error": f"Cannot read scene {scene}: {exc}"}
        tree = build_scene_tree(parsed, max_depth)
        return 200, {"ok": True, "scene_path": scene, "node_count": count_nodes(tree), "root": tree}

    async def _edit_scene(
        self,
        scene_path: str | None,
        edit: Callable[[str], tuple[str, dict[str, Any]]],
        summary: str,
    ) -> Response:
        """Read a scene, apply *edit* to its text and write it back, one edit at a time."""
        scene = scene_path or self._main_scene()
        if not scene:
            return 200, {"ok": False, "error": "No scene_path given and no main scene configured"}

        def apply() -> dict[str, Any]:
            updated, info = edit(self.host.read_text(scene))
            self.host.write_text(scene, updated)
            return info

        async with self._scene_lock:
            try:
                info = await asyncio.to_thread(apply)
            except SceneEditError as exc:
                return 200, {"ok": False, "scene_path": scene, "error": str(exc)}
            except (OSError, UnicodeDecodeError, ProjectPathError) as exc:
                return 200, {"ok": False, "scene_path": scene, "error": f"Cannot edit scene {scene}: {exc}"}
        self.host.rescan()
        self.events.emit("log", f"{summary} in {scene}")
        return 200, {"ok": True, "scene_path": scene, **info}

    async def _handle_add_node(self, request: framing.HttpRequest) -> Response:
        body = AddNodeRequest.model_validate(request.json())
        return await self._edit_scene(
            body.scene_path,
            lambda text: scene_editor.add_node(
                text, body.parent_path, body.node_name, body.node_type, body.properties
            ),
            f"Added {body.node_type} '{body.node_name}'",
        )

    async def _handle_update_node(self, request: framing.HttpRequest) -> Response:
        body = UpdateNodeRequest.model_validate(request.json())
        return await self._edit_scene(
            body.scene_path,
            lambda text: scene_editor.update_node(text, body.node_path, body.properties),
            f"Updated '{body.node_path}'",
        )

    async def _handle_delete_node(self, request: framing.HttpRequest) -> Response:
        body = DeleteNodeRequest.model_validate(request.json())
        return await self._edit_scene(
            body.scene_path,
            lambda text: scene_editor.delete_node(text, body.node_path),
            f"Deleted '{body.node_path}'",
        )


def build_server(settings: Settings) -> BridgeServer:
    host = HeadlessEditorHost(settings.project_path, settings.godot_binary)
    return BridgeServer(
        host=host,
        collector=ErrorCollector(host, settings.project_path),
        phases=PhaseStateStore(FilePhaseStateRepository(settings.phase_state_path)),
        bind_host=settings.bridge_host,
        port=settings.bridge_port,
    )


async def serve(settings: Settings) -> None:
    server = build_server(settings)
    await server.start()
    try:
        await server.serve_forever()
    finally:
        await server.close()
