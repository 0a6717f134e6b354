"""HTTP client helper for communicating with the Godot editor bridge.

Every call carries a caller-side timeout: 5s by default, 8s for calls that
make the bridge recompute errors. A timeout surfaces as
EditorNotRespondingError, a refused connection as EditorUnavailableError, so
the agent can tell "editor hung" from "editor not running". Nothing is
retried here; retry policy belongs to the agent.

A timed-out call only abandons the wait. The bridge may still finish the
request (e.g. a scene may start playing after the caller gave up).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from godot_ai_builder.config import DEFAULT_DETAILED_TIMEOUT, DEFAULT_TIMEOUT, Settings
from godot_ai_builder.exceptions import (
    BridgeError,
    BridgeHttpError,
    EditorNotRespondingError,
    EditorUnavailableError,
)

logger = logging.getLogger(__name__)

# Hard ceiling: no single HTTP request to the bridge may wait longer than this.
MAX_TIMEOUT: float = 30.0


class BridgeClient:
    """Async HTTP client for the editor bridge.

    The bridge closes every connection after one response, so each call opens
    a fresh httpx.AsyncClient instead of holding a pool.
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float = DEFAULT_TIMEOUT,
        detailed_timeout: float = DEFAULT_DETAILED_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self.timeout = min(timeout, MAX_TIMEOUT)
        self.detailed_timeout = min(detailed_timeout, MAX_TIMEOUT)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "BridgeClient":
        return cls(
            settings.bridge_host,
            settings.bridge_port,
            timeout=settings.request_timeout,
            detailed_timeout=settings.detailed_timeout,
        )

    def _effective_timeout(self, override: float | None) -> float:
        """Return the timeout to use, clamped to MAX_TIMEOUT."""
        if override is not None:
            return min(override, MAX_TIMEOUT)
        return self.timeout

    async def request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON object."""
        t = self._effective_timeout(timeout)
        logger.debug("%s %s (timeout %.1fs)", method, path, t)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=t, transport=self._transport
            ) as client:
                resp = await client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            raise EditorNotRespondingError(
                f"Godot editor not responding within {t:g}s on {method} {path}. "
                "Is the AI Game Builder plugin enabled?"
            ) from exc
        except httpx.TransportError as exc:
            raise EditorUnavailableError(
                f"Cannot connect to Godot editor on port {self.port}: {exc}"
            ) from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            raise BridgeHttpError(
                f"Godot bridge {method} {path} returned non-JSON response",
                status_code=resp.status_code,
            ) from exc

        if resp.is_error:
            detail = None
            if isinstance(payload, dict):
                detail = payload.get("error") or payload.get("message")
            raise BridgeHttpError(
                f"Godot bridge {method} {path} failed: {detail or f'HTTP {resp.status_code}'}",
                status_code=resp.status_code,
            )
        if not isinstance(payload, dict):
            raise BridgeHttpError(
                f"Godot bridge {method} {path} returned a non-object JSON body",
                status_code=resp.status_code,
            )
        return payload

    async def get(
        self, path: str, params: dict[str, Any] | None = None, timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self.request("GET", path, params=params, timeout=timeout)

    async def post(
        self, path: str, json: dict[str, Any] | None = None, timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self.request("POST", path, json=json or {}, timeout=timeout)

    # --- endpoint wrappers ---

    async def get_status(self) -> dict[str, Any]:
        return await self.get("/status")

    async def get_errors(self) -> dict[str, Any]:
        return await self.get("/errors", timeout=self.detailed_timeout)

    async def get_detailed_errors(self) -> dict[str, Any]:
        return await self.get("/detailed_errors", timeout=self.detailed_timeout)

    async def run_scene(self, scene_path: str = "") -> dict[str, Any]:
        return await self.post("/run", {"scene_path": scene_path})

    async def stop_scene(self) -> dict[str, Any]:
        return await self.post("/stop")

    async def reload_filesystem(self) -> dict[str, Any]:
        return await self.post("/reload")

    async def send_log(self, message: str) -> None:
        """Push a line to the editor dock. Best-effort: failures are ignored."""
        try:
            await self.post("/log", {"message": message}, timeout=2.0)
        except BridgeError as exc:
            logger.debug("Dock log dropped: %s", exc)

    async def update_phase(
        self,
        phase_number: int,
        phase_name: str,
        status: str,
        quality_gates: dict[str, bool] | None = None,
    ) -> dict[str, Any]:
        return await self.post("/phase", {
            "phase_number": phase_number,
            "phase_name": phase_name,
            "status": status,
            "quality_gates": quality_gates or {},
        })

    async def get_phase(self) -> dict[str, Any]:
        return await self.get("/phase")

    async def get_scene_tree(self, scene_path: str = "", max_depth: int = 10) -> dict[str, Any]:
        params: dict[str, Any] = {"max_depth": max_depth}
        if scene_path:
            params["scene_path"] = scene_path
        return await self.get("/scene_tree", params=params, timeout=self.detailed_timeout)

    async def add_node(
        self,
        node_name: str,
        node_type: str,
        parent_path: str = ".",
        properties: dict[str, Any] | None = None,
        scene_path: str = "",
    ) -> dict[str, Any]:
        return await self.post("/add_node", {
            "scene_path": scene_path,
            "parent_path": parent_path,
            "node_name": node_name,
            "node_type": node_type,
            "properties": properties or {},
        })

    async def update_node(
        self, node_path: str, properties: dict[str, Any], scene_path: str = "",
    ) -> dict[str, Any]:
        return await self.post("/update_node", {
            "scene_path": scene_path,
            "node_path": node_path,
            "properties": properties,
        })

    async def delete_node(self, node_path: str, scene_path: str = "") -> dict[str, Any]:
        return await self.post("/delete_node", {"scene_path": scene_path, "node_path": node_path})

    async def is_connected(self) -> bool:
        """Check if the bridge is reachable."""
        try:
            await self.get("/status", timeout=2.0)
        except BridgeError:
            return False
        return True
