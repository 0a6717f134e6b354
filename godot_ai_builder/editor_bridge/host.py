"""Editor-host primitives the bridge depends on, and a headless implementation.

The bridge never touches the editor directly; it goes through ``EditorHost``.
``HeadlessEditorHost`` serves a project directory, optionally shelling out to
a Godot binary for script checks and for playing scenes.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from godot_ai_builder import scanner
from godot_ai_builder.editor_bridge.log_classifier import (
    ErrorLineClassifier,
    extract_file_line,
)
from godot_ai_builder.exceptions import EditorIntegrationUnavailable

logger = logging.getLogger(__name__)

CHECK_TIMEOUT = 20.0


@dataclass(frozen=True)
class ScriptCheck:
    """Result of force-loading one script."""

    loaded: bool
    can_instantiate: bool
    error: str = ""
    line: int = -1

    @property
    def ok(self) -> bool:
        return self.loaded and self.can_instantiate


class EditorHost(Protocol):
    def list_files(self, extensions: Iterable[str]) -> list[str]: ...

    def validate_script(self, res_path: str) -> ScriptCheck: ...

    def play_scene(self, res_path: str) -> None: ...

    def stop_scene(self) -> bool: ...

    def is_playing(self) -> bool: ...

    def rescan(self) -> None: ...

    def read_text(self, res_path: str) -> str: ...

    def write_text(self, res_path: str, text: str) -> None: ...

    def project_settings(self) -> dict[str, str]: ...


class HeadlessEditorHost:
    """EditorHost over a project directory and an optional Godot executable."""

    def __init__(self, project_root: Path, godot_binary: str | None = None) -> None:
        self.project_root = project_root
        self.godot_binary = godot_binary
        self._play_process: subprocess.Popen[bytes] | None = None
        self._settings: dict[str, str] | None = None
        self._checks: dict[str, tuple[tuple[int, int], ScriptCheck]] = {}
        self._classifier = ErrorLineClassifier()

    # --- file index ---

    def list_files(self, extensions: Iterable[str]) -> list[str]:
        return scanner.scan_project_files(self.project_root, extensions)

    def rescan(self) -> None:
        # Listings are always read live. project.godot and engine check results
        # are kept until the next rescan; a check is also redone when its file changes.
        self._settings = None
        self._checks.clear()

    def project_settings(self) -> dict[str, str]:
        if self._settings is None:
            self._settings = scanner.read_project_settings(self.project_root)
        return self._settings

    def read_text(self, res_path: str) -> str:
        path = scanner.resolve_project_path(self.project_root, res_path)
        return path.read_text(encoding="utf-8")

    def write_text(self, res_path: str, text: str) -> None:
        path = scanner.resolve_project_path(self.project_root, res_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    # --- script validation ---

    def validate_script(self, res_path: str) -> ScriptCheck:
        try:
            path = scanner.resolve_project_path(self.project_root, res_path)
            path.read_text(encoding="utf-8")
            info = path.stat()
        except (OSError, UnicodeDecodeError) as exc:
            return ScriptCheck(loaded=False, can_instantiate=False, error=f"Failed to load script: {exc}")
        if not self.godot_binary:
            # Without an engine we can only prove the file loads as text.
            return ScriptCheck(loaded=True, can_instantiate=True)

        stamp = (info.st_mtime_ns, info.st_size)
        cached = self._checks.get(res_path)
        if cached is not None and cached[0] == stamp:
            return cached[1]
        try:
            check = self._check_with_godot(res_path)
        except subprocess.TimeoutExpired:
            return ScriptCheck(loaded=False, can_instantiate=False,
                               error=f"Timed out after {CHECK_TIMEOUT:.0f}s checking script")
        self._checks[res_path] = (stamp, check)
        return check

    def _check_with_godot(self, res_path: str) -> ScriptCheck:
        cmd = [
            self.godot_binary or "godot",
            "--headless",
            "--path", str(self.project_root),
            "--check-only",
            "--script", res_path,
        ]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=CHECK_TIMEOUT)
        except OSError as exc:
            raise EditorIntegrationUnavailable(
                "Could not launch Godot for script checks", {"binary": self.godot_binary, "error": exc}
            ) from exc

        output = (proc.stderr or "") + "\n" + (proc.stdout or "")
        lines = output.splitlines()
        for i, line in enumerate(lines):
            if self._classifier.classify(line) != "error":
                continue
            next_line = lines[i + 1] if i + 1 < len(lines) else None
            _, line_no = extract_file_line(line, next_line)
            return ScriptCheck(loaded=False, can_instantiate=False, error=line.strip(), line=line_no)
        if proc.returncode != 0:
            return ScriptCheck(loaded=True, can_instantiate=False,
                               error=f"Godot exited with code {proc.returncode} while checking script")
        return ScriptCheck(loaded=True, can_instantiate=True)

    # --- play control ---

    def play_scene(self, res_path: str) -> None:
        if not self.godot_binary:
            raise EditorIntegrationUnavailable(
                "Cannot play scenes: no Godot executable configured (set GODOT_PATH)"
            )
        self.stop_scene()
        cmd = [self.godot_binary, "--path", str(self.project_root), res_path]
        try:
            self._play_process = subprocess.Popen(
                cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except OSError as exc:
            raise EditorIntegrationUnavailable(
                "Could not launch Godot", {"binary": self.godot_binary, "error": exc}
            ) from exc
        logger.info("Playing %s (pid %d)", res_path, self._play_process.pid)

    def stop_scene(self) -> bool:
        proc = self._play_process
        self._play_process = None
        if proc is None or proc.poll() is not None:
            return False
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
        return True

    def is_playing(self) -> bool:
        return self._play_process is not None and self._play_process.poll() is None
