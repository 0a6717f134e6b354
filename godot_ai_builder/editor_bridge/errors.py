"""Error collector: the authoritative error/warning list for a project.

Two independent evidence sources are merged on every call:

* active validation: every script is force-loaded through the editor host,
  so parse errors show up even for files that never ran;
* log tailing: the last 50 KB of the project and editor logs are scanned
  for error/warning lines.

Script checks run concurrently under an overall deadline, and the collector
keeps nothing between calls. Entries are deduplicated on
``file + "|" + message[:80]``, which can fold two distinct errors in one
file into a single entry when their messages share a long prefix.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from godot_ai_builder import scanner
from godot_ai_builder.editor_bridge.host import EditorHost
from godot_ai_builder.editor_bridge.log_classifier import (
    ErrorLineClassifier,
    LogLineClassifier,
    extract_file_line,
)
from godot_ai_builder.exceptions import ProjectPathError

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 50
DEDUP_PREFIX = 80
CONTEXT_RADIUS = 2
VALIDATION_WORKERS = 8
# Below the proxy's 8s timeout for error calls, leaving room for log scanning.
VALIDATION_DEADLINE = 6.0


@dataclass(frozen=True)
class ErrorEntry:
    message: str
    file: str = ""
    line: int = -1
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def dedup_key(entry: ErrorEntry) -> str:
    return f"{entry.file}|{entry.message[:DEDUP_PREFIX]}"


def dedup_entries(entries: Iterable[ErrorEntry]) -> list[ErrorEntry]:
    """Drop entries whose dedup key was already seen, keeping first-seen order."""
    seen: set[str] = set()
    unique: list[ErrorEntry] = []
    for entry in entries:
        key = dedup_key(entry)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    return unique


@dataclass
class ErrorReport:
    errors: list[ErrorEntry] = field(default_factory=list)
    warnings: list[ErrorEntry] = field(default_factory=list)
    scripts_checked: int = 0
    log_sources: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "scripts_checked": self.scripts_checked,
            "log_sources": self.log_sources,
        }


def default_log_paths(project_root: Path, project_name: str) -> list[Path]:
    """Project-local log plus the editor's per-project logs on Linux, macOS and Windows.

    All candidates are returned regardless of the current OS; the collector
    reads the ones that exist.
    """
    paths = [project_root / "logs" / "godot.log"]
    if project_name:
        home = Path.home()
        user_dirs = [
            home / ".local" / "share" / "godot",
            home / "Library" / "Application Support" / "Godot",
        ]
        appdata = os.environ.get("APPDATA")
        if appdata:
            user_dirs.append(Path(appdata) / "Godot")
        elif sys.platform == "win32":
            user_dirs.append(home / "AppData" / "Roaming" / "Godot")
        for base in user_dirs:
            paths.append(base / "app_userdata" / project_name / "logs" / "godot.log")
    return paths


class ErrorCollector:
    def __init__(
        self,
        host: EditorHost,
        project_root: Path,
        log_paths: Sequence[Path] | None = None,
        classifier: LogLineClassifier | None = None,
        clock: Callable[[], float] = time.time,
        max_log_entries: int = MAX_LOG_ENTRIES,
        tail_bytes: int = scanner.DEFAULT_TAIL_BYTES,
        validation_workers: int = VALIDATION_WORKERS,
        validation_deadline: float = VALIDATION_DEADLINE,
    ) -> None:
        self.host = host
        self.project_root = project_root
        self._log_paths = list(log_paths) if log_paths is not None else None
        self.classifier = classifier or ErrorLineClassifier()
        self.clock = clock
        self.max_log_entries = max_log_entries
        self.tail_bytes = tail_bytes
        self.validation_workers = max(1, validation_workers)
        self.validation_deadline = validation_deadline

    def log_paths(self) -> list[Path]:
        if self._log_paths is not None:
            return self._log_paths
        name = self.host.project_settings().get("application/config/name", "")
        return default_log_paths(self.project_root, name)

    def collect(self) -> ErrorReport:
        """Run both strategies from scratch and merge them per category."""
        validation_errors, checked = self.validate_scripts()
        log_errors, log_warnings, sources = self.scan_logs()
        report = ErrorReport(
            errors=dedup_entries([*validation_errors, *log_errors]),
            warnings=dedup_entries(log_warnings),
            scripts_checked=checked,
            log_sources=sources,
        )
        logger.debug(
            "Collected %d error(s), %d warning(s) from %d script(s) and %d log(s)",
            len(report.errors), len(report.warnings), checked, len(sources),
        )
        return report

    def validate_scripts(self) -> tuple[list[ErrorEntry], int]:
        """Force-load every script, several at a time, within ``validation_deadline`` seconds.

        A check still running at the deadline is reported as an error for its
        script, so an unfinished pass never reads as a clean project.
        """
        now = int(self.clock())
        errors: list[ErrorEntry] = []
        scripts = self.host.list_files(scanner.SCRIPT_EXTENSIONS)
        if not scripts:
            return errors, 0

        pool = ThreadPoolExecutor(
            max_workers=min(self.validation_workers, len(scripts)),
            thread_name_prefix="script-check",
        )
        try:
            futures = {pool.submit(self.host.validate_script, res_path): res_path for res_path in scripts}
            done, pending = wait(futures, timeout=self.validation_deadline)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        if pending:
            logger.warning("%d script check(s) still running after %.1fs", len(pending), self.validation_deadline)

        for future, res_path in futures.items():
            if future not in done:
                errors.append(ErrorEntry(
                    message=f"Script check did not finish within {self.validation_deadline:g}s: {res_path}",
                    file=res_path,
                    timestamp=now,
                ))
                continue
            check = future.result()
            if check.ok:
                continue
            if check.error:
                message = check.error
            elif not check.loaded:
                message = f"Script failed to load: {res_path}"
            else:
                message = f"Script cannot be instantiated: {res_path}"
            errors.append(ErrorEntry(message=message, file=res_path, line=check.line, timestamp=now))
        return errors, len(scripts)

    def scan_logs(self) -> tuple[list[ErrorEntry], list[ErrorEntry], list[str]]:
        """Classify tail lines of every existing log; keep the newest N per category."""
        now = int(self.clock())
        errors: deque[ErrorEntry] = deque(maxlen=self.max_log_entries)
        warnings: deque[ErrorEntry] = deque(maxlen=self.max_log_entries)
        sources: list[str] = []

        for path in self.log_paths():
            if not path.is_file():
                continue
            sources.append(str(path))
            lines = scanner.tail_text_file(path, self.tail_bytes).splitlines()
            for i, raw in enumerate(lines):
                line = raw.strip()
                if not line:
                    continue
                severity = self.classifier.classify(line)
                if severity is None:
                    continue
                next_line = lines[i + 1] if i + 1 < len(lines) else None
                file, line_no = extract_file_line(line, next_line)
                entry = ErrorEntry(message=line, file=file, line=line_no, timestamp=now)
                (errors if severity == "error" else warnings).append(entry)

        return list(errors), list(warnings), sources

    def source_context(self, entry: ErrorEntry, radius: int = CONTEXT_RADIUS) -> list[str]:
        """Numbered source lines around an entry's line, or [] if unknown."""
        if not entry.file or entry.line < 1:
            return []
        try:
            lines = self.host.read_text(entry.file).splitlines()
        except (OSError, UnicodeDecodeError, ProjectPathError):
            return []
        start = max(entry.line - radius, 1)
        end = min(entry.line + radius, len(lines))
        return [f"{n}: {lines[n - 1]}" for n in range(start, end + 1)]

    def collect_detailed(self) -> dict[str, Any]:
        report = self.collect()
        payload = report.to_dict()
        for key, entries in (("errors", report.errors), ("warnings", report.warnings)):
            payload[key] = [
                {**entry.to_dict(), "context": self.source_context(entry)} for entry in entries
            ]
        payload["detailed"] = True
        return payload
