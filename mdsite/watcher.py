from __future__ import annotations

import fnmatch
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import SiteConfig

logger = logging.getLogger(__name__)

VIEW_PATTERNS = ["*.html", "*.j2", "*.jinja"]
REBUILD_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}

_CHANGE = "change"
_STOP = "stop"


class RebuildCoordinator:
    """Turns bursts of change notifications into single builds.

    ``notify`` only posts a message; one coordinator thread owns the state:
    idle until a change arrives, pending while changes keep arriving within
    ``debounce`` seconds, then building. Changes received during a build are
    kept in the queue and start a new pending period once it returns, so two
    builds never overlap and a running build is never interrupted.
    """

    def __init__(self, build: Callable[[], object], debounce: float):
        self.build = build
        self.debounce = debounce
        self.builds = 0
        self._events: queue.Queue[str] = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "RebuildCoordinator":
        if self._thread is None:
            self._thread = threading.Thread(target=self._loop, name="mdsite-rebuild", daemon=True)
            self._thread.start()
        return self

    def notify(self) -> None:
        self._events.put(_CHANGE)

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._thread is None:
            return
        self._events.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def __enter__(self) -> "RebuildCoordinator":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _loop(self) -> None:
        while True:
            # idle
            if self._events.get() == _STOP:
                return
            # pending
            deadline = time.monotonic() + self.debounce
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    message = self._events.get(timeout=remaining)
                except queue.Empty:
                    break
                if message == _STOP:
                    return
                deadline = time.monotonic() + self.debounce
            # building
            self._run_build()

    def _run_build(self) -> None:
        self.builds += 1
        try:
            self.build()
        except Exception:
            logger.exception("Rendering failed")


@dataclass
class WatchedRoot:
    path: Path
    patterns: list[str] = field(default_factory=list)

    def accepts(self, name: str) -> bool:
        if not self.patterns:
            return True
        return any(fnmatch.fnmatch(name, pattern) for pattern in self.patterns)


def file_patterns(includes: list[str]) -> list[str]:
    """Watch filters only see file names, keep the last segment of each glob.

    An include ending with ``**`` or ``/*`` means anything may change.
    """
    if any(item.endswith("**") or item.endswith("/*") for item in includes):
        return []
    patterns: list[str] = []
    for item in includes:
        pattern = item.rsplit("/", 1)[-1]
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


def watch_roots(config: SiteConfig) -> list[WatchedRoot]:
    """Directories to observe; a root nested in (or equal to) another is merged into it."""
    candidates = [
        WatchedRoot(config.input.root.resolve(), file_patterns(config.input.sources.includes)),
        WatchedRoot(config.input.assets_dir.resolve(), file_patterns(config.input.assets.includes)),
        WatchedRoot(config.input.views_dir.resolve(), list(VIEW_PATTERNS)),
    ]
    candidates = [item for item in candidates if item.path.is_dir()]
    candidates.sort(key=lambda item: len(item.path.parts))

    roots: list[WatchedRoot] = []
    for candidate in candidates:
        parent = next((root for root in roots if candidate.path.is_relative_to(root.path)), None)
        if parent is None:
            roots.append(candidate)
        elif parent.patterns:
            if not candidate.patterns:
                parent.patterns = []
            else:
                parent.patterns.extend(item for item in candidate.patterns if item not in parent.patterns)
    return roots


class ChangeHandler(FileSystemEventHandler):
    def __init__(self, root: WatchedRoot, ignored: Path, on_change: Callable[[], None]):
        super().__init__()
        self.root = root
        self.ignored = ignored
        self.on_change = on_change

    def _relevant(self, path: str) -> bool:
        if not path:
            return False
        resolved = Path(os.fsdecode(path)).resolve()
        if resolved == self.ignored or resolved.is_relative_to(self.ignored):
            return False
        return self.root.accepts(resolved.name)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in REBUILD_EVENTS:
            return
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(self._relevant(path) for path in paths):
            self.on_change()


class FileWatcher:
    def __init__(self, config: SiteConfig, on_change: Callable[[], None]):
        self.config = config
        self.on_change = on_change
        self._observer: Optional[Observer] = None

    def start(self) -> "FileWatcher":
        observer = Observer()
        ignored = self.config.output_dir.resolve()
        for root in watch_roots(self.config):
            observer.schedule(ChangeHandler(root, ignored, self.on_change), str(root.path), recursive=True)
            logger.info("Watching change in '%s' for patterns %s", root.path, root.patterns or ["*"])
        observer.start()
        self._observer = observer
        return self

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None

    def __enter__(self) -> "FileWatcher":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
