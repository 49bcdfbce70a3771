"""File watching on top of watchdog.

Each ``WatchRule`` owns a ``running`` and a ``pending`` flag. A change that
arrives while the rule's tasks are running only sets ``pending``; when the run
finishes exactly one more run happens, however many changes were seen.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from . import cache as cache_mod
from .errors import SitepipeError
from .logging import get_logger


log = get_logger("sitepipe.watch")

# opened/closed events carry no content change
CHANGE_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}


@dataclass
class WatchRule:
    name: str
    patterns: Tuple[str, ...]
    on_change: Tuple[str, ...]
    run: Callable[[], object]
    running: bool = False
    pending: bool = False
    runs: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _worker: Optional[threading.Thread] = field(default=None, repr=False)

    def trigger(self) -> None:
        """Request a run; coalesces with a run already in flight."""
        with self._lock:
            if self.running:
                self.pending = True
                return
            self.running = True
            self._worker = threading.Thread(
                target=self._loop, name=f"watch-{self.name}", daemon=True
            )
            self._worker.start()

    def _loop(self) -> None:
        while True:
            try:
                self.runs += 1
                self.run()
            except SitepipeError as e:
                log.error("Watch rule %s failed: %s", self.name, e)
            except Exception:  # noqa: BLE001
                log.exception("Watch rule %s crashed", self.name)
            with self._lock:
                if not self.pending:
                    self.running = False
                    return
                self.pending = False

    def join(self, timeout: float | None = None) -> None:
        worker = self._worker
        if worker is not None:
            worker.join(timeout)


def watch_dirs(patterns: Iterable[str], root: Path) -> List[Path]:
    """Existing directories to observe (recursively) for ``patterns``.

    A pattern whose fixed folder does not exist yet is watched from its
    nearest existing parent inside ``root``.
    """
    dirs: List[Path] = []
    for raw in patterns:
        for pat in cache_mod.expand_braces(raw):
            d = root / cache_mod.glob_base(pat)
            while not d.is_dir() and d != root and root in d.parents:
                d = d.parent
            if d.is_dir() and d not in dirs:
                dirs.append(d)
    # nested folders are already covered by their recursive parent
    return [d for d in dirs if not any(p in dirs for p in d.parents)]


class RuleHandler(FileSystemEventHandler):
    """Routes matching file events to one rule, after ``debounce`` seconds of quiet."""

    def __init__(self, rule: WatchRule, root: Path, debounce: float = 0.2):
        super().__init__()
        self.rule = rule
        self.root = root
        self.debounce = debounce
        self._patterns = [
            cache_mod._normalize(root / p)
            for raw in rule.patterns
            for p in cache_mod.expand_braces(raw)
        ]
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def matches(self, path: str) -> bool:
        s = cache_mod._normalize(Path(path))
        return any(cache_mod._match(s, p) for p in self._patterns)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in CHANGE_EVENTS:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(p and self.matches(str(p)) for p in paths):
            self.schedule()

    def schedule(self) -> None:
        if self.debounce <= 0:
            self.fire()
            return
        # every new event restarts the quiet period
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self.fire)
            self._timer.daemon = True
            self._timer.start()

    def fire(self) -> None:
        with self._lock:
            self._timer = None
        log.info("Change detected: %s -> %s", self.rule.name, ", ".join(self.rule.on_change))
        self.rule.trigger()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class Watcher:
    """Observe the folders behind each rule's patterns and trigger matching rules."""

    def __init__(self, rules: List[WatchRule], root: Path, debounce: float = 0.2):
        self.rules = rules
        self.root = Path(root).resolve()
        self.handlers = [RuleHandler(r, self.root, debounce) for r in rules]
        self.observer = Observer()
        self._stop = threading.Event()

    def start(self) -> "Watcher":
        for handler in self.handlers:
            dirs = watch_dirs(handler.rule.patterns, self.root)
            if not dirs:
                log.warning("Nothing to watch for %s", handler.rule.name)
            for d in dirs:
                self.observer.schedule(handler, str(d), recursive=True)
        self.observer.start()
        log.info("Watching %d rule(s)", len(self.rules))
        return self

    def close(self) -> None:
        """Stop observing; in-flight runs are allowed to finish."""
        self.observer.stop()
        if self.observer.is_alive():
            self.observer.join()
        for handler in self.handlers:
            handler.cancel()
        for rule in self.rules:
            rule.join()
        log.info("Stopped watching")

    def run_forever(self) -> None:
        self.start()
        try:
            while not self._stop.wait(1.0):
                pass
        finally:
            self.close()

    def stop(self) -> None:
        self._stop.set()
