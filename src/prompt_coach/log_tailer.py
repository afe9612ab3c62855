"""
Live tailing of append-only JSONL conversation logs.

Watches a directory tree for *.jsonl changes and emits one "prompt"
event per newly appended user prompt.

Per file:
- Files present at start() are tracked from their current size; files
  first seen later are read from the beginning
- Raw change notifications re-arm a per-file debounce timer; the file is
  read once the timer elapses without another notification
- A change whose (size, mtime) matches the last processed change is
  ignored, so duplicate or replayed notifications cost nothing
- A file that shrank or whose inode changed was truncated or replaced
  and is re-read from offset 0
- Only complete, newline-terminated lines are consumed; a trailing
  partial line is picked up by the next read

A bounded FIFO set of (project, session id, timestamp) keys drops
prompts already emitted during this run.
"""

import asyncio
import logging
import os
import signal
import sys
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Hashable

import aiofiles
from watchfiles import Change, awatch

from .common_types import FilePosition, PromptEvent
from .config import CoachConfig
from .log_parser import extract_project_name, parse_line, prompt_from_record
from .run_context import RunContext

logger = logging.getLogger(__name__)

EVENT_PROMPT = "prompt"
EVENT_ERROR = "error"
EVENT_READY = "ready"
EVENTS = (EVENT_PROMPT, EVENT_ERROR, EVENT_READY)

LOG_SUFFIX = ".jsonl"
DEFAULT_DEBOUNCE_SECONDS = 0.5
DEFAULT_RECENT_CAPACITY = 1000
WATCHFILES_DEBOUNCE_MS = 50

ChangesSource = Callable[[Path, asyncio.Event], AsyncIterator[set[tuple[Change, str]]]]


class RecentEmissions:
    """
    Bounded set of recently emitted keys.

    Eviction is by insertion order (FIFO): a repeated key is rejected but
    does not refresh its position.
    """

    def __init__(self, capacity: int = DEFAULT_RECENT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._keys: OrderedDict[Hashable, None] = OrderedDict()

    def add(self, key: Hashable) -> bool:
        """Record key. Returns False if it was already present."""
        if key in self._keys:
            return False
        self._keys[key] = None
        while len(self._keys) > self.capacity:
            self._keys.popitem(last=False)
        return True

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


@dataclass
class TailerStats:
    """Counters for one tailing run."""
    reads: int = 0
    lines_read: int = 0
    prompts_emitted: int = 0
    malformed_lines: int = 0
    duplicates_suppressed: int = 0
    ignored_notifications: int = 0
    files_reset: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


class LogTailer:
    """
    Tails every *.jsonl file under a root directory.

    Usage:
        tailer = LogTailer(Path("~/.claude/projects").expanduser())
        tailer.on("prompt", lambda event: print(event.prompt.content))
        await tailer.start(handle_signals=True)
        await tailer.wait_closed()
    """

    def __init__(
        self,
        root: str | Path,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        project_filter: str | None = None,
        recent_capacity: int = DEFAULT_RECENT_CAPACITY,
        force_polling: bool = False,
        changes_source: ChangesSource | None = None,
        context: RunContext | None = None,
    ):
        self.root = Path(root)
        self.debounce_seconds = debounce_seconds
        self.project_filter = project_filter
        self.force_polling = force_polling
        self.context = context or RunContext(logger=logger)
        self.stats = TailerStats()

        self._changes_source = changes_source or self._watchfiles_source
        self._recent = RecentEmissions(recent_capacity)
        self._listeners: dict[str, list[Callable[..., Any]]] = {name: [] for name in EVENTS}
        self._positions: dict[str, FilePosition] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._reads: set[asyncio.Task] = set()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._watch_task: asyncio.Task | None = None
        self._signals: list[signal.Signals] = []
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: CoachConfig,
        project_filter: str | None = None,
        changes_source: ChangesSource | None = None,
        context: RunContext | None = None,
    ) -> "LogTailer":
        """Tailer over config.logs_dir with the configured debounce, dedup window and polling mode."""
        return cls(
            config.logs_dir,
            debounce_seconds=config.debounce_seconds,
            project_filter=project_filter,
            recent_capacity=config.recent_capacity,
            force_polling=config.force_polling,
            changes_source=changes_source,
            context=context,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def positions(self) -> dict[str, FilePosition]:
        return dict(self._positions)

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """Register a callback for "prompt" (PromptEvent), "error" (Exception) or "ready" ()."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)

    def _emit(self, event: str, *args: Any) -> None:
        if event != EVENT_READY and not self._running:
            return
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception as e:
                self.context.error(f"[TAIL] {event} listener failed: {e}", exc_info=True)

    def _emit_error(self, error: Exception) -> None:
        self.context.warn(f"[TAIL] {error}")
        self._emit(EVENT_ERROR, error)

    def _matches(self, path: str) -> bool:
        if not path.endswith(LOG_SUFFIX):
            return False
        if not self.project_filter:
            return True
        return self.project_filter in extract_project_name(path, self.root)

    # ----------------------------------------------------------------- lifecycle

    async def start(self, handle_signals: bool = False) -> None:
        """
        Record current file sizes and begin observing the root.

        Raises:
            FileNotFoundError: If the root directory does not exist
            RuntimeError: If the tailer is already running
        """
        if self._running:
            raise RuntimeError("LogTailer is already running")
        if not self.root.is_dir():
            raise FileNotFoundError(f"Log directory not found: {self.root}")

        self._loop = asyncio.get_running_loop()
        await self._scan_existing()

        self._stop_event = asyncio.Event()
        self._running = True
        if handle_signals:
            self._install_signal_handlers()
        self._watch_task = self._loop.create_task(self._watch_loop())

        self.context.info(f"[TAIL] Watching {len(self._positions)} files under {self.root}")
        self._emit(EVENT_READY)

    def stop(self) -> None:
        """
        Stop tailing. Safe to call from a signal handler and more than once.

        No prompt or error event fires after this returns.
        """
        if not self._running:
            return
        self._running = False

        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        for task in list(self._reads):
            task.cancel()

        if self._stop_event is not None:
            self._stop_event.set()
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()

        self._remove_signal_handlers()
        self.context.info("[TAIL] Stopped")

    async def wait_closed(self) -> None:
        """Wait until the watcher and any cancelled reads have finished."""
        if self._watch_task is not None and self._running:
            await asyncio.wait([self._watch_task])
        tasks = [t for t in (self._watch_task, *self._reads) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _install_signal_handlers(self) -> None:
        # Unix only
        if sys.platform == "win32":
            return
        for sig in (signal.SIGTERM, signal.SIGINT):
            self._loop.add_signal_handler(sig, self.stop)
            self._signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        for sig in self._signals:
            self._loop.remove_signal_handler(sig)
        self._signals.clear()

    async def _scan_existing(self) -> None:
        def scan() -> list[tuple[str, os.stat_result]]:
            found = []
            for path in self.root.rglob(f"*{LOG_SUFFIX}"):
                if not self._matches(str(path)):
                    continue
                try:
                    found.append((str(path), path.stat()))
                except OSError:
                    continue
            return found

        for path, stat in await asyncio.to_thread(scan):
            self._positions[path] = FilePosition(
                path=path,
                byte_size=stat.st_size,
                last_modified=stat.st_mtime,
                observed_size=stat.st_size,
                inode=stat.st_ino,
            )

    # ------------------------------------------------------------- notifications

    def _watchfiles_source(self, root: Path, stop_event: asyncio.Event) -> AsyncIterator[set[tuple[Change, str]]]:
        return awatch(
            root,
            stop_event=stop_event,
            recursive=True,
            force_polling=self.force_polling,
            debounce=WATCHFILES_DEBOUNCE_MS,
            watch_filter=lambda change, path: self._matches(path),
        )

    async def _watch_loop(self) -> None:
        try:
            async for changes in self._changes_source(self.root, self._stop_event):
                if not self._running:
                    break
                for change, path in changes:
                    if change == Change.deleted:
                        self._forget(path)
                    else:
                        self.notify(path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._emit_error(e)

    def notify(self, path: str | Path) -> None:
        """Handle one raw change notification for path by (re)arming its debounce timer."""
        if not self._running:
            return
        path = str(path)
        if not self._matches(path):
            return

        timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()
        self._timers[path] = self._loop.call_later(self.debounce_seconds, self._on_debounced, path)

    def _forget(self, path: str) -> None:
        timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()
        self._positions.pop(path, None)

    def _on_debounced(self, path: str) -> None:
        self._timers.pop(path, None)
        if not self._running:
            return
        task = self._loop.create_task(self._process(path))
        self._reads.add(task)
        task.add_done_callback(self._reads.discard)

    # ------------------------------------------------------------------ reading

    async def _process(self, path: str) -> None:
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            if not self._running:
                return
            try:
                await self._read_new_lines(path)
            except FileNotFoundError:
                self._forget(path)
            except OSError as e:
                self._emit_error(e)

    async def _read_new_lines(self, path: str) -> None:
        stat = await asyncio.to_thread(os.stat, path)
        size, mtime = stat.st_size, stat.st_mtime

        position = self._positions.get(path)
        if position is None:
            position = FilePosition(path=path, byte_size=0, last_modified=0.0, observed_size=0)
            self._positions[path] = position
        elif (size, mtime, stat.st_ino) == (position.observed_size, position.last_modified, position.inode):
            self.stats.ignored_notifications += 1
            return

        replaced = bool(position.inode and stat.st_ino and position.inode != stat.st_ino)
        if replaced or size < position.observed_size or size < position.byte_size:
            self.context.debug(f"[TAIL] {path} was truncated or replaced, reading from start")
            position.byte_size = 0
            self.stats.files_reset += 1

        position.observed_size = size
        position.last_modified = mtime
        position.inode = stat.st_ino
        if size <= position.byte_size:
            return

        async with aiofiles.open(path, "rb") as f:
            await f.seek(position.byte_size)
            data = await f.read(size - position.byte_size)
        self.stats.reads += 1

        end = data.rfind(b"\n")
        if end == -1:
            return
        complete = data[:end + 1]
        position.byte_size += len(complete)

        project = extract_project_name(path, self.root)
        for raw in complete.split(b"\n"):
            if not raw.strip():
                continue
            self._handle_line(raw, path, project)

    def _handle_line(self, raw: bytes, path: str, project: str) -> None:
        self.stats.lines_read += 1
        try:
            record = parse_line(raw.decode("utf-8"))
        except UnicodeDecodeError:
            record = None
        if record is None:
            self.stats.malformed_lines += 1
            self.context.debug(f"[TAIL] Skipping malformed line in {path}")
            return

        prompt = prompt_from_record(record, project)
        if prompt is None:
            return

        if not self._recent.add((prompt.project, prompt.session_id, prompt.timestamp)):
            self.stats.duplicates_suppressed += 1
            return

        self.stats.prompts_emitted += 1
        self._emit(EVENT_PROMPT, PromptEvent(prompt=prompt, file_path=path))
