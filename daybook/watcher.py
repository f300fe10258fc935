"""Debounced filesystem watcher for git branch refs.

Watches <repo>/.git/refs/heads/ for every discovered repository and turns
bursts of ref updates into batches of changed repositories.

watchdog delivers events on its observer thread. The handler only pushes
the event path onto the asyncio loop; all debouncing and repo matching
happens in the consumer coroutine.

Usage:
    watcher = ChangeWatcher(repos)
    watcher.start()
    async for changed in watcher.batches():
        ...
    watcher.stop()
    await watcher.wait_closed()
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncIterator, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import WatcherError

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 2.0

# Wakes a consumer blocked in next_batch() after stop().
_STOP = object()


def refs_path(repo: Path) -> Path:
    return repo / ".git" / "refs" / "heads"


class _RefsHandler(FileSystemEventHandler):
    """Forwards every event path to the loop. Runs on the observer thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue):
        super().__init__()
        self._loop = loop
        self._queue = queue

    def on_any_event(self, event: FileSystemEvent):
        paths = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(dest)
        for path in paths:
            if isinstance(path, bytes):
                path = os.fsdecode(path)
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, path)
            except RuntimeError:
                # Loop already closed during shutdown; nothing left to notify.
                logger.debug("Dropping event for %s: loop closed", path)
                return


class ChangeWatcher:
    """Coalesces ref-change notifications into batches of repositories."""

    def __init__(self, repos: list[Path], debounce: float = DEBOUNCE_SECONDS):
        self.repos = list(repos)
        self.debounce = debounce
        self._refs = [(repo, str(refs_path(repo))) for repo in self.repos]
        self._queue: asyncio.Queue = asyncio.Queue()
        self._observer: Optional[Observer] = None
        self._running = False
        self._stopped = False
        self.watched: list[Path] = []

    @property
    def running(self) -> bool:
        return self._running

    def start(self, loop: asyncio.AbstractEventLoop | None = None):
        """Register one recursive watch per repository and start observing.

        Repositories whose watch cannot be registered are logged and skipped.
        """
        loop = loop or asyncio.get_running_loop()
        handler = _RefsHandler(loop, self._queue)
        observer = Observer()

        # Started before scheduling: on a running observer schedule() arms
        # the OS watch immediately, so a bad repo fails on its own.
        try:
            observer.start()
        except (OSError, RuntimeError) as e:
            raise WatcherError(f"Failed to start filesystem observer: {e}") from e

        for repo, refs in self._refs:
            if not os.path.isdir(refs):
                logger.debug("No refs directory for %s", repo)
                continue
            try:
                observer.schedule(handler, refs, recursive=True)
            except OSError as e:
                logger.warning("Failed to watch %s: %s", refs, e)
                continue
            self.watched.append(repo)

        # Held for the watcher's lifetime; dropping it stops notifications.
        self._observer = observer
        self._running = True
        logger.info("Watching %d of %d repos (debounce=%.1fs)",
                    len(self.watched), len(self.repos), self.debounce)

    def stop(self):
        """Stop delivering batches and wake the consumer. Idempotent.

        The observer thread is told to stop but not joined here; await
        wait_closed() to release the watch handles.
        """
        if self._stopped:
            return
        self._stopped = True
        self._running = False
        if self._observer is not None:
            self._observer.stop()
        self._queue.put_nowait(_STOP)
        logger.info("Change watcher stopped")

    async def wait_closed(self, timeout: float = 5.0):
        """Join the observer thread without blocking the event loop."""
        self.stop()
        observer, self._observer = self._observer, None
        if observer is not None:
            await asyncio.to_thread(observer.join, timeout)

    def notify(self, path: str):
        """Queue a path as if the filesystem had reported it."""
        self._queue.put_nowait(path)

    def repos_for_paths(self, paths: list[str]) -> list[Path]:
        """Distinct repos whose refs path contains any of paths, first-seen order."""
        changed: list[Path] = []
        for path in paths:
            for repo, refs in self._refs:
                if path == refs or path.startswith(refs + os.sep):
                    if repo not in changed:
                        changed.append(repo)
                    break
        return changed

    async def next_batch(self) -> list[Path] | None:
        """Wait for a burst of events and return the repos it touched.

        Returns None once the watcher has been stopped.
        """
        first = await self._queue.get()
        if first is _STOP:
            return None
        paths = [first]
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=self.debounce)
            except asyncio.TimeoutError:
                break
            if item is _STOP:
                # Deliver what was collected; the next call sees the stop.
                self._queue.put_nowait(_STOP)
                break
            paths.append(item)
        return self.repos_for_paths(paths)

    async def batches(self) -> AsyncIterator[list[Path]]:
        """Yield non-empty batches until the watcher is stopped."""
        while True:
            batch = await self.next_batch()
            if batch is None:
                return
            if batch:
                yield batch
            if not self._running:
                return
