#!/usr/bin/env python3
"""daybook background daemon.

Watches local git repositories for new commits, stages them per day under
~/.daybook/staging/, and writes one LLM-generated note per day to
~/.daybook/daily/<date>.md at the configured hour (or on request).

Usage:
    daybook run                   # watch + schedule until Ctrl+C
    daybook summarize [--date D]  # summarize a staged date now
    daybook status                # print watcher/staging status as JSON
    daybook note [DATE]           # print a daily note
    daybook trigger               # ask the running daemon to summarize today
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys

from .config import load_config
from .errors import ConfigError, DaybookError, StorageError
from .events import today
from .git_source import build_sources
from .scheduler import Scheduler
from .storage import Storage
from .summarizer import summarize_day

logger = logging.getLogger(__name__)

MANUAL_TRIGGER_SIGNAL = getattr(signal, "SIGUSR1", None)


class Daybook:
    """Owns the sources and the scheduler for one process lifetime."""

    def __init__(self, config: dict, storage: Storage | None = None, provider=None):
        self.config = config
        self.storage = storage or Storage.from_config(config)
        self.provider = provider
        self.sources = build_sources(config, self.storage)
        self.scheduler = Scheduler(config, summarize=self.summarize)
        self._tasks: list[asyncio.Task] = []
        self._stopping: asyncio.Event | None = None

    async def summarize(self, date: str) -> bool:
        return await summarize_day(date, self.config, provider=self.provider, storage=self.storage)

    def status(self) -> dict:
        """Read-only snapshot for presentation layers."""
        return {
            "watchers_running": any(source.running for source in self.sources),
            "buffered_events": self.storage.staging.count(today()),
            "last_summarized": self.scheduler.state.last_summarized,
        }

    def start_sources(self):
        for source in self.sources:
            try:
                if source.start():
                    logger.info("%s watcher started", source.name)
            except DaybookError:
                logger.exception("Failed to start %s watcher", source.name)

    def stop(self):
        """Stop watchers and wake run(). Idempotent."""
        for source in self.sources:
            source.stop()
        if self._stopping is not None:
            self._stopping.set()

    async def run(self):
        """Run until stop() or a termination signal."""
        self.storage.ensure_dirs()
        self._stopping = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._install_signal_handlers(loop)
        self._write_pid()

        self.start_sources()
        for source in self.sources:
            if source.running:
                self._tasks.append(asyncio.create_task(source.run(), name=f"source-{source.name}"))
        self._tasks.append(asyncio.create_task(self.scheduler.run(), name="scheduler"))

        try:
            await self._stopping.wait()
        finally:
            self.stop()
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
            for source in self.sources:
                await source.wait_closed()
            self._remove_pid()
            logger.info("daybook stopped")

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        handlers = {signal.SIGINT: self.stop, signal.SIGTERM: self.stop}
        if MANUAL_TRIGGER_SIGNAL is not None:
            handlers[MANUAL_TRIGGER_SIGNAL] = self.scheduler.request_summary
        for sig, handler in handlers.items():
            try:
                loop.add_signal_handler(sig, handler)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal %s not supported on this platform", sig)

    def _write_pid(self):
        try:
            self.storage.pid_path.write_text(f"{os.getpid()}\n", encoding="utf-8")
        except OSError as e:
            logger.warning("Could not write pid file %s: %s", self.storage.pid_path, e)

    def _remove_pid(self):
        try:
            self.storage.pid_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove pid file %s: %s", self.storage.pid_path, e)


def send_manual_trigger(storage: Storage) -> int:
    """Signal the running daemon to summarize today. Returns the daemon pid."""
    if MANUAL_TRIGGER_SIGNAL is None:
        raise DaybookError("Manual trigger signal is not supported on this platform")
    try:
        pid = int(storage.pid_path.read_text(encoding="utf-8").strip())
    except FileNotFoundError as e:
        raise DaybookError("daybook daemon is not running (no pid file)") from e
    except (OSError, ValueError) as e:
        raise DaybookError(f"Unreadable pid file {storage.pid_path}: {e}") from e
    try:
        os.kill(pid, MANUAL_TRIGGER_SIGNAL)
    except ProcessLookupError as e:
        raise DaybookError(f"daybook daemon (pid {pid}) is not running") from e
    return pid


def _cmd_run(config: dict, args) -> int:
    daemon = Daybook(config)
    logger.info("daybook daemon starting")
    logger.info("  Storage: %s", daemon.storage.base_dir)
    logger.info("  Sources: %s", ", ".join(s.name for s in daemon.sources) or "none")
    asyncio.run(daemon.run())
    return 0


def _cmd_summarize(config: dict, args) -> int:
    date = args.date or today()
    written = asyncio.run(summarize_day(date, config))
    print(f"Note written for {date}" if written else f"Nothing staged for {date}")
    return 0


def _cmd_status(config: dict, args) -> int:
    storage = Storage.from_config(config)
    running = False
    try:
        pid = int(storage.pid_path.read_text(encoding="utf-8").strip())
        os.kill(pid, 0)
        running = True
    except (OSError, ValueError):
        pass
    notes = storage.list_daily_notes()
    status = {
        "watchers_running": running,
        "buffered_events": storage.staging.count(today()),
        "last_summarized": notes[-1] if notes else None,
        "staged_dates": storage.staging.dates(),
    }
    print(json.dumps(status, indent=2))
    return 0


def _cmd_note(config: dict, args) -> int:
    date = args.date or today()
    note = Storage.from_config(config).read_daily_note(date)
    if note is None:
        print(f"No note for {date}", file=sys.stderr)
        return 1
    print(note, end="" if note.endswith("\n") else "\n")
    return 0


def _cmd_trigger(config: dict, args) -> int:
    pid = send_manual_trigger(Storage.from_config(config))
    print(f"Summarization requested (pid {pid})")
    return 0


COMMANDS = {
    "run": _cmd_run,
    "summarize": _cmd_summarize,
    "status": _cmd_status,
    "note": _cmd_note,
    "trigger": _cmd_trigger,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="daybook", description="daybook activity journal daemon")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Watch repositories and write daily notes")
    summarize = sub.add_parser("summarize", help="Summarize a staged date now")
    summarize.add_argument("--date", help="Date to summarize (YYYY-MM-DD, default today)")
    sub.add_parser("status", help="Show watcher and staging status")
    note = sub.add_parser("note", help="Print a daily note")
    note.add_argument("date", nargs="?", help="Date (YYYY-MM-DD, default today)")
    sub.add_parser("trigger", help="Ask the running daemon to summarize today")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = load_config()
    except ConfigError as e:
        logger.error("Failed to load config: %s", e)
        return 2

    command = COMMANDS[args.command or "run"]
    try:
        return command(config, args)
    except StorageError as e:
        logger.error("Storage error: %s", e)
        return 2
    except DaybookError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
