"""Per-day append-only staging log.

Each calendar date has one JSONL file under <base>/staging/. The ingest loop
appends serialized events; the summarizer reads a whole date and then removes
the file once the note is written.

Appends and the summarizer's read -> clear sequence take the same per-date
asyncio lock, so an event appended while a summary is in flight lands after
the clear instead of being deleted with it.
"""

import asyncio
import logging
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)


class StagingLog:
    """Staging files for one storage root."""

    def __init__(self, staging_dir: Path):
        self.staging_dir = staging_dir
        self._locks: dict[str, asyncio.Lock] = {}

    def path_for(self, date: str) -> Path:
        return self.staging_dir / f"{date}.jsonl"

    def locked(self, date: str) -> asyncio.Lock:
        """Return the lock guarding a date's staging file."""
        lock = self._locks.get(date)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[date] = lock
        return lock

    def prune_locks(self, keep: str):
        """Forget idle locks for every date except keep."""
        for date in [d for d, lock in self._locks.items() if d != keep and not lock.locked()]:
            del self._locks[date]

    async def append(self, date: str, entry: str):
        """Append one record for a date, creating the file if needed."""
        async with self.locked(date):
            self.append_nowait(date, entry)

    def append_nowait(self, date: str, entry: str):
        """Append without taking the date lock. Callers must hold it."""
        line = entry.rstrip("\n") + "\n"
        path = self.path_for(date)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # One write per record keeps lines whole under O_APPEND.
            with open(path, "a", encoding="utf-8") as fh:
                fh.write(line)
        except OSError as e:
            raise StorageError(f"Failed to append to {path}: {e}") from e

    def read(self, date: str) -> list[str]:
        """Return the non-empty lines staged for a date, oldest first."""
        path = self.path_for(date)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e
        return [line for line in content.splitlines() if line.strip()]

    def clear(self, date: str):
        """Remove a date's staging file. Missing files are fine."""
        path = self.path_for(date)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Failed to remove {path}: {e}") from e
        logger.debug("Cleared staging for %s", date)

    def count(self, date: str) -> int:
        return len(self.read(date))

    def dates(self) -> list[str]:
        """Dates that currently have staged events, sorted."""
        if not self.staging_dir.is_dir():
            return []
        return sorted(p.stem for p in self.staging_dir.glob("*.jsonl"))
