"""Storage layout under the daybook base directory.

    <base>/daily/<date>.md        one note per date
    <base>/staging/<date>.jsonl   events awaiting summarization
    <base>/cursors.json           last-seen commit per repository
    <base>/daybook.pid            pid of the running daemon
"""

import json
import logging
import os
from pathlib import Path

from .config import atomic_write
from .errors import StorageError
from .staging import StagingLog

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR = "~/.daybook"


def resolve_base_dir(base_dir: str | None = None) -> Path:
    """Expand ~ in the configured base directory."""
    raw = (base_dir or DEFAULT_BASE_DIR).strip() or DEFAULT_BASE_DIR
    expanded = os.path.expanduser(raw)
    if expanded.startswith("~"):
        raise StorageError(f"Cannot resolve home directory for {raw!r}")
    return Path(expanded).resolve()


class CursorStore:
    """Persisted mapping of repository path -> last-seen commit hash."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> dict[str, str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable cursor file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if isinstance(v, str)}

    def save(self, cursors: dict[str, str]):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(self.path, json.dumps(cursors, indent=2, sort_keys=True) + "\n")
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e


class Storage:
    """Notes, staging and cursor files for one base directory."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.daily_dir = self.base_dir / "daily"
        self.staging = StagingLog(self.base_dir / "staging")
        self.cursors = CursorStore(self.base_dir / "cursors.json")
        self.pid_path = self.base_dir / "daybook.pid"

    @classmethod
    def from_config(cls, config: dict) -> "Storage":
        return cls(resolve_base_dir(config.get("storage", {}).get("base_dir")))

    def ensure_dirs(self):
        """Create the storage directories. Failure here is fatal for the daemon."""
        for d in (self.base_dir, self.daily_dir, self.staging.staging_dir):
            try:
                d.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Cannot create {d}: {e}") from e

    def note_path(self, date: str) -> Path:
        return self.daily_dir / f"{date}.md"

    def read_daily_note(self, date: str) -> str | None:
        path = self.note_path(date)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def write_daily_note(self, date: str, content: str):
        """Replace the note for a date."""
        path = self.note_path(date)
        try:
            self.daily_dir.mkdir(parents=True, exist_ok=True)
            atomic_write(path, content)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    def list_daily_notes(self) -> list[str]:
        if not self.daily_dir.is_dir():
            return []
        return sorted(p.stem for p in self.daily_dir.glob("*.md"))
