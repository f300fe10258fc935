"""Git commit source.

Discovers repositories, watches their branch refs, and on every debounced
batch diffs each changed repository's recent history against its cursor.
New commits are staged as RawEvents under today's date.
"""

import asyncio
import logging
from pathlib import Path

from .discovery import discover_repos
from .errors import DaybookError, StorageError, WatcherError
from .events import EventKind, RawEvent, today
from .storage import CursorStore, Storage
from .watcher import DEBOUNCE_SECONDS, ChangeWatcher

logger = logging.getLogger(__name__)

SOURCE_NAME = "git"
COMMIT_LIMIT = 20
LOG_FORMAT = "%H|%s|%an|%aI"

Commit = tuple[str, str, str, str]


def parse_log(output: str) -> list[Commit]:
    """Parse `git log --format=%H|%s|%an|%aI` output.

    Returns (hash, subject, author, timestamp) tuples in the order given.
    Lines without four fields are dropped. The subject is whatever sits
    between the hash and the last two fields, so it may contain "|".
    """
    commits = []
    for line in output.splitlines():
        head, sep, rest = line.partition("|")
        if not sep:
            continue
        parts = rest.rsplit("|", 2)
        if len(parts) != 3:
            continue
        subject, author, timestamp = parts
        if not head or not timestamp:
            continue
        commits.append((head, subject, author, timestamp))
    return commits


async def fetch_commits(repo: Path, limit: int = COMMIT_LIMIT) -> list[Commit]:
    """Return the newest `limit` commits of a repository, newest first."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git", "log", f"--format={LOG_FORMAT}", f"-{limit}",
            cwd=str(repo),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise WatcherError("git executable not found") from e
    except OSError as e:
        raise WatcherError(f"Failed to run git log in {repo}: {e}") from e

    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        err = stderr.decode("utf-8", errors="replace").strip()
        raise WatcherError(
            f"git log failed in {repo} (exit {proc.returncode}). "
            f"{err if err else 'No stderr output.'}"
        )
    return parse_log(stdout.decode("utf-8", errors="replace"))


def commit_event(repo: Path, commit: Commit) -> RawEvent:
    hash_, subject, author, timestamp = commit
    return RawEvent(
        source=SOURCE_NAME,
        timestamp=timestamp,
        kind=EventKind.COMMIT,
        data={
            "repo": str(repo),
            "hash": hash_,
            "subject": subject,
            "author": author,
        },
    )


class CommitDiffer:
    """Emits only commits newer than the last one seen per repository."""

    def __init__(self, cursors: CursorStore | None = None, limit: int = COMMIT_LIMIT, fetch=fetch_commits):
        self.limit = limit
        self._store = cursors
        self._fetch = fetch
        self.last_seen: dict[str, str] = cursors.load() if cursors else {}

    def cursor(self, repo: Path) -> str | None:
        return self.last_seen.get(str(repo))

    async def diff(self, repo: Path) -> list[RawEvent]:
        """Commits newer than the cursor, newest first.

        The cursor is not moved. Once the events are safely staged, pass
        the first one's hash to advance().
        """
        commits = await self._fetch(repo, self.limit)
        last = self.last_seen.get(str(repo))

        events = []
        for commit in commits:
            if last is not None and commit[0] == last:
                break
            events.append(commit_event(repo, commit))
        return events

    def advance(self, repo: Path, tip: str):
        """Move a repository's cursor to tip and persist it."""
        key = str(repo)
        if self.last_seen.get(key) == tip:
            return
        self.last_seen[key] = tip
        self._persist()

    def _persist(self):
        if self._store is None:
            return
        try:
            self._store.save(self.last_seen)
        except StorageError as e:
            logger.warning("Cursor not persisted: %s", e)


class GitSource:
    """Watches git repositories and stages their new commits."""

    name = SOURCE_NAME

    def __init__(self, git_config: dict, storage: Storage, debounce: float = DEBOUNCE_SECONDS):
        self.watch_paths = list(git_config.get("watch_paths", []))
        self.scan_depth = int(git_config.get("scan_depth", 3))
        self.storage = storage
        self.debounce = debounce
        self.differ = CommitDiffer(storage.cursors)
        self.watcher: ChangeWatcher | None = None

    @property
    def running(self) -> bool:
        return self.watcher is not None and self.watcher.running

    def start(self) -> bool:
        """Discover repositories and start watching them.

        Returns False if there was nothing to watch.
        """
        repos = discover_repos(self.watch_paths, self.scan_depth)
        if not repos:
            logger.warning("No git repos found under %s", self.watch_paths)
            return False
        logger.info("Discovered %d git repos", len(repos))
        self.watcher = ChangeWatcher(repos, debounce=self.debounce)
        self.watcher.start()
        return True

    async def run(self):
        """Consume watcher batches until stopped."""
        if self.watcher is None:
            return
        async for repos in self.watcher.batches():
            await self.ingest(repos)

    async def ingest(self, repos: list[Path]) -> int:
        """Diff each repo in order and stage new commits. Returns events staged.

        A repository's cursor only moves after all of its new commits were
        appended. If staging fails part way, the cursor stays put and the
        next batch emits those commits again.
        """
        staged = 0
        for repo in repos:
            try:
                events = await self.differ.diff(repo)
            except DaybookError as e:
                logger.error("Failed to get commits for %s: %s", repo, e)
                continue
            if not events:
                continue

            try:
                for event in events:
                    await self.storage.staging.append(today(), event.to_json())
                    staged += 1
            except StorageError as e:
                logger.error("Failed to stage commits from %s, will retry: %s", repo, e)
                continue

            self.differ.advance(repo, events[0].data["hash"])
            logger.info("Staged %d new commits from %s", len(events), repo)
        return staged

    def stop(self):
        if self.watcher is not None:
            self.watcher.stop()

    async def wait_closed(self):
        if self.watcher is not None:
            await self.watcher.wait_closed()


def build_sources(config: dict, storage: Storage) -> list:
    """Instantiate every enabled source."""
    sources = []
    git_cfg = config.get("sources", {}).get("git", {})
    if git_cfg.get("enabled", True):
        sources.append(GitSource(git_cfg, storage))
    return sources
