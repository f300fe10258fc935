"""daybook: turns local git activity into one narrative note per day."""

from .config import DEFAULT_CONFIG, load_config, save_config
from .daemon import Daybook
from .discovery import discover_repos
from .errors import ConfigError, DaybookError, ProviderError, StorageError, WatcherError
from .events import EventKind, RawEvent
from .git_source import CommitDiffer, GitSource
from .provider import LlmProvider, OpenAICompatibleProvider, build_provider
from .scheduler import Scheduler, ScheduleState
from .staging import StagingLog
from .storage import Storage
from .summarizer import summarize_day
from .watcher import ChangeWatcher

__version__ = "0.1.0"
