"""Exception types raised by daybook.

Everything the daemon raises on purpose derives from DaybookError so the
long-lived loops can tell expected failures from programming errors.
"""


class DaybookError(Exception):
    """Base class for daybook errors."""


class ConfigError(DaybookError):
    """Settings could not be read, parsed, or resolved."""


class StorageError(DaybookError):
    """Filesystem I/O failed (other than a benign "not found")."""


class WatcherError(DaybookError):
    """A watch could not be registered or a git query failed."""


class ProviderError(DaybookError):
    """The LLM provider could not produce a completion."""
