"""Raw activity events produced by sources and staged for summarization."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class EventKind(Enum):
    COMMIT = "Commit"


@dataclass(frozen=True)
class RawEvent:
    """One discrete piece of activity, as emitted by a source."""
    source: str
    timestamp: str
    kind: EventKind
    data: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {
                "source": self.source,
                "timestamp": self.timestamp,
                "kind": self.kind.value,
                "data": self.data,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, line: str) -> "RawEvent":
        obj = json.loads(line)
        return cls(
            source=obj["source"],
            timestamp=obj["timestamp"],
            kind=EventKind(obj["kind"]),
            data=obj.get("data") or {},
        )


def today() -> str:
    """Current local calendar date as YYYY-MM-DD."""
    return datetime.now().strftime("%Y-%m-%d")
