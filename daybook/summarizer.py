"""Daily note generation.

Reads one date's staged events, asks the configured LLM for a note, writes
it to <base>/daily/<date>.md and only then clears the staging file. If the
provider call or the write fails, staging is left as it was so a later
trigger can retry.
"""

import asyncio
import logging

from .events import today
from .provider import LlmProvider, build_provider, system_message, user_message
from .storage import Storage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a personal knowledge assistant. Write the daily development note for {date}.

Format the note as markdown with YAML front matter. The front matter must include: date, topics (list), people (list).

Use these section headings, and only the ones that have content:
- Shipped: features and fixes that were completed
- Worked On: work still in progress
- Decisions: technical decisions that were made
- Discovered: new tools, techniques, insights
- Links: relevant URLs from commits and events
- People: collaborators and what they contributed
- Events: meetings, reviews, discussions

Rules:
- Use concrete references (commit hashes, file names, branch names).
- No filler text.
- Be concise but specific.

The user message contains the raw events for the day, one JSON object per line."""


def build_messages(date: str, events: list[str]) -> list[dict]:
    """Conversation for one date: instructions, then the raw event lines."""
    return [
        system_message(SYSTEM_PROMPT.format(date=date)),
        user_message("\n".join(events)),
    ]


async def summarize_day(
    date: str,
    config: dict,
    provider: LlmProvider | None = None,
    storage: Storage | None = None,
) -> bool:
    """Summarize a date's staged events into its daily note.

    Returns True if a note was written, False if there was nothing staged.
    Provider and storage errors propagate with staging untouched.
    """
    storage = storage or Storage.from_config(config)
    staging = storage.staging

    try:
        async with staging.locked(date):
            events = staging.read(date)
            if not events:
                logger.info("No events to summarize for %s", date)
                return False

            if provider is None:
                provider = build_provider(config.get("summarizer", {}))

            messages = build_messages(date, events)
            logger.info("Summarizing %d events for %s", len(events), date)

            loop = asyncio.get_running_loop()
            note = await loop.run_in_executor(None, provider.complete, messages)

            storage.write_daily_note(date, note)
            staging.clear(date)
    finally:
        staging.prune_locks(keep=today())

    logger.info("Daily note written for %s (%d chars)", date, len(note))
    return True
