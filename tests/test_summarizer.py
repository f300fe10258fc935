import asyncio
import json
import sys
import tempfile
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from daybook import summarizer  # noqa: E402
from daybook.errors import ProviderError, StorageError  # noqa: E402
from daybook.storage import Storage  # noqa: E402

DATE = "2024-05-01"

EVENTS = [
    json.dumps({"source": "git", "timestamp": "2024-05-01T09:00:00+00:00", "kind": "Commit",
                "data": {"repo": "/src/app", "hash": "a1", "subject": "Add parser", "author": "Ada"}}),
    json.dumps({"source": "git", "timestamp": "2024-05-01T11:30:00+00:00", "kind": "Commit",
                "data": {"repo": "/src/app", "hash": "b2", "subject": "Fix parser", "author": "Ada"}}),
]


class LengthEchoProvider:
    """Returns len=<N> for the user message, N being its character length."""

    def __init__(self):
        self.calls = []

    def complete(self, messages):
        self.calls.append(messages)
        return f"len={len(messages[-1]['content'])}"


class FailingProvider:
    def complete(self, messages):
        raise ProviderError("Missing env var: OPENAI_API_KEY")


class SummarizeDayTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp = tempfile.TemporaryDirectory()
        self.base = Path(self.temp.name) / "daybook"
        self.config = {"storage": {"base_dir": str(self.base)}}
        self.storage = Storage.from_config(self.config)
        self.storage.ensure_dirs()

    def tearDown(self):
        self.temp.cleanup()

    def _stage(self, lines):
        path = self.storage.staging.path_for(DATE)
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return path

    async def test_end_to_end_writes_note_and_clears_staging(self):
        staging_file = self._stage(EVENTS)
        provider = LengthEchoProvider()

        written = await summarizer.summarize_day(DATE, self.config, provider=provider)

        self.assertTrue(written)
        expected = f"len={len(chr(10).join(EVENTS))}"
        note_path = self.base.resolve() / "daily" / f"{DATE}.md"
        self.assertEqual(expected, note_path.read_text(encoding="utf-8"))
        self.assertFalse(staging_file.exists())

    async def test_second_run_is_noop_and_keeps_note(self):
        self._stage(EVENTS)
        provider = LengthEchoProvider()
        await summarizer.summarize_day(DATE, self.config, provider=provider, storage=self.storage)
        note = self.storage.read_daily_note(DATE)

        written = await summarizer.summarize_day(DATE, self.config, provider=provider, storage=self.storage)

        self.assertFalse(written)
        self.assertEqual(1, len(provider.calls))
        self.assertEqual(note, self.storage.read_daily_note(DATE))

    async def test_nothing_staged_has_no_side_effects(self):
        written = await summarizer.summarize_day(DATE, self.config, provider=FailingProvider(), storage=self.storage)

        self.assertFalse(written)
        self.assertEqual([], self.storage.list_daily_notes())

    async def test_provider_failure_keeps_staging(self):
        staging_file = self._stage(EVENTS)

        with self.assertRaises(ProviderError):
            await summarizer.summarize_day(DATE, self.config, provider=FailingProvider(), storage=self.storage)

        self.assertEqual(EVENTS, self.storage.staging.read(DATE))
        self.assertTrue(staging_file.exists())
        self.assertIsNone(self.storage.read_daily_note(DATE))

    async def test_note_write_failure_keeps_staging(self):
        self._stage(EVENTS)
        # A directory where the note file should go makes the write fail.
        (self.storage.daily_dir / f"{DATE}.md").mkdir()

        with self.assertRaises(StorageError):
            await summarizer.summarize_day(DATE, self.config, provider=LengthEchoProvider(), storage=self.storage)

        self.assertEqual(EVENTS, self.storage.staging.read(DATE))

    async def test_append_during_summary_is_not_lost(self):
        self._stage(EVENTS)
        late = '{"late": true}'

        summary = asyncio.create_task(
            summarizer.summarize_day(DATE, self.config, provider=LengthEchoProvider(), storage=self.storage)
        )
        # Let the summary take the date lock and reach the provider call.
        await asyncio.sleep(0)
        append = asyncio.create_task(self.storage.staging.append(DATE, late))
        await asyncio.gather(summary, append)

        self.assertTrue(self.storage.read_daily_note(DATE).startswith("len="))
        self.assertEqual([late], self.storage.staging.read(DATE))


class BuildMessagesTests(unittest.TestCase):
    def test_system_then_joined_events(self):
        messages = summarizer.build_messages(DATE, EVENTS)

        self.assertEqual(["system", "user"], [m["role"] for m in messages])
        self.assertIn(DATE, messages[0]["content"])
        for heading in ("Shipped", "Worked On", "Decisions", "Discovered", "Links", "People", "Events"):
            self.assertIn(heading, messages[0]["content"])
        self.assertIn("front matter", messages[0]["content"])
        self.assertEqual("\n".join(EVENTS), messages[1]["content"])


if __name__ == "__main__":
    unittest.main()
