"""Summarization scheduler.

One loop waits on three triggers at once:

- ingest tick: every schedule.ingest_minutes (at least one minute). Staging
  writes happen in the source loops, so this is only a heartbeat for now.
- clock check: every 60 seconds. When the local hour equals
  schedule.daily_hour, today's note is generated once per calendar date.
- manual request: request_summary() summarizes today right away, every
  time it is called.

Ready triggers are handled one after another inside the same iteration, so
two summarizations never run at the same time.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from .config import daily_hour, ingest_interval_seconds

logger = logging.getLogger(__name__)

CLOCK_CHECK_SECONDS = 60.0


@dataclass
class ScheduleState:
    last_daily_date: str = ""
    last_summarized: Optional[str] = None


class Scheduler:
    """Decides when to run the summarization workflow and runs it."""

    def __init__(
        self,
        config: dict,
        summarize: Callable[[str], Awaitable[bool]],
        clock: Callable[[], datetime] = datetime.now,
        check_interval: float = CLOCK_CHECK_SECONDS,
    ):
        self.daily_hour = daily_hour(config)
        self.ingest_interval = ingest_interval_seconds(config)
        self.check_interval = check_interval
        self.state = ScheduleState()
        self._summarize = summarize
        self._clock = clock
        self._manual: asyncio.Queue = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None

    def today(self) -> str:
        return self._clock().strftime("%Y-%m-%d")

    def request_summary(self):
        """Ask for today's note now. Safe to call from any thread."""
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._manual.put_nowait, None)
        else:
            self._manual.put_nowait(None)

    async def on_ingest_tick(self):
        logger.debug("Ingest timer tick")

    async def on_clock_check(self) -> bool:
        """Run the daily summary if the target hour has come. Returns True if it ran."""
        now = self._clock()
        date = now.strftime("%Y-%m-%d")
        if now.hour != self.daily_hour or self.state.last_daily_date == date:
            return False
        logger.info("Daily summarization triggered for %s", date)
        # Marked before running so a slow or failing run is not retried today.
        self.state.last_daily_date = date
        await self._run(date)
        return True

    async def on_manual(self):
        date = self.today()
        logger.info("Manual summarization triggered for %s", date)
        await self._run(date)

    async def _run(self, date: str):
        try:
            written = await self._summarize(date)
        except Exception:
            logger.exception("Summarization failed for %s", date)
            return
        if written:
            self.state.last_summarized = date

    async def run(self):
        """Serve triggers until cancelled."""
        self._loop = asyncio.get_running_loop()
        waiters = {
            "ingest": asyncio.ensure_future(asyncio.sleep(0)),
            "clock": asyncio.ensure_future(asyncio.sleep(0)),
            "manual": asyncio.ensure_future(self._manual.get()),
        }
        logger.info("Scheduler started (daily_hour=%d, ingest every %ds)",
                    self.daily_hour, self.ingest_interval)
        try:
            while True:
                done, _ = await asyncio.wait(
                    waiters.values(), return_when=asyncio.FIRST_COMPLETED
                )
                if waiters["ingest"] in done:
                    await self.on_ingest_tick()
                    waiters["ingest"] = asyncio.ensure_future(asyncio.sleep(self.ingest_interval))
                if waiters["clock"] in done:
                    await self.on_clock_check()
                    waiters["clock"] = asyncio.ensure_future(asyncio.sleep(self.check_interval))
                if waiters["manual"] in done:
                    await self.on_manual()
                    waiters["manual"] = asyncio.ensure_future(self._manual.get())
        finally:
            for fut in waiters.values():
                fut.cancel()
