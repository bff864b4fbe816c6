"""
Background sweep that force-submits attempts whose deadline has passed.

Started and stopped from the application lifespan. Each expiry runs in its
own session through the same engine path as a student submit, so a crash
mid-sweep only delays the remaining attempts to the next tick.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from exam_proctor.services.attempt_engine import AttemptEngine
from exam_proctor.services.attempt_store import AttemptStore
from exam_proctor.utils.timeutils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    expired: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class ExpiryScheduler:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        interval_seconds: float = 60.0,
        grace_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.grace_seconds = grace_seconds
        self.clock = clock
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        """One tick: expire every enforced attempt with now >= endsAt"""
        now = now or self.clock()
        report = SweepReport()

        async with self.session_factory() as session:
            rows = await AttemptStore(session).list_in_progress()
        report.checked = len(rows)

        due = [r for r in rows if r.time_limit_enforced and now >= r.ends_at]
        for row in due:
            try:
                async with self.session_factory() as session:
                    await AttemptEngine(session).expire(row.attempt_id, now)
                report.expired.append(row.attempt_id)
            except Exception:
                logger.exception(f"Failed to expire attempt {row.attempt_id}")
                report.failed.append(row.attempt_id)

        if due:
            logger.info(
                f"Expiry sweep: {report.checked} in progress, {len(report.expired)} expired, "
                f"{len(report.failed)} failed"
            )
        else:
            logger.debug(f"Expiry sweep: {report.checked} in progress, none due")
        return report

    async def _run(self) -> None:
        logger.info(f"Expiry scheduler started (every {self.interval_seconds}s)")
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Expiry sweep failed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Expiry scheduler stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop ticking and give an in-flight sweep the grace window to finish"""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Expiry sweep still running after {self.grace_seconds}s grace window; cancelled")
        finally:
            self._task = None
