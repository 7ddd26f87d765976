from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from apscheduler.triggers.cron import CronTrigger

from newsletter_digester.errors import InvalidScheduleError
from newsletter_digester.storage.db import CONF_SCHEDULE, Storage


logger = logging.getLogger(__name__)


# cron numbering: 0 and 7 are both Sunday
_CRON_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _cron_day(token: str) -> int:
    token = token.strip().lower()
    if token in _CRON_DAY_NAMES:
        return _CRON_DAY_NAMES.index(token)
    if not token.isdigit() or int(token) > 7:
        raise ValueError(f"invalid day of week: {token!r}")
    return int(token)


def _cron_day_of_week(field: str) -> str:
    """Rewrite a cron day-of-week field as an explicit list of day names.

    APScheduler numbers weekdays from Monday, so numbers, ranges and steps are
    expanded here using cron's Sunday-first numbering.
    """
    if field in ("*", "?"):
        return "*"
    days: set[int] = set()
    for part in field.split(","):
        span, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"invalid step: {part!r}")
        if span in ("*", "?"):
            first, last = 0, 6
        elif "-" in span:
            first_text, last_text = span.split("-", 1)
            first, last = _cron_day(first_text), _cron_day(last_text)
            if first > last:
                raise ValueError(f"invalid day range: {part!r}")
        else:
            first = _cron_day(span)
            last = 6 if step_text else first
        days.update(day % 7 for day in range(first, last + 1, step))
    return ",".join(_CRON_DAY_NAMES[day] for day in sorted(days))


def parse_schedule(expr: str, tz: str | None = None) -> CronTrigger:
    """Parse a standard 5-field cron expression, raising InvalidScheduleError."""
    expr = (expr or "").strip()
    if not expr:
        raise InvalidScheduleError("invalid cron expression: empty")
    fields = expr.split()
    if len(fields) != 5:
        raise InvalidScheduleError(f"invalid cron expression: {expr} (expected 5 fields, got {len(fields)})")
    try:
        fields[4] = _cron_day_of_week(fields[4])
        return CronTrigger.from_crontab(" ".join(fields), timezone=tz or None)
    except (ValueError, TypeError, LookupError) as e:
        raise InvalidScheduleError(f"invalid cron expression: {expr} ({e})") from e


class Scheduler:
    """Owns at most one recurring timer that spawns job runs.

    Runs are separate tasks, so replacing or stopping the timer never
    cancels a run that is already executing.
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[Any]],
        name: str = "check",
        tz: str | None = None,
        store: Storage | None = None,
        config_key: str = CONF_SCHEDULE,
    ) -> None:
        self._job = job
        self._name = name
        self._tz = tz or None
        self._store = store
        self._config_key = config_key
        self._expression: str | None = None
        self._timer: asyncio.Task | None = None
        self._runs: set[asyncio.Task] = set()

    @property
    def expression(self) -> str | None:
        return self._expression

    @property
    def active(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def update_schedule(self, expr: str) -> None:
        trigger = parse_schedule(expr, self._tz)

        # no await between cancel and create: exactly one timer is ever live
        if self._timer is not None:
            self._timer.cancel()
            logger.info("stopped %s timer (%s)", self._name, self._expression)

        self._expression = expr.strip()
        self._timer = asyncio.create_task(self._timer_loop(trigger), name=f"{self._name}_timer")
        logger.info("%s scheduled with %s", self._name, self._expression)

    async def init_from_persisted_schedule(self) -> None:
        if self._store is None:
            raise RuntimeError("scheduler has no store to read the schedule from")

        expr = (await self._store.get_config(self._config_key) or "").strip()
        if not expr:
            logger.info("no %s schedule configured, scheduler idle", self._name)
            return
        try:
            self.update_schedule(expr)
        except InvalidScheduleError as e:
            logger.error("persisted %s schedule ignored: %s", self._name, e)

    def trigger_now(self) -> asyncio.Task:
        """Start a run in the background and return immediately."""
        return self._spawn_run()

    async def stop(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)

    async def wait_for_runs(self) -> None:
        if self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    def _spawn_run(self) -> asyncio.Task:
        task = asyncio.create_task(self._run(), name=f"{self._name}_run")
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _run(self) -> None:
        try:
            await self._job()
        except Exception:
            logger.exception("scheduled %s failed", self._name)

    async def _timer_loop(self, trigger: CronTrigger) -> None:
        previous: datetime | None = None
        while True:
            now = datetime.now(timezone.utc)
            next_fire = trigger.get_next_fire_time(previous, now)
            if next_fire is None:
                logger.info("%s schedule has no further fire times", self._name)
                return
            delay = (next_fire - now).total_seconds()
            logger.debug("%s next run at %s", self._name, next_fire.isoformat())
            await asyncio.sleep(max(0.0, delay))
            previous = next_fire
            self._spawn_run()
