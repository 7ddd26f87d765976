from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from newsletter_digester.errors import ConfigurationError, InvalidScheduleError
from newsletter_digester.jobs import scheduler as scheduler_module
from newsletter_digester.jobs.scheduler import Scheduler, parse_schedule
from newsletter_digester.storage.db import CONF_SCHEDULE


class CountingJob:
    def __init__(self, gate: asyncio.Event | None = None):
        self.calls = 0
        self.finished = 0
        self.gate = gate

    async def __call__(self) -> None:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        self.finished += 1


class SoonTrigger:
    """Fires a fixed number of times, each shortly after the previous one."""

    def __init__(self, times: int):
        self.remaining = times

    def get_next_fire_time(self, previous, now: datetime):
        if self.remaining <= 0:
            return None
        self.remaining -= 1
        return now + timedelta(milliseconds=10)


class TestParseSchedule:
    @pytest.mark.parametrize("expr", ["0 9 * * *", "*/5 * * * *", "30 8 * * mon-fri", " 0 0 1 * * "])
    def test_valid(self, expr):
        assert parse_schedule(expr) is not None

    @pytest.mark.parametrize("expr", ["", "not a cron", "* * *", "61 * * * *", "0 25 * * *"])
    def test_invalid_raises_configuration_error(self, expr):
        with pytest.raises(InvalidScheduleError):
            parse_schedule(expr)

    def test_invalid_schedule_is_configuration_error(self):
        assert issubclass(InvalidScheduleError, ConfigurationError)

    @pytest.mark.parametrize(
        "expr, now, expected",
        [
            # Saturday 2026-10-17 noon: 0 and 7 both mean Sunday
            ("0 9 * * 0", datetime(2026, 10, 17, 12), datetime(2026, 10, 18, 9)),
            ("0 9 * * 7", datetime(2026, 10, 17, 12), datetime(2026, 10, 18, 9)),
            # Friday noon: the next weekday is Monday
            ("0 9 * * 1-5", datetime(2026, 10, 16, 12), datetime(2026, 10, 19, 9)),
            ("0 9 * * 6,0", datetime(2026, 10, 16, 12), datetime(2026, 10, 17, 9)),
            ("0 9 * * 5-7", datetime(2026, 10, 17, 12), datetime(2026, 10, 18, 9)),
            # every other day from Sunday: sun, tue, thu, sat
            ("0 9 * * */2", datetime(2026, 10, 18, 12), datetime(2026, 10, 20, 9)),
            ("0 9 * * mon-fri", datetime(2026, 10, 16, 12), datetime(2026, 10, 19, 9)),
        ],
    )
    def test_day_of_week_uses_cron_numbering(self, expr, now, expected):
        now = now.replace(tzinfo=timezone.utc)

        fire = parse_schedule(expr, "UTC").get_next_fire_time(None, now)

        assert fire == expected.replace(tzinfo=timezone.utc)

    @pytest.mark.parametrize("expr", ["0 9 * * 8", "0 9 * * 5-2", "0 9 * * */0", "0 9 * * funday"])
    def test_invalid_day_of_week(self, expr):
        with pytest.raises(InvalidScheduleError):
            parse_schedule(expr)


class TestUpdateSchedule:
    @pytest.mark.asyncio
    async def test_installs_timer(self):
        scheduler = Scheduler(CountingJob())

        scheduler.update_schedule("0 9 * * *")

        assert scheduler.active is True
        assert scheduler.expression == "0 9 * * *"
        await scheduler.stop()
        assert scheduler.active is False

    @pytest.mark.asyncio
    async def test_invalid_update_keeps_running_timer(self):
        scheduler = Scheduler(CountingJob())
        scheduler.update_schedule("0 9 * * *")
        timer = scheduler._timer

        with pytest.raises(InvalidScheduleError):
            scheduler.update_schedule("every day at nine")

        await asyncio.sleep(0)
        assert scheduler._timer is timer
        assert not timer.cancelled()
        assert scheduler.active is True
        assert scheduler.expression == "0 9 * * *"
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_replacing_cancels_previous_timer(self):
        scheduler = Scheduler(CountingJob())
        scheduler.update_schedule("0 9 * * *")
        old = scheduler._timer

        scheduler.update_schedule("*/15 * * * *")
        await asyncio.sleep(0)

        assert old.cancelled()
        assert scheduler._timer is not old
        assert scheduler.active is True
        assert scheduler.expression == "*/15 * * * *"
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_timer_spawns_runs(self, monkeypatch):
        monkeypatch.setattr(scheduler_module, "parse_schedule", lambda expr, tz=None: SoonTrigger(times=2))
        job = CountingJob()
        scheduler = Scheduler(job)

        scheduler.update_schedule("* * * * *")
        for _ in range(200):
            if job.finished == 2 and not scheduler.active:
                break
            await asyncio.sleep(0.01)

        assert job.calls == 2
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stopping_timer_does_not_cancel_inflight_run(self):
        job = CountingJob(gate=asyncio.Event())
        scheduler = Scheduler(job)
        scheduler.update_schedule("0 9 * * *")

        run = scheduler.trigger_now()
        await asyncio.sleep(0)
        scheduler.update_schedule("0 10 * * *")
        await scheduler.stop()

        assert not run.done()
        job.gate.set()
        await run
        assert job.finished == 1


class TestPersistedSchedule:
    @pytest.mark.asyncio
    async def test_empty_schedule_stays_idle(self, storage):
        await storage.set_config(CONF_SCHEDULE, "")
        scheduler = Scheduler(CountingJob(), store=storage)

        await scheduler.init_from_persisted_schedule()

        assert scheduler.active is False
        assert scheduler.expression is None

    @pytest.mark.asyncio
    async def test_invalid_schedule_logged_and_idle(self, storage, caplog):
        await storage.set_config(CONF_SCHEDULE, "whenever")
        scheduler = Scheduler(CountingJob(), store=storage)

        await scheduler.init_from_persisted_schedule()

        assert scheduler.active is False
        assert "persisted check schedule ignored" in caplog.text

    @pytest.mark.asyncio
    async def test_valid_schedule_installed(self, storage):
        scheduler = Scheduler(CountingJob(), store=storage)

        await scheduler.init_from_persisted_schedule()

        assert scheduler.active is True
        assert scheduler.expression == "0 9 * * *"
        await scheduler.stop()


class TestTriggerNow:
    @pytest.mark.asyncio
    async def test_returns_immediately_and_runs_in_background(self):
        job = CountingJob(gate=asyncio.Event())
        scheduler = Scheduler(job)

        run = scheduler.trigger_now()

        assert job.finished == 0
        await asyncio.sleep(0)
        assert job.calls == 1
        job.gate.set()
        await run
        assert job.finished == 1

    @pytest.mark.asyncio
    async def test_job_errors_are_logged_not_raised(self, caplog):
        async def failing() -> None:
            raise RuntimeError("boom")

        scheduler = Scheduler(failing, name="check")

        await scheduler.trigger_now()

        assert "scheduled check failed" in caplog.text
