from __future__ import annotations

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from campaign_engine.jobs.automation_runner import run_automation_tick

TICK_JOB_ID = "automation-tick"


def make_background_scheduler() -> BackgroundScheduler:
    """Shared job scheduler for the automation tick and the budget debounce
    jobs. Naive datetimes handed to it are UTC."""
    return BackgroundScheduler(timezone=timezone.utc, daemon=True)


class AutomationScheduler:
    """Runs an automation pass every ``interval_seconds`` as an interval job."""

    def __init__(self, app, state_machine, jobs, *, interval_seconds: int = 300, workers: int = 4,
                 logger: logging.Logger | None = None):
        self.app = app
        self.state_machine = state_machine
        self.jobs = jobs
        self.interval_seconds = int(interval_seconds)
        self.workers = int(workers)
        self.log = logger or logging.getLogger("campaign_engine.scheduler")
        self.last_result: dict | None = None

    @property
    def running(self) -> bool:
        return bool(self.jobs.running) and self.jobs.get_job(TICK_JOB_ID) is not None

    def start(self) -> None:
        if self.jobs.get_job(TICK_JOB_ID) is None:
            self.jobs.add_job(
                self._run_job,
                "interval",
                seconds=self.interval_seconds,
                id=TICK_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(timezone.utc),
            )
        if not self.jobs.running:
            self.jobs.start()
        self.log.info("Automation scheduler started, every %ss", self.interval_seconds)

    def stop(self) -> None:
        if self.jobs.get_job(TICK_JOB_ID) is not None:
            self.jobs.remove_job(TICK_JOB_ID)

    def run_once(self) -> dict:
        self.last_result = run_automation_tick(self.app, self.state_machine, workers=self.workers)
        return self.last_result

    def _run_job(self) -> None:
        try:
            res = self.run_once()
            self.log.info("Automation pass: processed=%s acted=%s errors=%s",
                          res["processed"], res["acted"], res["errors"])
        except Exception:
            self.log.exception("Automation pass failed")
