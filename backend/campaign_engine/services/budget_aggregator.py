from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from apscheduler.jobstores.base import JobLookupError

from campaign_engine.errors import CampaignEngineError, ValidationError
from campaign_engine.extensions import db
from campaign_engine.models import Campaign, Url
from campaign_engine.services.locks import CampaignBusy, CampaignLocks
from campaign_engine.services.settings import get_settings

BUSY_RETRY_SECONDS = 5.0


def url_budget_delta(click_limit: int, clicks: int, price_per_thousand: float) -> float:
    remaining = max(int(click_limit or 0) - int(clicks or 0), 0)
    return round(remaining * float(price_per_thousand or 0.0) / 1000.0, 4)


def budget_job_id(campaign_id: int) -> str:
    return f"budget-{int(campaign_id)}"


class BudgetAggregator:
    """Collapses bursts of "URL created" events into one budget increase.

    Each event parks the URL's budget delta in ``Campaign.pending_url_budgets``
    and (re)schedules a one-shot ``budget-<campaign id>`` job. When the job
    runs the pending deltas are summed and applied with a single budget patch,
    then the URL ids move to ``budgeted_url_ids``. Activation is never touched
    here.
    """

    def __init__(self, app, client, locks: CampaignLocks, jobs, *, debounce_seconds: float | None = None,
                 budget_log=None, clock=datetime.utcnow, lock_timeout: float = 60.0,
                 logger: logging.Logger | None = None):
        self.app = app
        self.client = client
        self.locks = locks
        self.jobs = jobs
        self.debounce_seconds = debounce_seconds
        self.budget_log = budget_log
        self.lock_timeout = float(lock_timeout)
        self._clock = clock
        self._jobs_lock = threading.Lock()
        self.log = logger or logging.getLogger("campaign_engine.budget_aggregator")

    def window_seconds(self) -> float:
        if self.debounce_seconds is not None:
            return float(self.debounce_seconds)
        return float(get_settings().debounce_seconds)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_url_created(self, campaign_id: int, url_id: int) -> dict:
        """Queue a new URL's budget for the campaign's next debounce fire."""
        with self.locks.hold(campaign_id, timeout=self.lock_timeout):
            campaign = db.session.get(Campaign, int(campaign_id))
            url = db.session.get(Url, int(url_id))
            if not campaign or not url or int(url.campaign_id) != int(campaign.id):
                raise ValidationError("url does not belong to campaign", field="url_id")

            if url.status != "active" or int(url.click_limit or 0) <= 0:
                return {"ok": True, "queued": False, "reason": "not_budgetable"}
            if int(url.id) in campaign.budgeted_url_ids:
                return {"ok": True, "queued": False, "reason": "already_budgeted"}

            delta = url_budget_delta(url.click_limit, url.clicks, campaign.price_per_thousand)
            if delta <= 0:
                return {"ok": True, "queued": False, "reason": "zero_budget"}

            pending = campaign.pending_url_budgets
            pending[int(url.id)] = delta
            campaign.pending_url_budgets = pending
            campaign.last_url_event_at = self._clock()
            db.session.commit()

            window = self.window_seconds()
            self._arm(int(campaign.id), window)
            self.log.info("Campaign %s: url %s queued $%.4f, firing in %ss (%s pending)",
                          campaign.id, url.id, delta, int(window), len(pending))
            return {"ok": True, "queued": True, "delta": delta, "pending": len(pending)}

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _arm(self, campaign_id: int, delay: float) -> None:
        run_at = self._clock() + timedelta(seconds=max(float(delay), 0.0))
        job_id = budget_job_id(campaign_id)
        with self._jobs_lock:
            self._remove_job(job_id)
            # A re-armed job may come due while the previous run is finishing;
            # the campaign lock serializes them.
            self.jobs.add_job(
                self._fire_in_context,
                "date",
                run_date=run_at,
                args=[int(campaign_id)],
                id=job_id,
                replace_existing=True,
                misfire_grace_time=None,
                max_instances=2,
            )

    def _remove_job(self, job_id: str) -> None:
        try:
            self.jobs.remove_job(job_id)
        except JobLookupError:
            pass

    def _disarm(self, campaign_id: int) -> None:
        with self._jobs_lock:
            self._remove_job(budget_job_id(campaign_id))

    def has_timer(self, campaign_id: int) -> bool:
        return self.jobs.get_job(budget_job_id(campaign_id)) is not None

    def _fire_in_context(self, campaign_id: int) -> None:
        with self.app.app_context():
            try:
                self.fire(campaign_id)
            except CampaignBusy:
                self.log.warning("Campaign %s busy, retrying budget fire shortly", campaign_id)
                self._arm(campaign_id, BUSY_RETRY_SECONDS)
            except Exception:
                db.session.rollback()
                self.log.exception("Budget aggregator fire failed for campaign %s", campaign_id)
                self._arm(campaign_id, self.window_seconds())

    def flush(self, campaign_id: int) -> dict:
        """Fire now instead of waiting out the window.

        The pending job is only dropped once the campaign lock is held; a busy
        campaign keeps its job and the ``CampaignBusy`` propagates.
        """
        with self.locks.hold(campaign_id, timeout=self.lock_timeout):
            self._disarm(campaign_id)
            try:
                return self._apply(int(campaign_id))
            except Exception:
                db.session.rollback()
                self._arm(int(campaign_id), self.window_seconds())
                raise

    def shutdown(self) -> None:
        with self._jobs_lock:
            for job in list(self.jobs.get_jobs()):
                if job.id.startswith("budget-"):
                    self._remove_job(job.id)

    def resume_pending(self) -> int:
        """Re-arm timers for campaigns left with pending budgets, using the
        persisted last event time as the window anchor."""
        now = self._clock()
        window = self.window_seconds()
        armed = 0
        for campaign in Campaign.query.filter(Campaign.pending_url_budgets_json != "{}").all():
            if not campaign.pending_url_budgets:
                continue
            anchor = campaign.last_url_event_at or now
            left = window - (now - anchor).total_seconds()
            self._arm(int(campaign.id), max(left, 0.0))
            armed += 1
        if armed:
            self.log.info("Re-armed budget timers for %s campaigns", armed)
        return armed

    # ------------------------------------------------------------------
    # Fire
    # ------------------------------------------------------------------

    def fire(self, campaign_id: int) -> dict:
        with self.locks.hold(campaign_id, timeout=self.lock_timeout):
            return self._apply(int(campaign_id))

    def _apply(self, campaign_id: int) -> dict:
        campaign = db.session.get(Campaign, campaign_id)
        if not campaign:
            return {"ok": False, "error": "campaign_not_found"}
        db.session.refresh(campaign)

        pending = campaign.pending_url_budgets
        if not pending:
            return {"ok": True, "applied": 0, "amount": 0.0}
        if not campaign.adnetwork_campaign_id:
            self.log.warning("Campaign %s has pending budgets but no ad network campaign", campaign.id)
            return {"ok": False, "error": "no_adnetwork_campaign"}

        total = round(sum(pending.values()), 4)
        try:
            remote = self.client.get_campaign(campaign.adnetwork_campaign_id)
            current = float(remote.get("max_daily") or 0.0)
            new_budget = round(current + total, 2)
            self.client.update_daily_budget(campaign.adnetwork_campaign_id, new_budget)
        except CampaignEngineError as e:
            self.log.error("Campaign %s: budget increase of $%.2f failed, retrying next window: %s",
                           campaign.id, total, e)
            self._arm(int(campaign.id), self.window_seconds())
            return {"ok": False, "error": str(e), "pending": len(pending)}

        now = self._clock()
        urls = {int(u.id): u for u in Url.query.filter(Url.id.in_(list(pending.keys()))).all()}
        budgeted = campaign.budgeted_url_ids
        budgeted.update(pending.keys())
        campaign.budgeted_url_ids = budgeted
        campaign.pending_url_budgets = {}
        campaign.last_applied_budget = new_budget
        campaign.last_budget_update_at = now
        for url_id, delta in sorted(pending.items()):
            url = urls.get(url_id)
            clicks = int(url.clicks or 0) if url is not None else 0
            if self.budget_log is not None:
                self.budget_log.add(campaign_id=campaign.id, url_id=url_id,
                                    url_name=url.name if url is not None else "",
                                    clicks=clicks, price=delta, logged_at=now)
            self.log.info("%s|%s|$%.4f|%s", url_id, clicks, delta, now.isoformat())
        db.session.commit()

        self.log.info("Campaign %s: budget %.2f -> %.2f for %s urls",
                      campaign.id, current, new_budget, len(pending))

        return {
            "ok": True,
            "applied": len(pending),
            "amount": total,
            "previous_budget": current,
            "new_budget": new_budget,
            "ts": now.isoformat(),
        }
