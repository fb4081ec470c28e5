from __future__ import annotations

import logging
from datetime import datetime, timedelta

from campaign_engine.errors import CampaignEngineError
from campaign_engine.extensions import db
from campaign_engine.models import AutomationSettings, AutomationState, Campaign
from campaign_engine.services.click_cache import ClickLimitCache
from campaign_engine.services.locks import CampaignBusy, CampaignLocks
from campaign_engine.services.settings import effective_thresholds, get_settings
from campaign_engine.utils.adnetwork_client import end_of_day


def staged_budget(target: float, current: float, spent: float, settings: AutomationSettings) -> float:
    """Budget to apply this tick.

    Below the staging threshold the target goes out as is. At or above it,
    increases are capped to one step over the larger of the applied budget
    and today's spend, so the network sees a series of small raises.
    """
    target = round(float(target), 2)
    if target < float(settings.staged_budget_threshold):
        return target
    base = max(float(current or 0.0), float(spent or 0.0))
    if target <= base:
        return target
    return round(min(target, base + float(settings.staged_budget_step)), 2)


class CampaignStateMachine:
    """Per-campaign pause/activate/budget controller.

    idle -> waiting (campaign paused) -> condition1 | condition2. The two
    regimes are re-evaluated on every tick after the wait, and the spend check
    may move a campaign between them. Persisted state only advances after the
    ad network confirms the corresponding call.
    """

    def __init__(self, client, cache: ClickLimitCache, locks: CampaignLocks, *,
                 clock=datetime.utcnow, logger: logging.Logger | None = None):
        self.client = client
        self.cache = cache
        self.locks = locks
        self._clock = clock
        self.log = logger or logging.getLogger("campaign_engine.state_machine")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def evaluate(self, campaign_id: int, *, blocking: bool = False, timeout: float = -1) -> dict:
        """One evaluation. Scheduler ticks skip a busy campaign; manual runs
        pass ``blocking=True`` and wait for the in-flight one to finish."""
        try:
            with self.locks.hold(campaign_id, blocking=blocking, timeout=timeout):
                return self._evaluate(int(campaign_id))
        except CampaignBusy:
            return {"ok": True, "campaign_id": int(campaign_id), "action": "skipped", "reason": "busy"}

    def enable(self, campaign: Campaign, settings: AutomationSettings) -> Campaign:
        campaign.automation_enabled = True
        campaign.state = AutomationState.IDLE
        campaign.wait_start_time = None
        if not campaign.wait_minutes:
            campaign.wait_minutes = settings.default_wait_minutes
        db.session.commit()
        self.log.info("Automation enabled for campaign %s", campaign.id)
        return campaign

    def disable(self, campaign: Campaign) -> Campaign:
        """No lock and no network call: an in-flight evaluation notices the
        flag after its call returns and discards the result."""
        campaign.automation_enabled = False
        campaign.state = AutomationState.IDLE
        campaign.wait_start_time = None
        db.session.commit()
        self.log.info("Automation disabled for campaign %s", campaign.id)
        return campaign

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _evaluate(self, campaign_id: int) -> dict:
        campaign = db.session.get(Campaign, campaign_id)
        if not campaign:
            return {"ok": False, "campaign_id": campaign_id, "error": "campaign_not_found"}
        db.session.refresh(campaign)

        if not campaign.automation_enabled:
            return {"ok": True, "campaign_id": campaign_id, "action": "skipped", "reason": "disabled"}
        if not campaign.adnetwork_campaign_id:
            return {"ok": True, "campaign_id": campaign_id, "action": "skipped", "reason": "no_adnetwork_campaign"}

        state = campaign.state
        if campaign.automation_state != state.value:
            campaign.state = state
            db.session.commit()

        settings = get_settings()
        now = self._clock()
        try:
            if state is AutomationState.IDLE:
                return self._enter_waiting(campaign, now)
            if state is AutomationState.WAITING:
                return self._check_wait(campaign, settings, now)
            if state in (AutomationState.CONDITION1, AutomationState.CONDITION2):
                return self._run_regime(campaign, settings, now)
            raise AssertionError(f"unhandled automation state {state!r}")
        except CampaignEngineError as e:
            db.session.rollback()
            self.log.error("Campaign %s tick failed in %s: %s", campaign_id, state.value, e)
            return {"ok": False, "campaign_id": campaign_id, "state": state.value, "error": str(e)}

    def _still_enabled(self, campaign: Campaign) -> bool:
        db.session.refresh(campaign)
        if not campaign.automation_enabled:
            self.log.info("Campaign %s was disabled during evaluation, result not applied", campaign.id)
            return False
        return True

    def _result(self, campaign: Campaign, action: str, **extra) -> dict:
        out = {"ok": True, "campaign_id": int(campaign.id), "state": campaign.state.value, "action": action}
        out.update(extra)
        return out

    def _enter_waiting(self, campaign: Campaign, now: datetime) -> dict:
        self.client.pause_campaign(campaign.adnetwork_campaign_id, now)
        if not self._still_enabled(campaign):
            return self._result(campaign, "discarded")
        campaign.state = AutomationState.WAITING
        campaign.wait_start_time = now
        campaign.last_action_at = now
        db.session.commit()
        self.log.info("Campaign %s paused, waiting %s minutes before spend check",
                      campaign.id, campaign.wait_minutes)
        return self._result(campaign, "paused")

    def _check_wait(self, campaign: Campaign, settings: AutomationSettings, now: datetime) -> dict:
        wait = timedelta(minutes=int(campaign.wait_minutes or settings.default_wait_minutes))
        if campaign.wait_start_time is None:
            campaign.wait_start_time = now
            db.session.commit()
            return self._result(campaign, "wait", seconds_left=int(wait.total_seconds()))
        elapsed = now - campaign.wait_start_time
        if elapsed < wait:
            return self._result(campaign, "wait", seconds_left=int((wait - elapsed).total_seconds()))
        return self._run_regime(campaign, settings, now)

    def _run_regime(self, campaign: Campaign, settings: AutomationSettings, now: datetime) -> dict:
        ad_id = campaign.adnetwork_campaign_id
        spent = float(self.client.get_daily_spend(ad_id, now.date()))
        remote = self.client.get_campaign(ad_id)
        active = bool(remote.get("active"))

        eligible = self.cache.eligible(campaign.id, force_refresh=True)
        regime = AutomationState.CONDITION1 if spent < float(settings.spend_threshold) else AutomationState.CONDITION2

        action = "none"
        applied_budget = None
        extra = {"spent": round(spent, 2)}

        if not eligible:
            extra["reason"] = "no_eligible_urls"
            if active:
                self.client.pause_campaign(ad_id, now)
                action = "paused"
        elif regime is AutomationState.CONDITION1:
            minimum, remaining_threshold = effective_thresholds(campaign, settings)
            remaining = self.cache.remaining_clicks(campaign.id)
            extra["remaining_clicks"] = remaining
            if remaining > remaining_threshold:
                if not active:
                    self.client.activate_campaign(ad_id, end_of_day(now))
                    action = "activated"
            elif remaining <= minimum:
                if active:
                    self.client.pause_campaign(ad_id, now)
                    action = "paused"
            else:
                action = "hold"
        else:
            remaining = self.cache.remaining_clicks(campaign.id, include_unlimited=False)
            target = spent + float(campaign.price_per_thousand or 0.0) / 1000.0 * remaining
            current = float(remote.get("max_daily") or 0.0)
            budget = staged_budget(target, current, spent, settings)
            extra.update({"remaining_clicks": remaining, "target_budget": round(target, 2), "budget": budget})
            if abs(budget - current) >= 0.01:
                self.client.update_daily_budget(ad_id, budget)
                applied_budget = budget
                action = "budget_updated"
                # The network already holds this budget whatever activate does
                campaign.last_applied_budget = budget
                campaign.last_budget_update_at = now
                db.session.commit()
            if not active:
                self.client.activate_campaign(ad_id, end_of_day(now))
                action = "budget_updated_activated" if applied_budget is not None else "activated"

        if not self._still_enabled(campaign):
            return self._result(campaign, "discarded")

        campaign.state = regime
        campaign.daily_spent = spent
        campaign.daily_spent_date = now.date()
        campaign.last_spent_check = now
        if action not in ("none", "hold"):
            campaign.last_action_at = now
        db.session.commit()

        self.log.info("Campaign %s %s: spent $%.2f, action=%s", campaign.id, regime.value, spent, action)
        return self._result(campaign, action, **extra)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, campaign: Campaign) -> dict:
        settings = get_settings()
        now = self._clock()
        minimum, remaining_threshold = effective_thresholds(campaign, settings)
        wait_minutes = int(campaign.wait_minutes or settings.default_wait_minutes)
        seconds_left = None
        if campaign.state is AutomationState.WAITING and campaign.wait_start_time:
            left = timedelta(minutes=wait_minutes) - (now - campaign.wait_start_time)
            seconds_left = max(int(left.total_seconds()), 0)
        return {
            "campaign_id": int(campaign.id),
            "enabled": bool(campaign.automation_enabled),
            "state": campaign.state.value,
            "daily_spent": float(campaign.daily_spent or 0.0),
            "daily_spent_date": campaign.daily_spent_date.isoformat() if campaign.daily_spent_date else None,
            "remaining_clicks": self.cache.remaining_clicks(campaign.id),
            "wait_minutes": wait_minutes,
            "wait_start_time": campaign.wait_start_time.isoformat() if campaign.wait_start_time else None,
            "wait_seconds_left": seconds_left,
            "pending_url_budgets": {str(k): v for k, v in campaign.pending_url_budgets.items()},
            "budgeted_url_ids": sorted(campaign.budgeted_url_ids),
            "last_applied_budget": campaign.last_applied_budget,
            "thresholds": {
                "minimum_clicks": minimum,
                "remaining_clicks": remaining_threshold,
                "spend": float(settings.spend_threshold),
                "staged_budget": float(settings.staged_budget_threshold),
            },
            "busy": self.locks.is_busy(campaign.id),
        }
