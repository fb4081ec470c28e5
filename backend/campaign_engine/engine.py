from __future__ import annotations

import logging
from dataclasses import dataclass

from campaign_engine.jobs.scheduler import AutomationScheduler, make_background_scheduler
from campaign_engine.services.budget_aggregator import BudgetAggregator
from campaign_engine.services.click_cache import ClickLimitCache
from campaign_engine.services.error_log import ErrorLogService
from campaign_engine.services.locks import CampaignLocks
from campaign_engine.services.state_machine import CampaignStateMachine
from campaign_engine.services.url_budget_log import UrlBudgetLogService
from campaign_engine.utils.adnetwork_client import AdNetworkClient


@dataclass
class AutomationEngine:
    error_log: ErrorLogService
    budget_log: UrlBudgetLogService
    client: AdNetworkClient
    cache: ClickLimitCache
    locks: CampaignLocks
    jobs: object
    aggregator: BudgetAggregator
    state_machine: CampaignStateMachine
    scheduler: AutomationScheduler


def build_engine(app, *, client=None, jobs=None) -> AutomationEngine:
    """Wire the engine components for one app. Nothing here is module-global;
    blueprints reach the instances through ``app.extensions["automation"]``.

    ``jobs`` is the APScheduler scheduler shared by the automation tick and
    the budget debounce jobs.
    """
    cfg = app.config
    error_log = ErrorLogService(logger=logging.getLogger("campaign_engine.error_log"))
    budget_log = UrlBudgetLogService(logger=logging.getLogger("campaign_engine.url_budget_log"))
    if client is None:
        client = AdNetworkClient(
            api_key=cfg.get("ADNETWORK_API_KEY", ""),
            base_url=cfg.get("ADNETWORK_BASE_URL"),
            token_url=cfg.get("ADNETWORK_TOKEN_URL"),
            timeout=cfg.get("ADNETWORK_TIMEOUT_SECONDS", 10.0),
            max_retries=cfg.get("ADNETWORK_MAX_RETRIES", 3),
            backoff_seconds=cfg.get("ADNETWORK_BACKOFF_SECONDS", 1.0),
            error_log=error_log,
        )
    if jobs is None:
        jobs = make_background_scheduler()
    cache = ClickLimitCache(ttl_seconds=cfg.get("CLICK_CACHE_TTL_SECONDS", 30.0))
    locks = CampaignLocks()
    aggregator = BudgetAggregator(app, client, locks, jobs, debounce_seconds=cfg.get("BUDGET_DEBOUNCE_SECONDS"),
                                  budget_log=budget_log)
    state_machine = CampaignStateMachine(client, cache, locks)
    scheduler = AutomationScheduler(
        app,
        state_machine,
        jobs,
        interval_seconds=cfg.get("AUTOMATION_TICK_SECONDS", 300),
        workers=cfg.get("AUTOMATION_WORKERS", 4),
    )
    return AutomationEngine(
        error_log=error_log,
        budget_log=budget_log,
        client=client,
        cache=cache,
        locks=locks,
        jobs=jobs,
        aggregator=aggregator,
        state_machine=state_machine,
        scheduler=scheduler,
    )
