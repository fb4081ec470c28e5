from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from campaign_engine.extensions import db
from campaign_engine.models import Campaign
from campaign_engine.services.settings import get_settings

log = logging.getLogger("campaign_engine.jobs.automation")


def _now():
    return datetime.utcnow()


def _evaluate_one(app, state_machine, campaign_id: int) -> dict:
    with app.app_context():
        try:
            return state_machine.evaluate(campaign_id)
        except Exception as e:
            db.session.rollback()
            log.exception("Automation tick crashed for campaign %s", campaign_id)
            return {"ok": False, "campaign_id": campaign_id, "error": str(e)}


def run_automation_tick(app, state_machine, *, workers: int = 4, limit: int = 500) -> dict:
    """One scheduler pass over automation-enabled campaigns.

    Campaigns are evaluated concurrently; one campaign failing never stops
    the others.
    """
    now = _now()
    processed = 0
    acted = 0
    skipped = 0
    errors = 0

    with app.app_context():
        ids = [
            int(r.id)
            for r in Campaign.query
            .filter(Campaign.automation_enabled.is_(True))
            .order_by(Campaign.id.asc())
            .limit(int(limit))
            .all()
        ]

    results = []
    if ids:
        with ThreadPoolExecutor(max_workers=max(int(workers), 1), thread_name_prefix="automation") as pool:
            results = list(pool.map(lambda cid: _evaluate_one(app, state_machine, cid), ids))

    for res in results:
        processed += 1
        if not res.get("ok"):
            errors += 1
        elif res.get("action") == "skipped":
            skipped += 1
        elif res.get("action") not in ("none", "hold", "wait"):
            acted += 1

    with app.app_context():
        try:
            s = get_settings()
            s.last_run_at = now
            db.session.commit()
        except Exception:
            db.session.rollback()
            errors += 1

    return {
        "ok": True,
        "processed": processed,
        "acted": acted,
        "skipped": skipped,
        "errors": errors,
        "results": results,
        "ts": now.isoformat(),
    }
