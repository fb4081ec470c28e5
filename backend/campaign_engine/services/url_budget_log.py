from __future__ import annotations

import logging

from campaign_engine.extensions import db
from campaign_engine.models import UrlBudgetLog


class UrlBudgetLogService:
    """Queryable history of per-URL budget increases (``url_budget_logs``)."""

    def __init__(self, logger: logging.Logger | None = None):
        self.log = logger or logging.getLogger("campaign_engine.url_budget_log")

    def add(self, *, campaign_id: int, url_id: int, url_name: str, clicks: int, price: float,
            logged_at) -> UrlBudgetLog:
        """Stage a row; the caller commits it with the budget it belongs to."""
        row = UrlBudgetLog(
            campaign_id=int(campaign_id),
            url_id=int(url_id),
            url_name=(url_name or "")[:160],
            clicks=int(clicks or 0),
            price=round(float(price or 0.0), 4),
            logged_at=logged_at,
        )
        db.session.add(row)
        return row

    def list_logs(self, *, campaign_id: int | None = None, page: int = 1, limit: int = 50) -> dict:
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 50), 1), 500)
        q = UrlBudgetLog.query
        if campaign_id is not None:
            q = q.filter(UrlBudgetLog.campaign_id == int(campaign_id))
        total = q.count()
        rows = (
            q.order_by(UrlBudgetLog.logged_at.desc(), UrlBudgetLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "logs": [r.to_dict() for r in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    def clear(self, campaign_id: int | None = None) -> int:
        q = UrlBudgetLog.query
        if campaign_id is not None:
            q = q.filter(UrlBudgetLog.campaign_id == int(campaign_id))
        deleted = q.delete(synchronize_session=False)
        db.session.commit()
        if campaign_id is None:
            self.log.info("Cleared all %s url budget logs", deleted)
        else:
            self.log.info("Cleared %s url budget logs for campaign %s", deleted, campaign_id)
        return int(deleted)
