from __future__ import annotations

import enum
import json
import logging
from datetime import datetime

from campaign_engine.extensions import db

log = logging.getLogger("campaign_engine.models")


class AutomationState(str, enum.Enum):
    IDLE = "idle"
    WAITING = "waiting"
    CONDITION1 = "condition1"
    CONDITION2 = "condition2"

    @classmethod
    def parse(cls, raw) -> "AutomationState":
        """Unknown or empty values load as IDLE."""
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            log.warning("Unrecognized automation state %r, falling back to idle", raw)
            return cls.IDLE


class Campaign(db.Model):
    __tablename__ = "campaigns"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)

    # direct (302) | 307 | meta
    redirect_method = db.Column(db.String(16), nullable=False, default="direct")

    adnetwork_campaign_id = db.Column(db.String(64), nullable=True, index=True)
    price_per_thousand = db.Column(db.Float, nullable=False, default=0.0)
    multiplier = db.Column(db.Float, nullable=False, default=1.0)

    # Automation
    automation_enabled = db.Column(db.Boolean, nullable=False, default=False)
    automation_state = db.Column(db.String(16), nullable=False, default=AutomationState.IDLE.value)
    wait_start_time = db.Column(db.DateTime, nullable=True)
    wait_minutes = db.Column(db.Integer, nullable=False, default=2)
    last_action_at = db.Column(db.DateTime, nullable=True)

    # Per-campaign overrides; null falls back to AutomationSettings
    minimum_clicks_threshold = db.Column(db.Integer, nullable=True)
    remaining_clicks_threshold = db.Column(db.Integer, nullable=True)

    # Spend snapshot
    daily_spent = db.Column(db.Float, nullable=False, default=0.0)
    daily_spent_date = db.Column(db.Date, nullable=True)
    last_spent_check = db.Column(db.DateTime, nullable=True)

    # Budget bookkeeping (JSON text)
    budgeted_url_ids_json = db.Column(db.Text, nullable=False, default="[]")
    pending_url_budgets_json = db.Column(db.Text, nullable=False, default="{}")
    last_applied_budget = db.Column(db.Float, nullable=True)
    last_budget_update_at = db.Column(db.DateTime, nullable=True)
    last_url_event_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    urls = db.relationship("Url", backref="campaign", lazy="dynamic", order_by="Url.created_at")

    @property
    def state(self) -> AutomationState:
        return AutomationState.parse(self.automation_state)

    @state.setter
    def state(self, value: AutomationState) -> None:
        self.automation_state = AutomationState(value).value

    @property
    def pending_url_budgets(self) -> dict[int, float]:
        try:
            raw = json.loads(self.pending_url_budgets_json or "{}")
        except Exception:
            raw = {}
        return {int(k): float(v) for k, v in raw.items()}

    @pending_url_budgets.setter
    def pending_url_budgets(self, value: dict) -> None:
        self.pending_url_budgets_json = json.dumps({str(int(k)): float(v) for k, v in (value or {}).items()})

    @property
    def budgeted_url_ids(self) -> set[int]:
        try:
            raw = json.loads(self.budgeted_url_ids_json or "[]")
        except Exception:
            raw = []
        return {int(x) for x in raw}

    @budgeted_url_ids.setter
    def budgeted_url_ids(self, value) -> None:
        self.budgeted_url_ids_json = json.dumps(sorted(int(x) for x in (value or ())))

    def to_dict(self):
        return {
            "id": int(self.id),
            "name": self.name,
            "redirect_method": self.redirect_method or "direct",
            "adnetwork_campaign_id": self.adnetwork_campaign_id or "",
            "price_per_thousand": float(self.price_per_thousand or 0.0),
            "multiplier": float(self.multiplier or 1.0),
            "automation_enabled": bool(self.automation_enabled),
            "state": self.state.value,
            "wait_start_time": self.wait_start_time.isoformat() if self.wait_start_time else None,
            "wait_minutes": int(self.wait_minutes or 0),
            "last_action_at": self.last_action_at.isoformat() if self.last_action_at else None,
            "daily_spent": float(self.daily_spent or 0.0),
            "daily_spent_date": self.daily_spent_date.isoformat() if self.daily_spent_date else None,
            "pending_url_budgets": {str(k): v for k, v in self.pending_url_budgets.items()},
            "budgeted_url_ids": sorted(self.budgeted_url_ids),
            "last_applied_budget": self.last_applied_budget,
            "last_budget_update_at": self.last_budget_update_at.isoformat() if self.last_budget_update_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
