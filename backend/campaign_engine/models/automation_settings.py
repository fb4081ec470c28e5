from datetime import datetime

from campaign_engine.extensions import db


class AutomationSettings(db.Model):
    __tablename__ = "automation_settings"

    id = db.Column(db.Integer, primary_key=True)

    minimum_clicks_threshold = db.Column(db.Integer, nullable=False, default=5000)
    remaining_clicks_threshold = db.Column(db.Integer, nullable=False, default=15000)

    # Dollar amounts
    spend_threshold = db.Column(db.Float, nullable=False, default=10.0)
    staged_budget_threshold = db.Column(db.Float, nullable=False, default=50.0)
    staged_budget_step = db.Column(db.Float, nullable=False, default=10.0)

    default_wait_minutes = db.Column(db.Integer, nullable=False, default=2)
    debounce_seconds = db.Column(db.Integer, nullable=False, default=600)

    last_run_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "minimum_clicks_threshold": int(self.minimum_clicks_threshold),
            "remaining_clicks_threshold": int(self.remaining_clicks_threshold),
            "spend_threshold": float(self.spend_threshold),
            "staged_budget_threshold": float(self.staged_budget_threshold),
            "staged_budget_step": float(self.staged_budget_step),
            "default_wait_minutes": int(self.default_wait_minutes),
            "debounce_seconds": int(self.debounce_seconds),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
