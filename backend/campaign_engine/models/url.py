from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import column_property

from campaign_engine.extensions import db

URL_STATUSES = ("active", "paused", "completed", "deleted", "rejected")


def compute_active_status(status: str, click_limit: int, clicks: int) -> str:
    """limit-reached | active | inactive. A click limit of 0 is unlimited."""
    if status == "active" and int(click_limit or 0) > 0 and int(clicks or 0) >= int(click_limit):
        return "limit-reached"
    if status == "active":
        return "active"
    return "inactive"


class Url(db.Model):
    __tablename__ = "urls"

    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey("campaigns.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False, default="")
    target_url = db.Column(db.String(1024), nullable=False)

    # 0 = unlimited; derived from original_click_limit * campaign multiplier
    click_limit = db.Column(db.Integer, nullable=False, default=0)
    # Protected baseline, see campaign_engine.click_protection
    original_click_limit = column_property(db.Column(db.Integer, nullable=False, default=0), active_history=True)
    clicks = db.Column(db.Integer, nullable=False, default=0)
    weight = db.Column(db.Integer, nullable=False, default=1)

    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def active_status(self) -> str:
        return compute_active_status(self.status, self.click_limit, self.clicks)

    def to_dict(self):
        return {
            "id": int(self.id),
            "campaign_id": int(self.campaign_id),
            "name": self.name or "",
            "target_url": self.target_url,
            "click_limit": int(self.click_limit or 0),
            "original_click_limit": int(self.original_click_limit or 0),
            "clicks": int(self.clicks or 0),
            "weight": int(self.weight or 0),
            "status": self.status,
            "active_status": self.active_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
