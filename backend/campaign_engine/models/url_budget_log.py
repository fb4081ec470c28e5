from datetime import datetime

from campaign_engine.extensions import db


class UrlBudgetLog(db.Model):
    """One row per URL whose remaining-click budget went out in a fire."""
    __tablename__ = "url_budget_logs"

    id = db.Column(db.Integer, primary_key=True)

    campaign_id = db.Column(db.Integer, db.ForeignKey("campaigns.id"), nullable=False, index=True)
    url_id = db.Column(db.Integer, nullable=False, index=True)
    url_name = db.Column(db.String(160), nullable=False, default="")
    clicks = db.Column(db.Integer, nullable=False, default=0)
    price = db.Column(db.Float, nullable=False, default=0.0)

    logged_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "campaign_id": int(self.campaign_id),
            "url_id": int(self.url_id),
            "url_name": self.url_name or "",
            "clicks": int(self.clicks or 0),
            "price": round(float(self.price or 0.0), 4),
            "logged_at": self.logged_at.isoformat() if self.logged_at else None,
        }
