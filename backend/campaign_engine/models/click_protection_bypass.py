from datetime import datetime

from campaign_engine.extensions import db


class ClickProtectionBypass(db.Model):
    """Rows exist only inside an authorized baseline update's transaction.

    The ``urls`` triggers let ``original_click_limit`` change only while the
    writing transaction can see a row here.
    """
    __tablename__ = "click_protection_bypass"

    id = db.Column(db.Integer, primary_key=True)
    reason = db.Column(db.String(64), nullable=False, default="admin")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
