from datetime import datetime

from campaign_engine.extensions import db


class ApiErrorLog(db.Model):
    __tablename__ = "api_error_logs"

    id = db.Column(db.Integer, primary_key=True)

    endpoint = db.Column(db.String(255), nullable=False)
    method = db.Column(db.String(10), nullable=False)
    request_body = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.Text, nullable=False)
    error_details = db.Column(db.Text, nullable=True)
    status_code = db.Column(db.Integer, nullable=True)

    campaign_id = db.Column(db.String(64), nullable=True, index=True)
    action_type = db.Column(db.String(64), nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)

    resolved = db.Column(db.Boolean, nullable=False, default=False, index=True)
    resolved_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "endpoint": self.endpoint,
            "method": self.method,
            "request_body": self.request_body or "",
            "error_message": self.error_message,
            "error_details": self.error_details or "",
            "status_code": int(self.status_code) if self.status_code is not None else None,
            "campaign_id": self.campaign_id or None,
            "action_type": self.action_type or "",
            "retry_count": int(self.retry_count or 0),
            "resolved": bool(self.resolved),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
