from __future__ import annotations

import logging
from datetime import datetime

from campaign_engine.extensions import db
from campaign_engine.models import ApiErrorLog


class ErrorLogService:
    """Persists failed ad network calls for operators (``api_error_logs``)."""

    def __init__(self, logger: logging.Logger | None = None):
        self.log = logger or logging.getLogger("campaign_engine.error_log")

    def record(self, *, endpoint: str, method: str, error_message: str, request_body: str | None = None,
               error_details: str | None = None, status_code: int | None = None, campaign_id=None,
               action_type: str | None = None, retry_count: int = 0) -> ApiErrorLog:
        row = ApiErrorLog(
            endpoint=(endpoint or "")[:255],
            method=(method or "").upper()[:10],
            request_body=request_body,
            error_message=error_message or "unknown error",
            error_details=error_details,
            status_code=status_code,
            campaign_id=str(campaign_id) if campaign_id is not None else None,
            action_type=action_type,
            retry_count=int(retry_count or 0),
            resolved=False,
        )
        db.session.add(row)
        db.session.commit()
        return row

    def list_logs(self, *, page: int = 1, limit: int = 10, resolved: bool | None = None) -> dict:
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 10), 1), 100)
        q = ApiErrorLog.query
        if resolved is not None:
            q = q.filter(ApiErrorLog.resolved.is_(bool(resolved)))
        total = q.count()
        rows = (
            q.order_by(ApiErrorLog.created_at.desc(), ApiErrorLog.id.desc())
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

    def resolve(self, log_id: int) -> ApiErrorLog | None:
        row = db.session.get(ApiErrorLog, int(log_id))
        if not row:
            return None
        if not row.resolved:
            row.resolved = True
            row.resolved_at = datetime.utcnow()
            db.session.commit()
        return row

    def clear_resolved(self) -> int:
        deleted = ApiErrorLog.query.filter(ApiErrorLog.resolved.is_(True)).delete(synchronize_session=False)
        db.session.commit()
        self.log.info("Cleared %s resolved api error logs", deleted)
        return int(deleted)

    def clear_all(self) -> int:
        deleted = ApiErrorLog.query.delete(synchronize_session=False)
        db.session.commit()
        self.log.info("Cleared all %s api error logs", deleted)
        return int(deleted)

    def unresolved_count(self) -> int:
        return ApiErrorLog.query.filter(ApiErrorLog.resolved.is_(False)).count()
