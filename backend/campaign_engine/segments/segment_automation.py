from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from campaign_engine.click_protection import recompute_click_limits
from campaign_engine.errors import ValidationError
from campaign_engine.extensions import db
from campaign_engine.models import Campaign
from campaign_engine.services.locks import CampaignBusy
from campaign_engine.services.settings import get_settings, update_campaign_thresholds, update_settings
from campaign_engine.utils.admin_auth import require_admin

automation_bp = Blueprint("automation_bp", __name__, url_prefix="/api/admin/automation")
automation_bp.before_request(require_admin)


def _engine():
    return current_app.extensions["automation"]


@automation_bp.errorhandler(ValidationError)
def _validation_error(e: ValidationError):
    return jsonify({"ok": False, "message": str(e), "field": e.field}), 400


@automation_bp.errorhandler(CampaignBusy)
def _campaign_busy(e: CampaignBusy):
    return jsonify({"ok": False, "message": str(e)}), 409


def _campaign_or_404(campaign_id: int):
    return db.session.get(Campaign, int(campaign_id))


@automation_bp.get("")
def get_status():
    eng = _engine()
    s = get_settings()
    return jsonify({
        "ok": True,
        "settings": s.to_dict(),
        "scheduler": {
            "running": eng.scheduler.running,
            "interval_seconds": eng.scheduler.interval_seconds,
            "last_result": {k: v for k, v in (eng.scheduler.last_result or {}).items() if k != "results"},
        },
        "unresolved_errors": eng.error_log.unresolved_count(),
    }), 200


@automation_bp.get("/settings")
def get_thresholds():
    return jsonify({"ok": True, "settings": get_settings().to_dict()}), 200


@automation_bp.post("/settings")
def set_thresholds():
    data = request.get_json(silent=True) or {}
    s = update_settings(data)
    current_app.logger.info("Automation settings updated: %s", s.to_dict())
    return jsonify({"ok": True, "settings": s.to_dict()}), 200


@automation_bp.get("/campaigns")
def list_campaigns():
    eng = _engine()
    rows = (
        Campaign.query
        .filter(Campaign.automation_enabled.is_(True))
        .order_by(Campaign.id.asc())
        .limit(250)
        .all()
    )
    return jsonify({"ok": True, "campaigns": [eng.state_machine.status(c) for c in rows]}), 200


@automation_bp.get("/campaigns/<int:campaign_id>")
def campaign_status(campaign_id: int):
    c = _campaign_or_404(campaign_id)
    if not c:
        return jsonify({"ok": False, "message": "Campaign not found"}), 404
    return jsonify({"ok": True, "campaign": c.to_dict(), "status": _engine().state_machine.status(c)}), 200


@automation_bp.post("/campaigns/<int:campaign_id>/toggle")
def toggle(campaign_id: int):
    c = _campaign_or_404(campaign_id)
    if not c:
        return jsonify({"ok": False, "message": "Campaign not found"}), 404
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        enabled = not bool(c.automation_enabled)
    sm = _engine().state_machine
    if enabled:
        if not c.adnetwork_campaign_id:
            raise ValidationError("campaign has no ad network campaign id", field="adnetwork_campaign_id")
        sm.enable(c, get_settings())
    else:
        sm.disable(c)
    return jsonify({"ok": True, "status": sm.status(c)}), 200


@automation_bp.post("/campaigns/<int:campaign_id>/run")
def run_now(campaign_id: int):
    c = _campaign_or_404(campaign_id)
    if not c:
        return jsonify({"ok": False, "message": "Campaign not found"}), 404
    wait = float(current_app.config.get("AUTOMATION_RUN_NOW_WAIT_SECONDS", 30))
    res = _engine().state_machine.evaluate(c.id, blocking=True, timeout=wait)
    return jsonify(res), 200 if res.get("ok") else 502


@automation_bp.post("/campaigns/<int:campaign_id>/thresholds")
def set_campaign_thresholds(campaign_id: int):
    c = _campaign_or_404(campaign_id)
    if not c:
        return jsonify({"ok": False, "message": "Campaign not found"}), 404
    data = request.get_json(silent=True) or {}
    update_campaign_thresholds(c, data, get_settings())
    return jsonify({"ok": True, "status": _engine().state_machine.status(c)}), 200


@automation_bp.post("/campaigns/<int:campaign_id>/multiplier")
def set_multiplier(campaign_id: int):
    c = _campaign_or_404(campaign_id)
    if not c:
        return jsonify({"ok": False, "message": "Campaign not found"}), 404
    data = request.get_json(silent=True) or {}
    try:
        multiplier = float(data.get("multiplier"))
    except (TypeError, ValueError):
        raise ValidationError("multiplier must be a number", field="multiplier")
    if multiplier <= 0:
        raise ValidationError("multiplier must be positive", field="multiplier")
    changed = recompute_click_limits(db.session, c, multiplier)
    db.session.commit()
    _engine().cache.invalidate(c.id)
    return jsonify({"ok": True, "multiplier": multiplier, "urls_updated": changed}), 200


@automation_bp.post("/campaigns/<int:campaign_id>/flush")
def flush_budgets(campaign_id: int):
    c = _campaign_or_404(campaign_id)
    if not c:
        return jsonify({"ok": False, "message": "Campaign not found"}), 404
    res = _engine().aggregator.flush(c.id)
    return jsonify(res), 200 if res.get("ok") else 502


@automation_bp.post("/tick")
def manual_tick():
    res = _engine().scheduler.run_once()
    return jsonify(res), 200


@automation_bp.post("/url-events")
def url_created():
    data = request.get_json(silent=True) or {}
    try:
        campaign_id = int(data.get("campaign_id"))
        url_id = int(data.get("url_id"))
    except (TypeError, ValueError):
        raise ValidationError("campaign_id and url_id are required", field="url_id")
    res = _engine().aggregator.on_url_created(campaign_id, url_id)
    return jsonify(res), 202 if res.get("queued") else 200


@automation_bp.get("/url-events")
def pending_budgets():
    eng = _engine()
    rows = Campaign.query.filter(Campaign.pending_url_budgets_json != "{}").order_by(Campaign.id.asc()).all()
    out = []
    for c in rows:
        pending = c.pending_url_budgets
        if not pending:
            continue
        out.append({
            "campaign_id": int(c.id),
            "pending_url_budgets": {str(k): v for k, v in pending.items()},
            "total": round(sum(pending.values()), 4),
            "last_url_event_at": c.last_url_event_at.isoformat() if c.last_url_event_at else None,
            "timer_armed": eng.aggregator.has_timer(c.id),
        })
    return jsonify({"ok": True, "campaigns": out}), 200


def _page_args():
    try:
        return int(request.args.get("page") or 1), int(request.args.get("limit") or 50)
    except ValueError:
        raise ValidationError("page and limit must be integers", field="page")


@automation_bp.get("/url-budget-logs")
def all_url_budget_logs():
    page, limit = _page_args()
    raw = (request.args.get("campaign_id") or "").strip()
    campaign_id = None
    if raw:
        try:
            campaign_id = int(raw)
        except ValueError:
            raise ValidationError("campaign_id must be an integer", field="campaign_id")
    res = _engine().budget_log.list_logs(campaign_id=campaign_id, page=page, limit=limit)
    return jsonify({"ok": True, **res}), 200


@automation_bp.delete("/url-budget-logs")
def clear_all_url_budget_logs():
    deleted = _engine().budget_log.clear()
    return jsonify({"ok": True, "deleted": deleted}), 200


@automation_bp.get("/campaigns/<int:campaign_id>/url-budget-logs")
def campaign_url_budget_logs(campaign_id: int):
    c = _campaign_or_404(campaign_id)
    if not c:
        return jsonify({"ok": False, "message": "Campaign not found"}), 404
    page, limit = _page_args()
    res = _engine().budget_log.list_logs(campaign_id=c.id, page=page, limit=limit)
    return jsonify({"ok": True, "campaign_id": int(c.id), **res}), 200


@automation_bp.delete("/campaigns/<int:campaign_id>/url-budget-logs")
def clear_campaign_url_budget_logs(campaign_id: int):
    c = _campaign_or_404(campaign_id)
    if not c:
        return jsonify({"ok": False, "message": "Campaign not found"}), 404
    deleted = _engine().budget_log.clear(c.id)
    return jsonify({"ok": True, "deleted": deleted}), 200
