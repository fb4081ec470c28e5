from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from campaign_engine.utils.admin_auth import require_admin

error_logs_bp = Blueprint("error_logs_bp", __name__, url_prefix="/api/admin/error-logs")
error_logs_bp.before_request(require_admin)


def _service():
    return current_app.extensions["automation"].error_log


@error_logs_bp.get("")
def list_logs():
    try:
        page = int(request.args.get("page") or 1)
        limit = int(request.args.get("limit") or 10)
    except ValueError:
        return jsonify({"ok": False, "message": "page and limit must be integers"}), 400
    raw = (request.args.get("resolved") or "").strip().lower()
    resolved = None
    if raw in ("true", "1", "yes"):
        resolved = True
    elif raw in ("false", "0", "no"):
        resolved = False
    res = _service().list_logs(page=page, limit=limit, resolved=resolved)
    return jsonify({"ok": True, **res}), 200


@error_logs_bp.post("/<int:log_id>/resolve")
def resolve(log_id: int):
    row = _service().resolve(log_id)
    if not row:
        return jsonify({"ok": False, "message": "Error log not found"}), 404
    return jsonify({"ok": True, "log": row.to_dict()}), 200


@error_logs_bp.delete("/resolved")
def clear_resolved():
    deleted = _service().clear_resolved()
    return jsonify({"ok": True, "deleted": deleted}), 200


@error_logs_bp.delete("")
def clear_all():
    deleted = _service().clear_all()
    return jsonify({"ok": True, "deleted": deleted}), 200
