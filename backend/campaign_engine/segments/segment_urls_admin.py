from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from campaign_engine.click_protection import update_original_click_limit
from campaign_engine.extensions import db
from campaign_engine.models import Url
from campaign_engine.utils.admin_auth import require_admin

urls_admin_bp = Blueprint("urls_admin_bp", __name__, url_prefix="/api/admin/urls")
urls_admin_bp.before_request(require_admin)


@urls_admin_bp.get("/<int:url_id>")
def get_url(url_id: int):
    url = db.session.get(Url, url_id)
    if not url:
        return jsonify({"ok": False, "message": "URL not found"}), 404
    return jsonify({"ok": True, "url": url.to_dict()}), 200


@urls_admin_bp.post("/<int:url_id>/original-click-limit")
def set_original_click_limit(url_id: int):
    url = db.session.get(Url, url_id)
    if not url:
        return jsonify({"ok": False, "message": "URL not found"}), 404
    data = request.get_json(silent=True) or {}
    try:
        value = int(data.get("original_click_limit"))
        if value < 0:
            raise ValueError(value)
    except (TypeError, ValueError):
        return jsonify({"ok": False, "message": "original_click_limit must be a non-negative integer",
                        "field": "original_click_limit"}), 400

    old = int(url.original_click_limit or 0)
    update_original_click_limit(db.session, url, value)
    db.session.commit()
    current_app.extensions["automation"].cache.invalidate(url.campaign_id)
    current_app.logger.info("Url %s original click limit %s -> %s (click limit %s)",
                            url.id, old, value, url.click_limit)
    return jsonify({"ok": True, "url": url.to_dict()}), 200
