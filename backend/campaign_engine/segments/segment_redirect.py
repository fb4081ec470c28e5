from __future__ import annotations

from html import escape

from flask import Blueprint, current_app, jsonify, redirect

from campaign_engine.errors import NoEligibleUrl
from campaign_engine.extensions import db
from campaign_engine.models import Campaign

redirect_bp = Blueprint("redirect_bp", __name__)


def _respond(target: str, method: str):
    if method == "307":
        return redirect(target, code=307)
    if method == "meta":
        safe = escape(target, quote=True)
        body = f'<!DOCTYPE html><html><head><meta http-equiv="refresh" content="0;url={safe}"></head><body></body></html>'
        return body, 200, {"Content-Type": "text/html; charset=utf-8", "Cache-Control": "no-store"}
    return redirect(target, code=302)


@redirect_bp.get("/c/<int:campaign_id>")
def serve_click(campaign_id: int):
    campaign = db.session.get(Campaign, campaign_id)
    if not campaign:
        return jsonify({"message": "Campaign not found"}), 404

    cache = current_app.extensions["automation"].cache
    try:
        picked = cache.select_url(campaign.id)
    except NoEligibleUrl as e:
        return jsonify({"message": str(e)}), 410

    cache.record_click(picked.id)
    return _respond(picked.target_url, (campaign.redirect_method or "direct").strip().lower())
