import hmac
from typing import Optional

from flask import current_app, jsonify, request


def get_bearer_token(auth_header: str) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip() or None
    return None


def is_admin() -> bool:
    """Admin routes are open when ADMIN_API_TOKEN is unset."""
    expected = (current_app.config.get("ADMIN_API_TOKEN") or "").strip()
    if not expected:
        return True
    tok = get_bearer_token(request.headers.get("Authorization", ""))
    return bool(tok) and hmac.compare_digest(tok, expected)


def require_admin():
    """``before_request`` hook for admin blueprints."""
    if not is_admin():
        return jsonify({"message": "Forbidden"}), 403
    return None
