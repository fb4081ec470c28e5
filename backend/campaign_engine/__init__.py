import os

from flask import Flask, jsonify
from sqlalchemy import text

from campaign_engine.click_protection import register_click_protection
from campaign_engine.config import Config
from campaign_engine.engine import build_engine
from campaign_engine.extensions import db, cors
from campaign_engine.segments.segment_automation import automation_bp
from campaign_engine.segments.segment_error_logs import error_logs_bp
from campaign_engine.segments.segment_redirect import redirect_bp
from campaign_engine.segments.segment_urls_admin import urls_admin_bp
from campaign_engine.services.settings import get_settings


def create_app(overrides: dict | None = None, *, client=None, jobs=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    env = (app.config.get("CAMPAIGN_ENGINE_ENV") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (app.config.get("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not app.config.get("DATABASE_URL_SET"):
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    # Ensure instance dir exists for SQLite paths
    os.makedirs(app.config["INSTANCE_DIR"], exist_ok=True)

    # CORS configuration
    cors_origins = (app.config.get("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    if not origins and env not in ("prod", "production"):
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    register_click_protection(db.session)

    with app.app_context():
        db.create_all()
        get_settings()

    engine = build_engine(app, client=client, jobs=jobs)
    app.extensions["automation"] = engine

    # Register API routes
    app.register_blueprint(automation_bp)
    app.register_blueprint(error_logs_bp)
    app.register_blueprint(urls_admin_bp)
    app.register_blueprint(redirect_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            db_state = "fail"
        return jsonify({
            "ok": True,
            "service": "campaign-engine",
            "env": env,
            "db": db_state,
            "scheduler": "running" if engine.scheduler.running else "stopped",
        })

    # Budget debounce jobs always run; the periodic tick is opt-in
    with app.app_context():
        engine.aggregator.resume_pending()
    if app.config.get("AUTOMATION_SCHEDULER_ENABLED"):
        engine.scheduler.start()
    elif not engine.jobs.running:
        engine.jobs.start()

    return app
