from flask import Blueprint, jsonify, current_app
from sqlalchemy import text

from models import db

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    db_ok = True
    try:
        db.session.execute(text("SELECT 1"))
    except Exception:
        db.session.rollback()
        db_ok = False

    sweeper = current_app.extensions.get("expiration_sweeper")
    return jsonify(
        status="ok" if db_ok else "degraded",
        database=db_ok,
        sweeper=sweeper.status() if sweeper else None,
    ), 200 if db_ok else 503
