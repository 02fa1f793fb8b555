# backend/rentpay/routes/system.py
"""
System health endpoint.

Checks the database and the commission register so deployments can tell a
reachable-but-unseeded ledger from a healthy one.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import CommissionRate, PaymentEntry
from ..models.commission import CURRENT_RATE_ID
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        payment_count = db.session.query(PaymentEntry).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"payments": payment_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_commission_register() -> dict:
    """Degraded (not unhealthy) until the default rate row exists."""
    try:
        current = db.session.get(CommissionRate, CURRENT_RATE_ID)
    except Exception:
        current_app.logger.exception("Commission register health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "error": "Commission register error"}

    if current is None:
        return {"status": "degraded", "warning": "Commission rate not initialized (run `flask system init`)"}
    return {"status": "healthy", "details": {"commission_rate": float(current.rate)}}


def check_webhook_config() -> dict:
    if not current_app.config.get("STRIPE_WEBHOOK_SECRET"):
        return {"status": "degraded", "warning": "STRIPE_WEBHOOK_SECRET is not set"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Health check.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "commission_register": check_commission_register(),
        "webhooks": check_webhook_config(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
