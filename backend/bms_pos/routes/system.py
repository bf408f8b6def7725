# backend/bms_pos/routes/system.py
"""
System health and status endpoints.

/api/status is what the till polls: server time plus the exchange rate new
sales would freeze. /health checks the database.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, Sale
from ..services.rate_service import get_rate_provider
from bms_pos.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        sale_count = db.session.query(Sale).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "sales": sale_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/status")
def status():
    provider = get_rate_provider()
    return {
        "status": "ok",
        "server_time": to_utc_z(utcnow()),
        "exchange_rate": str(provider.current()),
        "exchange_rate_source": "live" if provider.has_live_rate else "fallback",
        "tax_rate_bps": current_app.config["TAX_RATE_BPS"],
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database check failed
    """
    start_time = time.time()
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
        }
    }
    return response, 200 if healthy else 503
