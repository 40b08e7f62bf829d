"""Health check blueprint."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from core.exceptions import ConnectionPoolError
from database.connection import get_db_pool
from utils.performance import monitor


health_bp = Blueprint("health", __name__)


@health_bp.route("/health")
def health_check():
    host_metrics = monitor.gather_host_metrics()
    manager = current_app.config.get("LOTTERY_MANAGER")
    active_jobs = manager.worker.active_jobs if manager else 0

    try:
        db_pool = get_db_pool()
    except ConnectionPoolError:
        return jsonify({"status": "degraded", "db_pool_size": 0, "host": host_metrics}), 503

    monitor.record_db_pool(db_pool.size, db_pool.available)
    data = {
        "status": "ok",
        "db_pool_size": db_pool.size,
        "db_pool_idle": db_pool.available,
        "active_lottery_jobs": active_jobs,
        "host": host_metrics,
    }
    return jsonify(data)
