"""Performance monitoring utilities using Prometheus metrics."""

from __future__ import annotations

import time
from contextlib import contextmanager

import psutil
from prometheus_client import Counter, Gauge, Histogram


lottery_jobs_total = Counter(
    "lottery_jobs_total", "Lottery jobs by terminal outcome", labelnames=("status",)
)
lottery_engine_duration = Histogram(
    "lottery_engine_duration_seconds", "Time spent computing one lottery assignment"
)
lottery_commit_retries = Counter(
    "lottery_commit_retries_total", "Result commits retried after a locked database"
)
lottery_placements = Gauge(
    "lottery_last_placements", "Placements of the last completed job", labelnames=("origin",)
)
db_connections = Gauge("db_connection_pool_size", "DB connection pool size")
db_connections_idle = Gauge("db_connection_pool_idle", "Idle DB connections")


class PerformanceMonitor:
    def __init__(self) -> None:
        self.metrics = {
            "lottery_jobs_total": lottery_jobs_total,
            "lottery_engine_duration": lottery_engine_duration,
            "lottery_commit_retries": lottery_commit_retries,
            "lottery_placements": lottery_placements,
            "db_connections": db_connections,
            "db_connections_idle": db_connections_idle,
        }

    @contextmanager
    def track_engine(self):
        start = time.perf_counter()
        try:
            yield
        finally:
            lottery_engine_duration.observe(time.perf_counter() - start)

    def record_job(self, status: str) -> None:
        lottery_jobs_total.labels(status=status).inc()

    def record_commit_retry(self) -> None:
        lottery_commit_retries.inc()

    def record_placements(self, origin_counts: dict) -> None:
        for origin, value in origin_counts.items():
            lottery_placements.labels(origin=origin).set(value)

    def record_db_pool(self, pool_size: int, idle: int) -> None:
        db_connections.set(pool_size)
        db_connections_idle.set(idle)

    def gather_host_metrics(self) -> dict:
        process = psutil.Process()
        memory_info = process.memory_info()
        return {
            "memory_rss": memory_info.rss,
            "cpu_percent": process.cpu_percent(interval=None),
        }


monitor = PerformanceMonitor()
