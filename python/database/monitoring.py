"""
Operation timing and metrics for the record store and duplicate checks.

Every SqlRecordStore method runs under query_timer, which keeps in-process
per-operation stats (served by the health endpoint), feeds Prometheus and
logs operations above SLOW_OPERATION_MS.

Usage:
    from database.monitoring import query_timer, get_db_metrics

    with query_timer("get_active_corpus_records"):
        records = repo.get_active()
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from functools import wraps
from typing import Optional, Dict, Any, Callable

from prometheus_client import Histogram, Counter, Gauge

logger = logging.getLogger(__name__)

SLOW_OPERATION_MS = 1000.0
WARNING_OPERATION_MS = 500.0


# ============================================
# PROMETHEUS METRICS
# ============================================

db_query_duration = Histogram(
    'mdm_db_query_duration_seconds',
    'Record store operation duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

db_query_total = Counter(
    'mdm_db_query_total',
    'Total number of record store operations',
    ['operation', 'status']
)

db_slow_queries_total = Counter(
    'mdm_db_slow_queries_total',
    'Record store operations slower than the slow threshold',
    ['operation']
)

db_pool_checked_out = Gauge(
    'mdm_db_pool_checked_out',
    'Connections currently checked out of the pool'
)

duplicate_checks_total = Counter(
    'mdm_duplicate_checks_total',
    'Total number of duplicate checks run',
    ['outcome']
)

duplicate_matches_found = Histogram(
    'mdm_duplicate_matches_found',
    'Number of consolidated duplicate matches per check',
    buckets=(0, 1, 2, 3, 5, 10, 25, 50)
)


# ============================================
# OPERATION STATS
# ============================================

@dataclass
class OperationStats:
    """Running totals for one store operation."""
    operation: str
    count: int = 0
    total_time_ms: float = 0.0
    min_time_ms: float = float('inf')
    max_time_ms: float = 0.0
    errors: int = 0
    slow: int = 0
    last_executed: Optional[datetime] = None

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.count if self.count else 0.0

    def record(self, duration_ms: float, error: bool, slow: bool) -> None:
        self.count += 1
        self.total_time_ms += duration_ms
        self.min_time_ms = min(self.min_time_ms, duration_ms)
        self.max_time_ms = max(self.max_time_ms, duration_ms)
        self.last_executed = datetime.now()
        self.errors += int(error)
        self.slow += int(slow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'total_time_ms': round(self.total_time_ms, 2),
            'avg_time_ms': round(self.avg_time_ms, 2),
            'min_time_ms': round(self.min_time_ms, 2) if self.count else 0.0,
            'max_time_ms': round(self.max_time_ms, 2),
            'errors': self.errors,
            'slow_operations': self.slow,
            'last_executed': self.last_executed.isoformat() if self.last_executed else None
        }


class OperationStatsCollector:
    """Thread-safe map of operation name to OperationStats."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = threading.Lock()
        self._start_time = datetime.now()

    def record(self, operation: str, duration_ms: float, error: bool, slow: bool) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats(operation=operation))
            stats.record(duration_ms, error, slow)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'uptime_seconds': (datetime.now() - self._start_time).total_seconds(),
                'operations': {op: s.to_dict() for op, s in self._stats.items()}
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._start_time = datetime.now()


_stats_collector = OperationStatsCollector()


def get_db_metrics() -> Dict[str, Any]:
    """Per-operation timings collected since start (or the last reset)."""
    return _stats_collector.snapshot()


def reset_metrics() -> None:
    _stats_collector.reset()


# ============================================
# TIMERS
# ============================================

@contextmanager
def query_timer(operation: str):
    """
    Time a store operation and record it.

    Args:
        operation: Store operation name, e.g. 'replace_match_results'
    """
    start_time = time.perf_counter()
    error_occurred = False

    try:
        yield
    except Exception:
        error_occurred = True
        raise
    finally:
        duration = time.perf_counter() - start_time
        duration_ms = duration * 1000
        is_slow = duration_ms > SLOW_OPERATION_MS

        _stats_collector.record(operation, duration_ms, error_occurred, is_slow)

        status = "error" if error_occurred else "success"
        db_query_duration.labels(operation=operation, status=status).observe(duration)
        db_query_total.labels(operation=operation, status=status).inc()

        if is_slow:
            db_slow_queries_total.labels(operation=operation).inc()
            logger.warning(
                f"SLOW OPERATION: {operation} took {duration_ms:.2f}ms "
                f"(threshold: {SLOW_OPERATION_MS}ms)"
            )
        elif duration_ms > WARNING_OPERATION_MS and not error_occurred:
            logger.info(f"Operation {operation} took {duration_ms:.2f}ms")


def timed_query(operation: str):
    """
    Decorator form of query_timer for store methods.

    Usage:
        @timed_query("get_draft")
        def get_draft(self, draft_id):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with query_timer(operation):
                return func(*args, **kwargs)
        return wrapper
    return decorator


def record_duplicate_check(outcome: str, match_count: int) -> None:
    """Record the outcome of one duplicate check.

    Args:
        outcome: 'review_triggered', 'no_transition' or 'failed'
        match_count: Number of consolidated matches persisted
    """
    duplicate_checks_total.labels(outcome=outcome).inc()
    if outcome != 'failed':
        duplicate_matches_found.observe(match_count)


# ============================================
# HEALTH
# ============================================

@dataclass
class HealthStatus:
    """Result of one database round trip."""
    healthy: bool
    latency_ms: float
    pool_checked_out: int = 0
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'pool_checked_out': self.pool_checked_out,
            'error': self.error,
            'timestamp': self.timestamp.isoformat()
        }


def check_health(engine, session_factory) -> HealthStatus:
    """Run SELECT 1 and report latency and pool usage."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    start_time = time.perf_counter()

    try:
        session = session_factory()
        try:
            session.execute(text("SELECT 1"))
            latency = (time.perf_counter() - start_time) * 1000

            # Not every pool class (e.g. StaticPool) tracks checkouts
            checkedout = getattr(engine.pool, 'checkedout', None)
            checked_out = checkedout() if callable(checkedout) else 0
            db_pool_checked_out.set(checked_out)

            return HealthStatus(healthy=True, latency_ms=latency, pool_checked_out=checked_out)
        finally:
            session.close()

    except SQLAlchemyError as e:
        latency = (time.perf_counter() - start_time) * 1000
        logger.error(f"Database health check failed: {e}")
        return HealthStatus(healthy=False, latency_ms=latency, error=str(e))
