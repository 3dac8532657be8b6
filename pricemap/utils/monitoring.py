"""Request and upstream call timing"""

import time
import functools
from typing import Callable, Dict, Any, Optional, List
import structlog
from datetime import datetime, timezone
import threading
from collections import deque

logger = structlog.get_logger(__name__)

class PerformanceMonitor:
    """Track response times per operation and flag slow ones"""

    def __init__(self, alert_threshold_seconds: float = 2.0, history: int = 1000):
        self.alert_threshold = alert_threshold_seconds
        self.recent = deque(maxlen=history)
        self._totals = {'calls': 0, 'slow': 0, 'errors': 0, 'time': 0.0}
        self._lock = threading.Lock()

    def record(self, operation: str, elapsed: float, error: Optional[str] = None,
               status_code: Optional[int] = None):
        """Record one timed call"""
        slow = elapsed > self.alert_threshold
        failed = error is not None or (status_code is not None and status_code >= 500)

        with self._lock:
            self._totals['calls'] += 1
            self._totals['time'] += elapsed
            self._totals['slow'] += int(slow)
            self._totals['errors'] += int(failed)
            self.recent.append({
                'operation': operation,
                'elapsed': elapsed,
                'status_code': status_code,
                'error': error,
                'slow': slow
            })

        if slow:
            logger.warning("Slow operation detected",
                           operation=operation,
                           elapsed=round(elapsed, 3),
                           threshold=self.alert_threshold)

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            calls = self._totals['calls']
            if calls == 0:
                return {'status': 'no requests yet'}

            return {
                'total_calls': calls,
                'average_time': round(self._totals['time'] / calls, 3),
                'slow_calls': self._totals['slow'],
                'error_rate': round(self._totals['errors'] / calls * 100, 2),
                'alert_threshold': self.alert_threshold
            }

    def get_operations(self) -> List[Dict[str, Any]]:
        """Per-operation averages over the recent window, slowest first"""
        with self._lock:
            stats: Dict[str, Dict[str, float]] = {}
            for call in self.recent:
                entry = stats.setdefault(call['operation'], {'count': 0, 'time': 0.0, 'errors': 0})
                entry['count'] += 1
                entry['time'] += call['elapsed']
                entry['errors'] += int(call['error'] is not None)

        operations = [
            {
                'operation': name,
                'count': int(entry['count']),
                'average_time': round(entry['time'] / entry['count'], 3),
                'errors': int(entry['errors'])
            }
            for name, entry in stats.items()
        ]
        return sorted(operations, key=lambda op: op['average_time'], reverse=True)

# Global monitor instance
monitor = PerformanceMonitor(alert_threshold_seconds=2.0)

def monitor_performance(func: Callable) -> Callable:
    """Decorator timing a function under its qualified name"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        error = None
        try:
            return func(*args, **kwargs)
        except Exception as e:
            error = type(e).__name__
            raise
        finally:
            monitor.record(func.__qualname__, time.perf_counter() - start_time, error=error)

    return wrapper

def add_performance_monitoring(app):
    """Time every Flask request and expose it as X-Response-Time"""
    from flask import request, g

    @app.before_request
    def before_request():
        g.start_time = time.perf_counter()

    @app.after_request
    def after_request(response):
        if hasattr(g, 'start_time'):
            elapsed = time.perf_counter() - g.start_time
            monitor.record(
                f"{request.method} {request.endpoint or request.path}",
                elapsed,
                status_code=response.status_code
            )
            response.headers['X-Response-Time'] = f"{elapsed:.3f}s"
        return response

def get_performance_report() -> Dict[str, Any]:
    return {
        'metrics': monitor.get_metrics(),
        'operations': monitor.get_operations(),
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
